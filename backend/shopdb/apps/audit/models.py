from __future__ import annotations

from datetime import datetime, timezone
from typing import List

from sqlalchemy import Column, DateTime, ForeignKey, Index, JSON, String

from ...database import Base
from ...utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditEvent(Base):
    """
    Who changed a part, a purchase order or a job, and what it looked like
    before and after. Stock movements are not duplicated here; the ledger is
    their history.
    """

    __tablename__ = "audit_events"
    __table_args__ = (
        Index("ix_audit_events_entity", "entity_type", "entity_id"),
        Index("ix_audit_events_actor_time", "actor_user_id", "occurred_at"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    entity_type = Column(String(64), nullable=False)
    entity_id = Column(String(64), nullable=False)
    action = Column(String(64), nullable=False, index=True)
    summary = Column(String(255), nullable=True)
    actor_user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    occurred_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
    before = Column(JSON, nullable=True)
    after = Column(JSON, nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)

    @property
    def changed_fields(self) -> List[str]:
        before = self.before or {}
        after = self.after or {}
        return sorted(key for key in set(before) | set(after) if before.get(key) != after.get(key))

    def __repr__(self) -> str:
        return f"<AuditEvent {self.action} {self.entity_type}:{self.entity_id}>"
