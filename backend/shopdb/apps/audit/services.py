from __future__ import annotations

from datetime import datetime
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from . import models, schemas

logger = logging.getLogger(__name__)


def create_audit_event(db: Session, *, data: schemas.AuditEventCreate) -> models.AuditEvent:
    event = models.AuditEvent(**data.model_dump(exclude={"metadata", "occurred_at"}, exclude_none=True))
    event.metadata_json = data.metadata
    if data.occurred_at is not None:
        event.occurred_at = data.occurred_at
    db.add(event)
    db.flush()
    return event


def log_event(
    db: Session,
    *,
    actor_user_id: Optional[str],
    entity_type: str,
    entity_id,
    action: str,
    summary: Optional[str] = None,
    before: Optional[dict] = None,
    after: Optional[dict] = None,
    metadata: Optional[dict] = None,
    critical: bool = False,
) -> Optional[models.AuditEvent]:
    """
    Record an audit event inside its own savepoint.

    Catalog edits and stock-adjacent notes are best effort: a failure is
    logged and the caller carries on. Transitions that gate stock (PO receipt,
    job invoicing) pass ``critical=True`` and the failure propagates.
    """
    try:
        with db.begin_nested():
            return create_audit_event(
                db,
                data=schemas.AuditEventCreate(
                    entity_type=entity_type,
                    entity_id=str(entity_id),
                    action=action,
                    summary=summary,
                    actor_user_id=actor_user_id,
                    before=before,
                    after=after,
                    metadata=metadata,
                ),
            )
    except Exception:
        logger.warning(
            "Audit event not recorded",
            extra={"entity_type": entity_type, "entity_id": str(entity_id), "action": action, "critical": critical},
            exc_info=True,
        )
        if critical:
            raise
        return None


def list_audit_events(
    db: Session,
    *,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    action: Optional[str] = None,
    actor_user_id: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = 200,
) -> List[models.AuditEvent]:
    Event = models.AuditEvent
    filters = []
    if entity_type:
        filters.append(Event.entity_type == entity_type)
    if entity_id:
        filters.append(Event.entity_id == str(entity_id))
    if action:
        filters.append(Event.action == action)
    if actor_user_id:
        filters.append(Event.actor_user_id == actor_user_id)
    if start:
        filters.append(Event.occurred_at >= start)
    if end:
        filters.append(Event.occurred_at <= end)
    return db.query(Event).filter(*filters).order_by(Event.occurred_at.desc()).limit(limit).all()
