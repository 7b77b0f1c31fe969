# backend/shopdb/apps/accounts/models.py

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    UniqueConstraint,
)

from shopdb.database import Base
from shopdb.utils.identifiers import generate_operator_id


def _utcnow() -> datetime:
    return datetime.utcnow()


class AccountRole(str, enum.Enum):
    """Roles used for route gating across the workshop."""

    ADMIN = "ADMIN"                      # Owner / system administrator
    SERVICE_MANAGER = "SERVICE_MANAGER"  # Runs the floor, signs off jobs
    PARTS_MANAGER = "PARTS_MANAGER"      # Stock, suppliers, purchasing
    TECHNICIAN = "TECHNICIAN"            # Works jobs, consumes parts
    FRONT_DESK = "FRONT_DESK"            # Counter sales, bookings


class User(Base):
    """
    Workshop operator.

    Every ledger transaction records the operator that caused it, so users
    are never hard-deleted; deactivate them instead.
    """

    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("email", name="uq_users_email"),
        Index("idx_users_role_active", "role", "is_active"),
    )

    id = Column(String(36), primary_key=True, default=generate_operator_id)
    email = Column(String(255), nullable=False, index=True)
    full_name = Column(String(255), nullable=False)
    role = Column(
        Enum(AccountRole, name="account_role_enum", native_enum=False),
        nullable=False,
        default=AccountRole.TECHNICIAN,
    )
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    @property
    def is_admin(self) -> bool:
        return self.role == AccountRole.ADMIN

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email} role={self.role}>"


class IdempotencyKey(Base):
    """
    Client-supplied request keys (the `Idempotency-Key` header).

    A key can be replayed with the same payload; reuse with a different
    payload is rejected.
    """

    __tablename__ = "idempotency_keys"
    __table_args__ = (
        UniqueConstraint("scope", "key", name="uq_idempotency_scope_key"),
    )

    id = Column(Integer, primary_key=True, index=True)
    scope = Column(String(128), nullable=False, index=True)
    key = Column(String(128), nullable=False)
    payload_hash = Column(String(64), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
