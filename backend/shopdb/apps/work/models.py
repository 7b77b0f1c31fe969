# backend/shopdb/apps/work/models.py

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from shopdb.database import Base


def _utcnow() -> datetime:
    return datetime.utcnow()


class WorkOrderStatusEnum(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    WAITING_ON_PARTS = "waiting_on_parts"
    COMPLETED = "completed"
    INVOICED = "invoiced"
    CANCELLED = "cancelled"


# Statuses in which a job still accepts parts.
OPEN_STATUSES = frozenset(
    {
        WorkOrderStatusEnum.PENDING,
        WorkOrderStatusEnum.IN_PROGRESS,
        WorkOrderStatusEnum.WAITING_ON_PARTS,
    }
)


class WorkOrder(Base):
    """A customer job. Parts consumed on it become billing lines."""

    __tablename__ = "work_orders"
    __table_args__ = (
        UniqueConstraint("wo_number", name="uq_work_orders_wo_number"),
    )

    id = Column(Integer, primary_key=True, index=True)
    wo_number = Column(String(32), nullable=False, index=True)
    customer_name = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    status = Column(
        SAEnum(
            WorkOrderStatusEnum,
            name="work_order_status_enum",
            native_enum=False,
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        nullable=False,
        default=WorkOrderStatusEnum.PENDING,
        index=True,
    )

    created_by_user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    part_lines = relationship(
        "WorkOrderPartLine",
        back_populates="work_order",
        cascade="all, delete-orphan",
        order_by="WorkOrderPartLine.id",
    )

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    def __repr__(self) -> str:
        return f"<WorkOrder id={self.id} wo_number={self.wo_number} status={self.status}>"


class WorkOrderPartLine(Base):
    """
    Billing line for one part on one job.

    `unit_price` is copied from the catalog when the part is first consumed
    and never changes afterwards; repeat consumption only grows `quantity`
    and recomputes `total_price` from the stored price.
    """

    __tablename__ = "work_order_part_lines"
    __table_args__ = (
        UniqueConstraint("work_order_id", "part_id", name="uq_work_order_part_lines_wo_part"),
        CheckConstraint("quantity > 0", name="ck_work_order_part_lines_quantity_positive"),
    )

    id = Column(Integer, primary_key=True, index=True)
    work_order_id = Column(Integer, ForeignKey("work_orders.id", ondelete="CASCADE"), nullable=False, index=True)
    part_id = Column(Integer, ForeignKey("parts.id", ondelete="RESTRICT"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    total_price = Column(Numeric(12, 2), nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    work_order = relationship("WorkOrder", back_populates="part_lines")
    part = relationship("Part", lazy="joined")

    def __repr__(self) -> str:
        return (
            f"<WorkOrderPartLine wo={self.work_order_id} part={self.part_id} "
            f"qty={self.quantity} unit_price={self.unit_price}>"
        )
