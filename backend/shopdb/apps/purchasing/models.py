# backend/shopdb/apps/purchasing/models.py

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
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


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class PurchaseOrderStatusEnum(str, enum.Enum):
    DRAFT = "draft"
    SENT = "sent"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    RECEIVED = "received"
    CANCELLED = "cancelled"


# Statuses from which the receipt gateway may fire.
RECEIVABLE_STATUSES = (
    PurchaseOrderStatusEnum.SENT,
    PurchaseOrderStatusEnum.CONFIRMED,
    PurchaseOrderStatusEnum.SHIPPED,
)


class PartsRequestStatusEnum(str, enum.Enum):
    PENDING = "pending"
    ORDERED = "ordered"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"


class PartsRequestSourceEnum(str, enum.Enum):
    TECHNICIAN = "technician"
    REORDER = "reorder"


class Supplier(Base):
    __tablename__ = "suppliers"
    __table_args__ = (
        UniqueConstraint("name", name="uq_suppliers_name"),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(64), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self) -> str:
        return f"<Supplier id={self.id} name={self.name}>"


class PurchaseOrder(Base):
    """
    Order placed with a supplier.

    Reaching `received` is what credits stock, once per PO. The receipt
    gateway moves the status with a conditional UPDATE so only one caller
    can make that move.
    """

    __tablename__ = "purchase_orders"
    __table_args__ = (
        UniqueConstraint("po_number", name="uq_purchase_orders_po_number"),
        UniqueConstraint("idempotency_key", name="uq_purchase_orders_idempotency"),
        Index("ix_purchase_orders_supplier_status", "supplier_id", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    po_number = Column(String(32), nullable=False, index=True)
    supplier_id = Column(Integer, ForeignKey("suppliers.id", ondelete="RESTRICT"), nullable=True, index=True)
    status = Column(
        SAEnum(
            PurchaseOrderStatusEnum,
            name="purchase_order_status_enum",
            native_enum=False,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=PurchaseOrderStatusEnum.DRAFT,
        index=True,
    )
    notes = Column(Text, nullable=True)
    idempotency_key = Column(String(128), nullable=True)

    created_by_user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    received_by_user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    received_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    supplier = relationship("Supplier", lazy="joined")
    items = relationship(
        "PurchaseOrderItem",
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        order_by="PurchaseOrderItem.id",
    )

    @property
    def total_cost(self):
        return sum((item.total_cost for item in self.items), 0)

    def __repr__(self) -> str:
        return f"<PurchaseOrder id={self.id} po_number={self.po_number} status={self.status}>"


class PurchaseOrderItem(Base):
    __tablename__ = "purchase_order_items"
    __table_args__ = (
        UniqueConstraint("purchase_order_id", "part_id", name="uq_purchase_order_items_po_part"),
        CheckConstraint("quantity_ordered > 0", name="ck_purchase_order_items_quantity_positive"),
    )

    id = Column(Integer, primary_key=True, index=True)
    purchase_order_id = Column(
        Integer,
        ForeignKey("purchase_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    part_id = Column(Integer, ForeignKey("parts.id", ondelete="RESTRICT"), nullable=False, index=True)
    quantity_ordered = Column(Integer, nullable=False)
    unit_cost = Column(Numeric(12, 2), nullable=False)
    total_cost = Column(Numeric(12, 2), nullable=False)

    purchase_order = relationship("PurchaseOrder", back_populates="items")
    part = relationship("Part", lazy="joined")


class PartsRequest(Base):
    """
    Request to buy a part, raised by a technician or by the reorder signal.

    Free-text requests stay unbound (`part_id` is NULL) until an operator
    picks the catalog part; only bound requests can be ordered.
    """

    __tablename__ = "parts_requests"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_parts_requests_quantity_positive"),
        Index("ix_parts_requests_part_status", "part_id", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    part_id = Column(Integer, ForeignKey("parts.id", ondelete="SET NULL"), nullable=True, index=True)
    part_description = Column(String(255), nullable=True)
    quantity = Column(Integer, nullable=False)
    source = Column(
        SAEnum(
            PartsRequestSourceEnum,
            name="parts_request_source_enum",
            native_enum=False,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=PartsRequestSourceEnum.TECHNICIAN,
    )
    status = Column(
        SAEnum(
            PartsRequestStatusEnum,
            name="parts_request_status_enum",
            native_enum=False,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=PartsRequestStatusEnum.PENDING,
        index=True,
    )
    work_order_id = Column(Integer, ForeignKey("work_orders.id", ondelete="SET NULL"), nullable=True, index=True)
    purchase_order_id = Column(
        Integer,
        ForeignKey("purchase_orders.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    notes = Column(Text, nullable=True)

    requested_by_user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    part = relationship("Part", lazy="joined")

    @property
    def is_bound(self) -> bool:
        return self.part_id is not None
