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
    event,
)
from sqlalchemy.orm import relationship

from shopdb.database import Base

from .reorder import StockStatusEnum, is_low_stock, stock_status


def _utcnow() -> datetime:
    return datetime.utcnow()


class TransactionTypeEnum(str, enum.Enum):
    RECEIVED = "received"
    USED = "used"
    ADJUSTMENT = "adjustment"
    RETURN = "return"


class ReferenceTypeEnum(str, enum.Enum):
    """What caused a ledger entry. Stored as plain strings on the entry."""

    MANUAL = "manual"
    SCAN_IN = "scan_in"
    SCAN_OUT = "scan_out"
    WORK_ORDER = "work_order"
    PURCHASE_ORDER = "purchase_order"
    STOCKTAKE = "stocktake"
    POS_SALE = "pos_sale"
    RETURN = "return"


class Part(Base):
    """
    Catalog entry for a stocked item.

    `quantity` is the authoritative balance. Only the ledger writes it, with
    a conditional UPDATE; everything else treats it as read-only.
    """

    __tablename__ = "parts"
    __table_args__ = (
        UniqueConstraint("part_number", name="uq_parts_part_number"),
        UniqueConstraint("barcode", name="uq_parts_barcode"),
        CheckConstraint("quantity >= 0", name="ck_parts_quantity_non_negative"),
        CheckConstraint("opening_quantity >= 0", name="ck_parts_opening_quantity_non_negative"),
        Index("ix_parts_name", "name"),
    )

    id = Column(Integer, primary_key=True, index=True)
    part_number = Column(String(64), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    quantity = Column(Integer, nullable=False, default=0)
    opening_quantity = Column(Integer, nullable=False, default=0)

    cost_price = Column(Numeric(12, 2), nullable=True)
    sell_price = Column(Numeric(12, 2), nullable=True)

    reorder_threshold = Column(Integer, nullable=False, default=5)
    reorder_quantity = Column(Integer, nullable=False, default=10)
    auto_reorder = Column(Boolean, nullable=False, default=False)

    location = Column(String(64), nullable=True)
    barcode = Column(String(64), nullable=True, index=True)
    supplier_id = Column(Integer, ForeignKey("suppliers.id", ondelete="SET NULL"), nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    supplier = relationship("Supplier", lazy="joined")

    @property
    def is_low_stock(self) -> bool:
        return is_low_stock(self)

    @property
    def stock_status(self) -> StockStatusEnum:
        return stock_status(self)

    def __repr__(self) -> str:
        return f"<Part id={self.id} part_number={self.part_number} quantity={self.quantity}>"


class InventoryTransaction(Base):
    """
    One signed quantity change for one part. Never updated or deleted.

    For every part: quantity == opening_quantity + sum(quantity_delta).
    """

    __tablename__ = "inventory_transactions"
    __table_args__ = (
        Index("ix_inventory_transactions_part_time", "part_id", "created_at"),
        Index("ix_inventory_transactions_reference", "reference_type", "reference_id"),
        UniqueConstraint("idempotency_key", name="uq_inventory_transactions_idempotency"),
        CheckConstraint("quantity_delta <> 0", name="ck_inventory_transactions_delta_non_zero"),
    )

    id = Column(Integer, primary_key=True, index=True)
    part_id = Column(Integer, ForeignKey("parts.id", ondelete="RESTRICT"), nullable=False, index=True)
    transaction_type = Column(
        SAEnum(
            TransactionTypeEnum,
            name="inventory_transaction_type_enum",
            native_enum=False,
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        nullable=False,
        index=True,
    )
    quantity_delta = Column(Integer, nullable=False)
    quantity_after = Column(Integer, nullable=False)

    reference_type = Column(String(32), nullable=False)
    reference_id = Column(String(64), nullable=True)
    notes = Column(Text, nullable=True)
    idempotency_key = Column(String(160), nullable=True)

    actor_user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    part = relationship("Part", lazy="joined")

    def __repr__(self) -> str:
        return (
            f"<InventoryTransaction id={self.id} part_id={self.part_id} "
            f"type={self.transaction_type} delta={self.quantity_delta}>"
        )


@event.listens_for(InventoryTransaction, "before_update")
def _block_transaction_update(mapper, connection, target):
    raise ValueError("Inventory transactions are immutable.")


@event.listens_for(InventoryTransaction, "before_delete")
def _block_transaction_delete(mapper, connection, target):
    raise ValueError("Inventory transactions cannot be deleted.")
