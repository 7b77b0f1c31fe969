# backend/shopdb/apps/sales/models.py

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from shopdb.database import Base


def _utcnow() -> datetime:
    return datetime.utcnow()


class Sale(Base):
    """Counter sale. Totals are fixed when the sale completes."""

    __tablename__ = "sales"
    __table_args__ = (
        UniqueConstraint("sale_number", name="uq_sales_sale_number"),
        UniqueConstraint("idempotency_key", name="uq_sales_idempotency"),
    )

    id = Column(Integer, primary_key=True, index=True)
    sale_number = Column(String(32), nullable=False, index=True)
    customer_name = Column(String(255), nullable=True)
    subtotal = Column(Numeric(12, 2), nullable=False)
    tax = Column(Numeric(12, 2), nullable=False)
    total = Column(Numeric(12, 2), nullable=False)
    idempotency_key = Column(String(128), nullable=True)

    created_by_user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    lines = relationship(
        "SaleLine",
        back_populates="sale",
        cascade="all, delete-orphan",
        order_by="SaleLine.id",
    )


class SaleLine(Base):
    __tablename__ = "sale_lines"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_sale_lines_quantity_positive"),
    )

    id = Column(Integer, primary_key=True, index=True)
    sale_id = Column(Integer, ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True)
    part_id = Column(Integer, ForeignKey("parts.id", ondelete="RESTRICT"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    # Copied from the catalog at sale time.
    unit_price = Column(Numeric(12, 2), nullable=False)
    total_price = Column(Numeric(12, 2), nullable=False)

    sale = relationship("Sale", back_populates="lines")
    part = relationship("Part", lazy="joined")
