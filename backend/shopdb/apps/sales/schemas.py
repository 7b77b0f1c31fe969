from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field


class SaleLineCreate(BaseModel):
    part_id: int
    quantity: int
    unit_price: Optional[Decimal] = None


class SaleCreate(BaseModel):
    customer_name: Optional[str] = None
    lines: List[SaleLineCreate] = Field(..., min_length=1)
    idempotency_key: Optional[str] = None


class SaleLineRead(BaseModel):
    id: int
    part_id: int
    quantity: int
    unit_price: Decimal
    total_price: Decimal

    class Config:
        from_attributes = True


class SaleRead(BaseModel):
    id: int
    sale_number: str
    customer_name: Optional[str] = None
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    created_by_user_id: Optional[str] = None
    created_at: datetime
    lines: List[SaleLineRead]

    class Config:
        from_attributes = True
