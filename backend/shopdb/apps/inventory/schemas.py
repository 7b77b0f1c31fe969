from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from . import models
from .reorder import StockStatusEnum


class PartBase(BaseModel):
    name: str
    description: Optional[str] = None
    cost_price: Optional[Decimal] = Field(default=None, ge=0)
    sell_price: Optional[Decimal] = Field(default=None, ge=0)
    reorder_threshold: int = 5
    reorder_quantity: int = Field(default=10, gt=0)
    auto_reorder: bool = False
    location: Optional[str] = None
    barcode: Optional[str] = None
    supplier_id: Optional[int] = None


class PartCreate(PartBase):
    part_number: str
    opening_quantity: int = 0


class PartUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    cost_price: Optional[Decimal] = Field(default=None, ge=0)
    sell_price: Optional[Decimal] = Field(default=None, ge=0)
    reorder_threshold: Optional[int] = None
    reorder_quantity: Optional[int] = Field(default=None, gt=0)
    auto_reorder: Optional[bool] = None
    location: Optional[str] = None
    barcode: Optional[str] = None
    supplier_id: Optional[int] = None


class PartRead(PartBase):
    id: int
    part_number: str
    quantity: int
    opening_quantity: int
    is_low_stock: bool
    stock_status: StockStatusEnum
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class PartSuggestionRead(BaseModel):
    part: PartRead
    score: float

    class Config:
        from_attributes = True


class InventoryTransactionRead(BaseModel):
    id: int
    part_id: int
    transaction_type: models.TransactionTypeEnum
    quantity_delta: int
    quantity_after: int
    reference_type: str
    reference_id: Optional[str] = None
    notes: Optional[str] = None
    actor_user_id: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


# ---------------------------------------------------------------------------
# Gateway requests
# ---------------------------------------------------------------------------


class AdjustRequest(BaseModel):
    new_quantity: int
    notes: Optional[str] = None
    idempotency_key: Optional[str] = None


class CheckInRequest(BaseModel):
    quantity: int
    notes: Optional[str] = None
    idempotency_key: Optional[str] = None


class CheckOutRequest(BaseModel):
    quantity: int
    work_order_id: Optional[int] = None
    notes: Optional[str] = None
    idempotency_key: Optional[str] = None


class ReturnRequest(CheckOutRequest):
    pass


class StockMovementResult(BaseModel):
    """Outcome of a gateway call: the entry written (None for a no-op) and the part after it."""

    transaction: Optional[InventoryTransactionRead] = None
    part: PartRead


# ---------------------------------------------------------------------------
# Stocktake
# ---------------------------------------------------------------------------


class StocktakeLineIn(BaseModel):
    part_id: int
    counted_quantity: int
    system_quantity: Optional[int] = None


class StocktakeRequest(BaseModel):
    session_id: Optional[str] = None
    lines: List[StocktakeLineIn] = Field(..., min_length=1)


class StocktakeFailureRead(BaseModel):
    part_id: int
    code: str
    message: str
    available: Optional[int] = None

    class Config:
        from_attributes = True


class StocktakeResultRead(BaseModel):
    session_id: str
    applied: List[InventoryTransactionRead]
    unchanged: List[int]
    failed: List[StocktakeFailureRead]

    class Config:
        from_attributes = True


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


class ReconciliationRead(BaseModel):
    part_id: int
    part_number: str
    quantity: int
    opening_quantity: int
    ledger_total: int
    transaction_count: int
    expected_quantity: int
    balanced: bool

    class Config:
        from_attributes = True


class StockSummaryRead(BaseModel):
    total_parts: int
    in_stock: int
    low_stock: int
    out_of_stock: int
    stock_value: Decimal
