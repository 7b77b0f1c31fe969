from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field

from shopdb.apps.inventory.schemas import InventoryTransactionRead, PartSuggestionRead

from . import models


class SupplierCreate(BaseModel):
    name: str = Field(..., min_length=1)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None


class SupplierRead(SupplierCreate):
    id: int
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class PurchaseOrderItemCreate(BaseModel):
    part_id: int
    quantity_ordered: int
    unit_cost: Optional[Decimal] = None


class PurchaseOrderItemRead(BaseModel):
    id: int
    part_id: int
    quantity_ordered: int
    unit_cost: Decimal
    total_cost: Decimal

    class Config:
        from_attributes = True


class PurchaseOrderCreate(BaseModel):
    supplier_id: Optional[int] = None
    notes: Optional[str] = None
    items: List[PurchaseOrderItemCreate] = Field(..., min_length=1)
    idempotency_key: Optional[str] = None


class PurchaseOrderStatusUpdate(BaseModel):
    status: models.PurchaseOrderStatusEnum


class PurchaseOrderRead(BaseModel):
    id: int
    po_number: str
    supplier_id: Optional[int] = None
    status: models.PurchaseOrderStatusEnum
    notes: Optional[str] = None
    total_cost: Decimal
    received_at: Optional[datetime] = None
    received_by_user_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    items: List[PurchaseOrderItemRead] = []

    class Config:
        from_attributes = True


class ReceiptRead(BaseModel):
    purchase_order: PurchaseOrderRead
    transactions: List[InventoryTransactionRead]
    fulfilled_request_ids: List[int] = []

    class Config:
        from_attributes = True


class PartsRequestCreate(BaseModel):
    part_id: Optional[int] = None
    part_description: Optional[str] = None
    quantity: int = 1
    work_order_id: Optional[int] = None
    notes: Optional[str] = None


class PartsRequestRead(BaseModel):
    id: int
    part_id: Optional[int] = None
    part_description: Optional[str] = None
    quantity: int
    source: models.PartsRequestSourceEnum
    status: models.PartsRequestStatusEnum
    work_order_id: Optional[int] = None
    purchase_order_id: Optional[int] = None
    notes: Optional[str] = None
    requested_by_user_id: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class PartsRequestBind(BaseModel):
    part_id: int


class PartsRequestSuggestions(BaseModel):
    request_id: int
    part_description: Optional[str] = None
    suggestions: List[PartSuggestionRead]


class OrderFromRequests(BaseModel):
    request_ids: List[int] = Field(..., min_length=1)
    supplier_id: Optional[int] = None
