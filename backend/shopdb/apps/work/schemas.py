from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel

from shopdb.apps.inventory.schemas import InventoryTransactionRead, PartRead

from . import models


class WorkOrderCreate(BaseModel):
    customer_name: Optional[str] = None
    description: Optional[str] = None
    wo_number: Optional[str] = None


class WorkOrderStatusUpdate(BaseModel):
    status: models.WorkOrderStatusEnum


class WorkOrderPartLineRead(BaseModel):
    id: int
    work_order_id: int
    part_id: int
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class WorkOrderRead(BaseModel):
    id: int
    wo_number: str
    customer_name: Optional[str] = None
    description: Optional[str] = None
    status: models.WorkOrderStatusEnum
    is_open: bool
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None
    part_lines: List[WorkOrderPartLineRead] = []

    class Config:
        from_attributes = True


class ConsumePartRequest(BaseModel):
    part_id: int
    quantity: int
    # Quoted price; only used when the part is first added to the job.
    unit_price: Optional[Decimal] = None
    notes: Optional[str] = None
    idempotency_key: Optional[str] = None


class ConsumptionRead(BaseModel):
    transaction: InventoryTransactionRead
    line: WorkOrderPartLineRead
    part: PartRead
    replayed: bool = False


class BillingLinesRead(BaseModel):
    work_order_id: int
    lines: List[WorkOrderPartLineRead]
    parts_total: Decimal
