# backend/shopdb/apps/work/services.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

from fastapi import HTTPException, status
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from shopdb.apps.inventory import models as inventory_models
from shopdb.apps.inventory import services as inventory_services
from shopdb.apps.inventory.gateways import StockGateway, StockMovement
from shopdb.apps.inventory.ledger import InsufficientStock, LedgerWriteFailure, require_positive_quantity
from shopdb.apps.workflow import apply_transition
from shopdb.utils.identifiers import generate_document_number

from . import models, schemas

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def _money(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


# ---------------------------------------------------------------------------
# Work orders
# ---------------------------------------------------------------------------


def get_work_order(db: Session, work_order_id: int) -> models.WorkOrder:
    work_order = db.get(models.WorkOrder, work_order_id)
    if not work_order:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Work order not found.")
    return work_order


def require_open_work_order(db: Session, work_order_id: int) -> models.WorkOrder:
    work_order = get_work_order(db, work_order_id)
    if not work_order.is_open:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Work order {work_order.wo_number} is {work_order.status.value}; parts can only be added to open jobs.",
        )
    return work_order


def _next_wo_number(db: Session) -> str:
    today = datetime.utcnow()
    prefix = f"WO-{today:%Y%m%d}-"
    issued = db.query(func.count(models.WorkOrder.id)).filter(models.WorkOrder.wo_number.like(f"{prefix}%")).scalar()
    return generate_document_number("WO", (issued or 0) + 1, on=today)


def list_work_orders(
    db: Session,
    *,
    status_filter: Optional[models.WorkOrderStatusEnum] = None,
    skip: int = 0,
    limit: int = 100,
) -> List[models.WorkOrder]:
    query = db.query(models.WorkOrder)
    if status_filter:
        query = query.filter(models.WorkOrder.status == status_filter)
    return query.order_by(models.WorkOrder.created_at.desc()).offset(skip).limit(limit).all()


def create_work_order(
    db: Session,
    *,
    payload: schemas.WorkOrderCreate,
    actor_user_id: Optional[str] = None,
) -> models.WorkOrder:
    wo_number = (payload.wo_number or "").strip().upper() or _next_wo_number(db)
    if db.query(models.WorkOrder).filter(models.WorkOrder.wo_number == wo_number).first():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Work order number already exists.")
    work_order = models.WorkOrder(
        wo_number=wo_number,
        customer_name=payload.customer_name,
        description=payload.description,
        status=models.WorkOrderStatusEnum.PENDING,
        created_by_user_id=actor_user_id,
    )
    db.add(work_order)
    db.flush()
    return work_order


def transition_work_order(
    db: Session,
    *,
    work_order: models.WorkOrder,
    to_status: models.WorkOrderStatusEnum,
    actor_user_id: Optional[str] = None,
) -> models.WorkOrder:
    """Move a job through its lifecycle. Raises workflow TransitionError on an illegal edge."""
    apply_transition(
        db,
        actor_user_id=actor_user_id,
        entity_type="work_order",
        entity_id=str(work_order.id),
        from_state=work_order.status,
        to_state=to_status,
        obj=work_order,
    )
    work_order.status = to_status
    if to_status == models.WorkOrderStatusEnum.COMPLETED:
        work_order.completed_at = datetime.utcnow()
    db.add(work_order)
    db.flush()
    return work_order


# ---------------------------------------------------------------------------
# Consumption
# ---------------------------------------------------------------------------


@dataclass
class ConsumptionResult:
    transaction: inventory_models.InventoryTransaction
    line: models.WorkOrderPartLine
    replayed: bool = False


def get_part_line(db: Session, *, work_order_id: int, part_id: int) -> Optional[models.WorkOrderPartLine]:
    return (
        db.query(models.WorkOrderPartLine)
        .filter(
            models.WorkOrderPartLine.work_order_id == work_order_id,
            models.WorkOrderPartLine.part_id == part_id,
        )
        .first()
    )


def _grow_line(db: Session, line_id: int, quantity: int) -> None:
    # Evaluated against the row, not the loaded line, so concurrent consumers both count.
    Line = models.WorkOrderPartLine
    db.execute(
        update(Line)
        .where(Line.id == line_id)
        .values(quantity=Line.quantity + quantity, total_price=Line.unit_price * (Line.quantity + quantity))
        .execution_options(synchronize_session=False)
    )


class WorkOrderConsumption(StockGateway):
    """
    Take parts off the shelf for a job and bill them on the job.

    The billing line is looked up before the ledger is called: a repeat
    consumption of the same part grows the existing line at its stored
    price, a first consumption snapshots the catalog price (or a quoted
    override) onto a new line.
    """

    transaction_type = inventory_models.TransactionTypeEnum.USED

    def __init__(
        self,
        work_order_id: int,
        part_id: int,
        quantity: int,
        *,
        unit_price: Optional[Decimal] = None,
        notes: Optional[str] = None,
    ) -> None:
        self.work_order_id = work_order_id
        self.part_id = part_id
        self.quantity = quantity
        self.unit_price = unit_price
        self.notes = notes

    def requested_delta(self) -> Optional[int]:
        return -self.quantity

    def propose(self, db: Session) -> StockMovement:
        quantity = require_positive_quantity(self.quantity, part_id=self.part_id)
        work_order = require_open_work_order(db, self.work_order_id)
        part = inventory_services.get_part(db, self.part_id, fresh=True)
        if quantity > part.quantity:
            raise InsufficientStock(part_id=part.id, requested=quantity, available=part.quantity)
        return StockMovement(
            part_id=part.id,
            transaction_type=inventory_models.TransactionTypeEnum.USED,
            quantity_delta=-quantity,
            reference_type=inventory_models.ReferenceTypeEnum.WORK_ORDER.value,
            reference_id=str(work_order.id),
            notes=self.notes or f"Used on {work_order.wo_number}",
        )

    def _snapshot_price(self, db: Session) -> Decimal:
        if self.unit_price is not None:
            if Decimal(self.unit_price) < 0:
                raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="unit_price must be >= 0.")
            return _money(self.unit_price)
        part = inventory_services.get_part(db, self.part_id)
        if part.sell_price is None:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Part {part.part_number} has no sell price; supply a unit price.",
            )
        return _money(part.sell_price)

    def submit(
        self,
        db: Session,
        *,
        actor_user_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> ConsumptionResult:
        if idempotency_key:
            existing = self.replay(db, idempotency_key)
            if existing is not None:
                line = get_part_line(db, work_order_id=self.work_order_id, part_id=self.part_id)
                return ConsumptionResult(transaction=existing, line=line, replayed=True)

        line = get_part_line(db, work_order_id=self.work_order_id, part_id=self.part_id)
        unit_price = line.unit_price if line is not None else self._snapshot_price(db)

        try:
            with db.begin_nested():
                entry = super().submit(db, actor_user_id=actor_user_id, idempotency_key=idempotency_key)
                if line is None:
                    line = models.WorkOrderPartLine(
                        work_order_id=self.work_order_id,
                        part_id=self.part_id,
                        quantity=self.quantity,
                        unit_price=unit_price,
                        total_price=_money(unit_price * self.quantity),
                    )
                    db.add(line)
                    db.flush()
                else:
                    _grow_line(db, line.id, self.quantity)
        except IntegrityError as exc:
            # Another terminal created the line first; a retry will find it.
            raise LedgerWriteFailure(
                f"Billing line for part {self.part_id} changed concurrently.",
                part_id=self.part_id,
            ) from exc
        db.refresh(line)

        logger.info(
            "Part consumed on work order",
            extra={
                "work_order_id": self.work_order_id,
                "part_id": self.part_id,
                "quantity": self.quantity,
                "actor_user_id": actor_user_id,
            },
        )
        return ConsumptionResult(transaction=entry, line=line)


def consume_part(
    db: Session,
    *,
    work_order_id: int,
    payload: schemas.ConsumePartRequest,
    actor_user_id: Optional[str] = None,
) -> ConsumptionResult:
    gateway = WorkOrderConsumption(
        work_order_id,
        payload.part_id,
        payload.quantity,
        unit_price=payload.unit_price,
        notes=payload.notes,
    )
    key = f"work_order:{work_order_id}:{payload.idempotency_key}" if payload.idempotency_key else None
    return gateway.submit(db, actor_user_id=actor_user_id, idempotency_key=key)


# ---------------------------------------------------------------------------
# Billing
# ---------------------------------------------------------------------------


def list_billing_lines(db: Session, work_order_id: int) -> List[models.WorkOrderPartLine]:
    get_work_order(db, work_order_id)
    return (
        db.query(models.WorkOrderPartLine)
        .filter(models.WorkOrderPartLine.work_order_id == work_order_id)
        .order_by(models.WorkOrderPartLine.id.asc())
        .all()
    )


def parts_total(db: Session, work_order_id: int) -> Decimal:
    total = (
        db.query(func.coalesce(func.sum(models.WorkOrderPartLine.total_price), 0))
        .filter(models.WorkOrderPartLine.work_order_id == work_order_id)
        .scalar()
    )
    return _money(total or 0)
