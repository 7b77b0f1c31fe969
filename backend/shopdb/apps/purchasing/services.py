# backend/shopdb/apps/purchasing/services.py

from __future__ import annotations

import logging
import os
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional

from fastapi import HTTPException, status
from sqlalchemy import func, update
from sqlalchemy.orm import Session

from shopdb.apps.audit import services as audit_services
from shopdb.apps.inventory import ledger
from shopdb.apps.inventory import models as inventory_models
from shopdb.apps.inventory import services as inventory_services
from shopdb.apps.inventory.gateways import StockMovement
from shopdb.apps.inventory.ledger import DuplicateReceipt, InvalidQuantity, LedgerWriteFailure
from shopdb.apps.workflow import TransitionError, apply_transition
from shopdb.utils.identifiers import generate_document_number

from . import models, schemas

logger = logging.getLogger(__name__)

DEFAULT_REORDER_QUANTITY = int(os.getenv("DEFAULT_REORDER_QUANTITY", "10"))

CENT = Decimal("0.01")
PO = models.PurchaseOrderStatusEnum
PR = models.PartsRequestStatusEnum


def _money(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


# ---------------------------------------------------------------------------
# Suppliers
# ---------------------------------------------------------------------------


def create_supplier(db: Session, *, payload: schemas.SupplierCreate) -> models.Supplier:
    name = payload.name.strip()
    if db.query(models.Supplier).filter(func.lower(models.Supplier.name) == name.lower()).first():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Supplier already exists.")
    supplier = models.Supplier(name=name, email=payload.email, phone=payload.phone, is_active=True)
    db.add(supplier)
    db.flush()
    return supplier


def get_supplier(db: Session, supplier_id: int) -> models.Supplier:
    supplier = db.get(models.Supplier, supplier_id)
    if not supplier:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Supplier not found.")
    return supplier


def list_suppliers(db: Session, *, include_inactive: bool = False) -> List[models.Supplier]:
    query = db.query(models.Supplier)
    if not include_inactive:
        query = query.filter(models.Supplier.is_active.is_(True))
    return query.order_by(models.Supplier.name.asc()).all()


# ---------------------------------------------------------------------------
# Purchase orders
# ---------------------------------------------------------------------------


def _next_po_number(db: Session) -> str:
    today = datetime.utcnow()
    prefix = f"PO-{today:%Y%m%d}-"
    issued = (
        db.query(func.count(models.PurchaseOrder.id))
        .filter(models.PurchaseOrder.po_number.like(f"{prefix}%"))
        .scalar()
    )
    return generate_document_number("PO", (issued or 0) + 1, on=today)


def get_purchase_order(db: Session, purchase_order_id: int) -> models.PurchaseOrder:
    purchase_order = db.get(models.PurchaseOrder, purchase_order_id)
    if not purchase_order:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Purchase order not found.")
    return purchase_order


def list_purchase_orders(
    db: Session,
    *,
    status_filter: Optional[models.PurchaseOrderStatusEnum] = None,
    supplier_id: Optional[int] = None,
) -> List[models.PurchaseOrder]:
    query = db.query(models.PurchaseOrder)
    if status_filter:
        query = query.filter(models.PurchaseOrder.status == status_filter)
    if supplier_id:
        query = query.filter(models.PurchaseOrder.supplier_id == supplier_id)
    return query.order_by(models.PurchaseOrder.created_at.desc()).all()


def _build_item(db: Session, item: schemas.PurchaseOrderItemCreate) -> models.PurchaseOrderItem:
    part = inventory_services.get_part(db, item.part_id)
    quantity = ledger.require_positive_quantity(item.quantity_ordered, field="quantity_ordered", part_id=part.id)
    unit_cost = item.unit_cost if item.unit_cost is not None else part.cost_price
    if unit_cost is None:
        # Neither the order nor the catalog knows the cost.
        unit_cost = Decimal("0")
    if Decimal(unit_cost) < 0:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Unit cost for part {part.part_number} must be >= 0.",
        )
    unit_cost = _money(unit_cost)
    return models.PurchaseOrderItem(
        part_id=part.id,
        quantity_ordered=quantity,
        unit_cost=unit_cost,
        total_cost=_money(unit_cost * quantity),
    )


def create_purchase_order(
    db: Session,
    *,
    payload: schemas.PurchaseOrderCreate,
    actor_user_id: Optional[str] = None,
) -> models.PurchaseOrder:
    if payload.idempotency_key:
        existing = (
            db.query(models.PurchaseOrder)
            .filter(models.PurchaseOrder.idempotency_key == payload.idempotency_key)
            .first()
        )
        if existing:
            return existing

    if payload.supplier_id is not None:
        get_supplier(db, payload.supplier_id)

    part_ids = [item.part_id for item in payload.items]
    if len(part_ids) != len(set(part_ids)):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Each part may appear once per purchase order.",
        )

    purchase_order = models.PurchaseOrder(
        po_number=_next_po_number(db),
        supplier_id=payload.supplier_id,
        status=PO.DRAFT,
        notes=payload.notes,
        idempotency_key=payload.idempotency_key,
        created_by_user_id=actor_user_id,
    )
    purchase_order.items = [_build_item(db, item) for item in payload.items]
    db.add(purchase_order)
    db.flush()

    audit_services.log_event(
        db,
        actor_user_id=actor_user_id,
        entity_type="purchase_order",
        entity_id=str(purchase_order.id),
        action="create",
        after={"po_number": purchase_order.po_number, "items": len(purchase_order.items)},
    )
    return purchase_order


def transition_purchase_order(
    db: Session,
    *,
    purchase_order: models.PurchaseOrder,
    to_status: models.PurchaseOrderStatusEnum,
    actor_user_id: Optional[str] = None,
) -> models.PurchaseOrder:
    """
    Move a PO along any edge except into `received`, which only the receipt
    gateway may take. Cancelling puts its ordered requests back to pending.
    """
    to_status = PO(to_status)
    if to_status == PO.RECEIVED:
        raise TransitionError(
            code="receipt_required",
            detail=[{"field": "status", "reason": "use the receive action to mark a purchase order received"}],
        )

    apply_transition(
        db,
        actor_user_id=actor_user_id,
        entity_type="purchase_order",
        entity_id=str(purchase_order.id),
        from_state=purchase_order.status,
        to_state=to_status,
        obj=purchase_order,
    )
    purchase_order.status = to_status
    db.add(purchase_order)

    if to_status == PO.CANCELLED:
        db.execute(
            update(models.PartsRequest)
            .where(
                models.PartsRequest.purchase_order_id == purchase_order.id,
                models.PartsRequest.status == PR.ORDERED,
            )
            .values(status=PR.PENDING, purchase_order_id=None)
            .execution_options(synchronize_session="fetch")
        )
    db.flush()
    return purchase_order


# ---------------------------------------------------------------------------
# Receipt
# ---------------------------------------------------------------------------


@dataclass
class ReceiptResult:
    purchase_order: models.PurchaseOrder
    transactions: List[inventory_models.InventoryTransaction] = field(default_factory=list)
    fulfilled_request_ids: List[int] = field(default_factory=list)


class PurchaseOrderReceipt:
    """
    Receive a purchase order: move it to `received` and credit every line.

    The status change and all line credits share one SAVEPOINT, so either
    the PO is received with every delta applied or nothing changes. The
    status moves with an UPDATE conditioned on the status read here, so a
    second receipt (concurrent or later) finds nothing to claim and is
    rejected with DuplicateReceipt.
    """

    def __init__(self, purchase_order_id: int) -> None:
        self.purchase_order_id = purchase_order_id

    @staticmethod
    def ledger_key(purchase_order_id: int, part_id: int) -> str:
        return f"po:{purchase_order_id}:part:{part_id}"

    def propose(self, db: Session, purchase_order: models.PurchaseOrder) -> List[StockMovement]:
        return [
            StockMovement(
                part_id=item.part_id,
                transaction_type=inventory_models.TransactionTypeEnum.RECEIVED,
                quantity_delta=item.quantity_ordered,
                reference_type=inventory_models.ReferenceTypeEnum.PURCHASE_ORDER.value,
                reference_id=str(purchase_order.id),
                notes=f"Received on {purchase_order.po_number}",
            )
            for item in purchase_order.items
        ]

    def _claim(self, db: Session, purchase_order: models.PurchaseOrder, from_status, actor_user_id) -> None:
        result = db.execute(
            update(models.PurchaseOrder)
            .where(
                models.PurchaseOrder.id == purchase_order.id,
                models.PurchaseOrder.status == from_status,
            )
            .values(
                status=PO.RECEIVED,
                received_at=datetime.utcnow(),
                received_by_user_id=actor_user_id,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return
        db.refresh(purchase_order)
        if purchase_order.status == PO.RECEIVED:
            raise DuplicateReceipt(purchase_order.id)
        raise LedgerWriteFailure(
            f"Purchase order {purchase_order.po_number} changed status during receipt.",
        )

    def submit(self, db: Session, *, actor_user_id: Optional[str] = None) -> ReceiptResult:
        purchase_order = get_purchase_order(db, self.purchase_order_id)
        db.refresh(purchase_order)
        from_status = purchase_order.status
        if from_status == PO.RECEIVED:
            logger.warning("Duplicate receipt rejected", extra={"purchase_order_id": purchase_order.id})
            raise DuplicateReceipt(purchase_order.id)

        movements = self.propose(db, purchase_order)
        if not movements:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Purchase order has no items.")

        result = ReceiptResult(purchase_order=purchase_order)
        with db.begin_nested():
            apply_transition(
                db,
                actor_user_id=actor_user_id,
                entity_type="purchase_order",
                entity_id=str(purchase_order.id),
                from_state=from_status,
                to_state=PO.RECEIVED,
                obj=purchase_order,
                extra={"lines": len(movements)},
            )
            self._claim(db, purchase_order, from_status, actor_user_id)

            for movement in movements:
                result.transactions.append(
                    ledger.apply_transaction(
                        db,
                        part_id=movement.part_id,
                        transaction_type=movement.transaction_type,
                        quantity_delta=movement.quantity_delta,
                        reference_type=movement.reference_type,
                        reference_id=movement.reference_id,
                        actor_user_id=actor_user_id,
                        notes=movement.notes,
                        idempotency_key=self.ledger_key(purchase_order.id, movement.part_id),
                    )
                )

            fulfilled = (
                db.query(models.PartsRequest)
                .filter(
                    models.PartsRequest.purchase_order_id == purchase_order.id,
                    models.PartsRequest.status == PR.ORDERED,
                )
                .all()
            )
            for request in fulfilled:
                request.status = PR.FULFILLED
                db.add(request)
            db.flush()
            result.fulfilled_request_ids = [request.id for request in fulfilled]

        db.refresh(purchase_order)
        logger.info(
            "Purchase order received",
            extra={
                "purchase_order_id": purchase_order.id,
                "lines": len(result.transactions),
                "actor_user_id": actor_user_id,
            },
        )
        return result


def receive_purchase_order(
    db: Session,
    *,
    purchase_order_id: int,
    actor_user_id: Optional[str] = None,
) -> ReceiptResult:
    return PurchaseOrderReceipt(purchase_order_id).submit(db, actor_user_id=actor_user_id)


# ---------------------------------------------------------------------------
# Parts requests
# ---------------------------------------------------------------------------


def get_parts_request(db: Session, request_id: int) -> models.PartsRequest:
    request = db.get(models.PartsRequest, request_id)
    if not request:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Parts request not found.")
    return request


def list_parts_requests(
    db: Session,
    *,
    status_filter: Optional[models.PartsRequestStatusEnum] = None,
    source: Optional[models.PartsRequestSourceEnum] = None,
) -> List[models.PartsRequest]:
    query = db.query(models.PartsRequest)
    if status_filter:
        query = query.filter(models.PartsRequest.status == status_filter)
    if source:
        query = query.filter(models.PartsRequest.source == source)
    return query.order_by(models.PartsRequest.created_at.asc(), models.PartsRequest.id.asc()).all()


def create_parts_request(
    db: Session,
    *,
    payload: schemas.PartsRequestCreate,
    actor_user_id: Optional[str] = None,
) -> models.PartsRequest:
    description = (payload.part_description or "").strip() or None
    if payload.part_id is None and not description:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Give a part or describe the part needed.",
        )
    quantity = ledger.require_positive_quantity(payload.quantity)
    if payload.part_id is not None:
        inventory_services.get_part(db, payload.part_id)
    if payload.work_order_id is not None:
        from shopdb.apps.work import services as work_services

        work_services.get_work_order(db, payload.work_order_id)

    request = models.PartsRequest(
        part_id=payload.part_id,
        part_description=description,
        quantity=quantity,
        source=models.PartsRequestSourceEnum.TECHNICIAN,
        status=PR.PENDING,
        work_order_id=payload.work_order_id,
        notes=payload.notes,
        requested_by_user_id=actor_user_id,
    )
    db.add(request)
    db.flush()
    return request


def suggest_parts_for_request(db: Session, request: models.PartsRequest, *, limit: int = 5):
    return inventory_services.suggest_parts(db, request.part_description or "", limit=limit)


def _require_pending(request: models.PartsRequest) -> None:
    if request.status != PR.PENDING:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Parts request {request.id} is {request.status.value}.",
        )


def bind_parts_request(
    db: Session,
    *,
    request: models.PartsRequest,
    part_id: int,
    actor_user_id: Optional[str] = None,
) -> models.PartsRequest:
    """Record the operator's choice of catalog part for a request."""
    _require_pending(request)
    part = inventory_services.get_part(db, part_id)
    before = {"part_id": request.part_id}
    request.part_id = part.id
    db.add(request)
    db.flush()

    audit_services.log_event(
        db,
        actor_user_id=actor_user_id,
        entity_type="parts_request",
        entity_id=str(request.id),
        action="bind",
        before=before,
        after={"part_id": part.id, "part_number": part.part_number},
        metadata={"part_description": request.part_description},
    )
    return request


def cancel_parts_request(
    db: Session,
    *,
    request: models.PartsRequest,
    actor_user_id: Optional[str] = None,
) -> models.PartsRequest:
    _require_pending(request)
    request.status = PR.CANCELLED
    db.add(request)
    db.flush()
    audit_services.log_event(
        db,
        actor_user_id=actor_user_id,
        entity_type="parts_request",
        entity_id=str(request.id),
        action="cancel",
        before={"status": PR.PENDING.value},
        after={"status": PR.CANCELLED.value},
    )
    return request


def create_purchase_order_from_requests(
    db: Session,
    *,
    request_ids: Iterable[int],
    supplier_id: Optional[int] = None,
    actor_user_id: Optional[str] = None,
) -> models.PurchaseOrder:
    """
    Draft one PO from pending, bound requests: one line per distinct part
    with the requested quantities summed. The requests become `ordered`.
    """
    request_ids = list(dict.fromkeys(request_ids))
    if not request_ids:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="No parts requests given.")

    requests = (
        db.query(models.PartsRequest)
        .filter(models.PartsRequest.id.in_(request_ids))
        .order_by(models.PartsRequest.id.asc())
        .all()
    )
    missing = sorted(set(request_ids) - {r.id for r in requests})
    if missing:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Parts requests not found: {missing}")

    not_pending = [r.id for r in requests if r.status != PR.PENDING]
    unbound = [r.id for r in requests if not r.is_bound]
    if not_pending or unbound:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"not_pending": not_pending, "unbound": unbound},
        )

    quantities: "OrderedDict[int, int]" = OrderedDict()
    for request in requests:
        quantities[request.part_id] = quantities.get(request.part_id, 0) + request.quantity

    if supplier_id is None:
        # Fall back to the preferred supplier when every part shares one.
        preferred = {inventory_services.get_part(db, pid).supplier_id for pid in quantities}
        if len(preferred) == 1:
            supplier_id = preferred.pop()

    purchase_order = create_purchase_order(
        db,
        payload=schemas.PurchaseOrderCreate(
            supplier_id=supplier_id,
            notes=f"Raised from parts requests {', '.join(str(r.id) for r in requests)}",
            items=[
                schemas.PurchaseOrderItemCreate(part_id=part_id, quantity_ordered=quantity)
                for part_id, quantity in quantities.items()
            ],
        ),
        actor_user_id=actor_user_id,
    )

    for request in requests:
        request.status = PR.ORDERED
        request.purchase_order_id = purchase_order.id
        db.add(request)
    db.flush()
    return purchase_order


# ---------------------------------------------------------------------------
# Replenishment
# ---------------------------------------------------------------------------


def _has_open_request(db: Session, part_id: int) -> bool:
    return (
        db.query(models.PartsRequest.id)
        .filter(
            models.PartsRequest.part_id == part_id,
            models.PartsRequest.status.in_([PR.PENDING, PR.ORDERED]),
        )
        .first()
        is not None
    )


def ensure_reorder_request(
    db: Session,
    *,
    part: inventory_models.Part,
    actor_user_id: Optional[str] = None,
) -> Optional[models.PartsRequest]:
    """Open a reorder request for a low part unless one is already pending or ordered."""
    if _has_open_request(db, part.id):
        return None

    quantity = part.reorder_quantity or DEFAULT_REORDER_QUANTITY
    if quantity <= 0:
        raise InvalidQuantity("reorder_quantity must be greater than zero.", part_id=part.id)

    request = models.PartsRequest(
        part_id=part.id,
        part_description=part.name,
        quantity=quantity,
        source=models.PartsRequestSourceEnum.REORDER,
        status=PR.PENDING,
        requested_by_user_id=actor_user_id,
        notes=f"Stock at {part.quantity}, threshold {part.reorder_threshold}",
    )
    db.add(request)
    db.flush()
    logger.info(
        "Reorder request raised",
        extra={"part_id": part.id, "quantity": quantity, "parts_request_id": request.id},
    )
    return request


def raise_reorder_requests(
    db: Session,
    *,
    actor_user_id: Optional[str] = None,
) -> List[models.PartsRequest]:
    """Sweep the catalog and open reorder requests for every low, auto-reorder part."""
    created: List[models.PartsRequest] = []
    for part in inventory_services.list_low_stock(db):
        if not part.auto_reorder:
            continue
        request = ensure_reorder_request(db, part=part, actor_user_id=actor_user_id)
        if request is not None:
            created.append(request)
    return created
