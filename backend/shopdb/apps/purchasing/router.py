# backend/shopdb/apps/purchasing/router.py

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from shopdb.database import get_db, get_read_db
from shopdb.security import get_current_active_user, require_roles
from shopdb.apps.accounts import models as account_models
from shopdb.apps.inventory import ledger
from shopdb.apps.inventory.ledger import LedgerError
from shopdb.apps.workflow import TransitionError

from . import models, schemas, services

router = APIRouter(prefix="/purchasing", tags=["purchasing"])

PURCHASING_ROLES = [
    account_models.AccountRole.PARTS_MANAGER,
]

REQUEST_ROLES = [
    account_models.AccountRole.PARTS_MANAGER,
    account_models.AccountRole.SERVICE_MANAGER,
    account_models.AccountRole.TECHNICIAN,
]


def _transition_conflict(exc: TransitionError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail={"code": exc.code, "detail": exc.detail},
    )


# ---------------------------------------------------------------------------
# Suppliers
# ---------------------------------------------------------------------------


@router.post("/suppliers", response_model=schemas.SupplierRead, status_code=status.HTTP_201_CREATED)
def create_supplier(
    payload: schemas.SupplierCreate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_roles(*PURCHASING_ROLES)),
):
    supplier = services.create_supplier(db, payload=payload)
    db.commit()
    db.refresh(supplier)
    return supplier


@router.get("/suppliers", response_model=List[schemas.SupplierRead])
def list_suppliers(
    include_inactive: bool = False,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return services.list_suppliers(db, include_inactive=include_inactive)


# ---------------------------------------------------------------------------
# Purchase orders
# ---------------------------------------------------------------------------


@router.post(
    "/purchase-orders",
    response_model=schemas.PurchaseOrderRead,
    status_code=status.HTTP_201_CREATED,
)
def create_purchase_order(
    payload: schemas.PurchaseOrderCreate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_roles(*PURCHASING_ROLES)),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
):
    if not payload.idempotency_key and idempotency_key:
        payload.idempotency_key = idempotency_key
    try:
        purchase_order = services.create_purchase_order(db, payload=payload, actor_user_id=current_user.id)
    except LedgerError as exc:
        db.rollback()
        raise ledger.to_http_exception(exc)
    db.commit()
    db.refresh(purchase_order)
    return purchase_order


@router.get("/purchase-orders", response_model=List[schemas.PurchaseOrderRead])
def list_purchase_orders(
    status_filter: Optional[models.PurchaseOrderStatusEnum] = None,
    supplier_id: Optional[int] = None,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return services.list_purchase_orders(db, status_filter=status_filter, supplier_id=supplier_id)


@router.get("/purchase-orders/{purchase_order_id}", response_model=schemas.PurchaseOrderRead)
def get_purchase_order(
    purchase_order_id: int,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return services.get_purchase_order(db, purchase_order_id)


@router.post("/purchase-orders/{purchase_order_id}/status", response_model=schemas.PurchaseOrderRead)
def update_purchase_order_status(
    purchase_order_id: int,
    payload: schemas.PurchaseOrderStatusUpdate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_roles(*PURCHASING_ROLES)),
):
    purchase_order = services.get_purchase_order(db, purchase_order_id)
    try:
        services.transition_purchase_order(
            db,
            purchase_order=purchase_order,
            to_status=payload.status,
            actor_user_id=current_user.id,
        )
    except TransitionError as exc:
        db.rollback()
        raise _transition_conflict(exc)
    db.commit()
    db.refresh(purchase_order)
    return purchase_order


@router.post("/purchase-orders/{purchase_order_id}/receive", response_model=schemas.ReceiptRead)
def receive_purchase_order(
    purchase_order_id: int,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_roles(*PURCHASING_ROLES)),
):
    try:
        result = ledger.commit_with_retry(
            db,
            lambda: services.receive_purchase_order(
                db,
                purchase_order_id=purchase_order_id,
                actor_user_id=current_user.id,
            ),
        )
    except LedgerError as exc:
        raise ledger.to_http_exception(exc)
    except TransitionError as exc:
        raise _transition_conflict(exc)
    return schemas.ReceiptRead.model_validate(result)


# ---------------------------------------------------------------------------
# Parts requests
# ---------------------------------------------------------------------------


@router.post(
    "/parts-requests",
    response_model=schemas.PartsRequestRead,
    status_code=status.HTTP_201_CREATED,
)
def create_parts_request(
    payload: schemas.PartsRequestCreate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_roles(*REQUEST_ROLES)),
):
    try:
        request = services.create_parts_request(db, payload=payload, actor_user_id=current_user.id)
    except LedgerError as exc:
        db.rollback()
        raise ledger.to_http_exception(exc)
    db.commit()
    db.refresh(request)
    return request


@router.get("/parts-requests", response_model=List[schemas.PartsRequestRead])
def list_parts_requests(
    status_filter: Optional[models.PartsRequestStatusEnum] = None,
    source: Optional[models.PartsRequestSourceEnum] = None,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return services.list_parts_requests(db, status_filter=status_filter, source=source)


@router.get("/parts-requests/{request_id}/suggestions", response_model=schemas.PartsRequestSuggestions)
def suggest_parts_for_request(
    request_id: int,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    request = services.get_parts_request(db, request_id)
    suggestions = services.suggest_parts_for_request(db, request)
    return schemas.PartsRequestSuggestions(
        request_id=request.id,
        part_description=request.part_description,
        suggestions=[schemas.PartSuggestionRead.model_validate(s) for s in suggestions],
    )


@router.post("/parts-requests/{request_id}/bind", response_model=schemas.PartsRequestRead)
def bind_parts_request(
    request_id: int,
    payload: schemas.PartsRequestBind,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_roles(*REQUEST_ROLES)),
):
    request = services.get_parts_request(db, request_id)
    try:
        services.bind_parts_request(db, request=request, part_id=payload.part_id, actor_user_id=current_user.id)
    except LedgerError as exc:
        db.rollback()
        raise ledger.to_http_exception(exc)
    db.commit()
    db.refresh(request)
    return request


@router.post("/parts-requests/{request_id}/cancel", response_model=schemas.PartsRequestRead)
def cancel_parts_request(
    request_id: int,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_roles(*REQUEST_ROLES)),
):
    request = services.get_parts_request(db, request_id)
    services.cancel_parts_request(db, request=request, actor_user_id=current_user.id)
    db.commit()
    db.refresh(request)
    return request


@router.post(
    "/parts-requests/order",
    response_model=schemas.PurchaseOrderRead,
    status_code=status.HTTP_201_CREATED,
)
def order_parts_requests(
    payload: schemas.OrderFromRequests,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_roles(*PURCHASING_ROLES)),
):
    try:
        purchase_order = services.create_purchase_order_from_requests(
            db,
            request_ids=payload.request_ids,
            supplier_id=payload.supplier_id,
            actor_user_id=current_user.id,
        )
    except LedgerError as exc:
        db.rollback()
        raise ledger.to_http_exception(exc)
    db.commit()
    db.refresh(purchase_order)
    return purchase_order


@router.post("/reorder-sweep", response_model=List[schemas.PartsRequestRead])
def reorder_sweep(
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_roles(*PURCHASING_ROLES)),
):
    created = services.raise_reorder_requests(db, actor_user_id=current_user.id)
    db.commit()
    for request in created:
        db.refresh(request)
    return created
