# backend/shopdb/apps/work/router.py

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from sqlalchemy.orm import Session

from shopdb.database import get_db, get_read_db
from shopdb.security import get_current_active_user, require_roles
from shopdb.apps.accounts import models as account_models
from shopdb.apps.accounts.services import IdempotencyError
from shopdb.apps.inventory import ledger
from shopdb.apps.inventory import services as inventory_services
from shopdb.apps.inventory.ledger import LedgerError
from shopdb.apps.workflow import TransitionError

from . import models, schemas, services

router = APIRouter(prefix="/work-orders", tags=["work_orders"])

WORK_ORDER_ROLES = [
    account_models.AccountRole.SERVICE_MANAGER,
    account_models.AccountRole.FRONT_DESK,
]

WORKSHOP_ROLES = [
    account_models.AccountRole.SERVICE_MANAGER,
    account_models.AccountRole.TECHNICIAN,
    account_models.AccountRole.PARTS_MANAGER,
]


@router.post("", response_model=schemas.WorkOrderRead, status_code=status.HTTP_201_CREATED)
def create_work_order(
    payload: schemas.WorkOrderCreate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_roles(*WORK_ORDER_ROLES)),
):
    work_order = services.create_work_order(db, payload=payload, actor_user_id=current_user.id)
    db.commit()
    db.refresh(work_order)
    return work_order


@router.get("", response_model=List[schemas.WorkOrderRead])
def list_work_orders(
    status_filter: Optional[models.WorkOrderStatusEnum] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return services.list_work_orders(db, status_filter=status_filter, skip=skip, limit=limit)


@router.get("/{work_order_id}", response_model=schemas.WorkOrderRead)
def get_work_order(
    work_order_id: int,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return services.get_work_order(db, work_order_id)


@router.post("/{work_order_id}/status", response_model=schemas.WorkOrderRead)
def update_work_order_status(
    work_order_id: int,
    payload: schemas.WorkOrderStatusUpdate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_roles(*WORKSHOP_ROLES)),
):
    work_order = services.get_work_order(db, work_order_id)
    try:
        services.transition_work_order(
            db,
            work_order=work_order,
            to_status=payload.status,
            actor_user_id=current_user.id,
        )
    except TransitionError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": exc.code, "detail": exc.detail},
        )
    db.commit()
    db.refresh(work_order)
    return work_order


@router.post(
    "/{work_order_id}/parts",
    response_model=schemas.ConsumptionRead,
    status_code=status.HTTP_201_CREATED,
)
def consume_part(
    work_order_id: int,
    payload: schemas.ConsumePartRequest,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_roles(*WORKSHOP_ROLES)),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
):
    if not payload.idempotency_key and idempotency_key:
        payload.idempotency_key = idempotency_key
    try:
        result = ledger.commit_with_retry(
            db,
            lambda: services.consume_part(
                db,
                work_order_id=work_order_id,
                payload=payload,
                actor_user_id=current_user.id,
            ),
        )
    except LedgerError as exc:
        raise ledger.to_http_exception(exc)
    except IdempotencyError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))

    db.refresh(result.line)
    return {
        "transaction": result.transaction,
        "line": result.line,
        "part": inventory_services.get_part(db, payload.part_id, fresh=True),
        "replayed": result.replayed,
    }


@router.get("/{work_order_id}/billing-lines", response_model=schemas.BillingLinesRead)
def list_billing_lines(
    work_order_id: int,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return {
        "work_order_id": work_order_id,
        "lines": services.list_billing_lines(db, work_order_id),
        "parts_total": services.parts_total(db, work_order_id),
    }
