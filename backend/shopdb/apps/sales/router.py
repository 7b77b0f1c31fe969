from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, status
from sqlalchemy.orm import Session

from shopdb.database import get_db, get_read_db
from shopdb.security import get_current_active_user, require_roles
from shopdb.apps.accounts import models as account_models
from shopdb.apps.inventory import ledger
from shopdb.apps.inventory.ledger import LedgerError

from . import schemas, services

router = APIRouter(prefix="/sales", tags=["sales"])

SALES_ROLES = [
    account_models.AccountRole.FRONT_DESK,
    account_models.AccountRole.PARTS_MANAGER,
    account_models.AccountRole.SERVICE_MANAGER,
]


@router.post("", response_model=schemas.SaleRead, status_code=status.HTTP_201_CREATED)
def complete_sale(
    payload: schemas.SaleCreate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_roles(*SALES_ROLES)),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
):
    if not payload.idempotency_key and idempotency_key:
        payload.idempotency_key = idempotency_key
    try:
        sale = ledger.commit_with_retry(
            db,
            lambda: services.complete_sale(db, payload=payload, actor_user_id=current_user.id),
        )
    except LedgerError as exc:
        raise ledger.to_http_exception(exc)
    db.refresh(sale)
    return sale


@router.get("/{sale_id}", response_model=schemas.SaleRead)
def get_sale(
    sale_id: int,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return services.get_sale(db, sale_id)
