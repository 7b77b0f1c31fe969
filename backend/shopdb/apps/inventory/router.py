from __future__ import annotations

from typing import Callable, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from sqlalchemy.orm import Session

from shopdb.database import get_db, get_read_db
from shopdb.security import get_current_active_user, require_roles
from shopdb.apps.accounts import models as account_models
from shopdb.apps.accounts import services as account_services

from . import gateways, ledger, reorder, schemas, services, stocktake
from .ledger import LedgerError

router = APIRouter(prefix="/inventory", tags=["inventory"])

STOCK_WRITE_ROLES = [
    account_models.AccountRole.PARTS_MANAGER,
    account_models.AccountRole.SERVICE_MANAGER,
]

STOCK_ISSUE_ROLES = STOCK_WRITE_ROLES + [
    account_models.AccountRole.TECHNICIAN,
    account_models.AccountRole.FRONT_DESK,
]


def _run(
    db: Session,
    operation: Callable,
    *,
    scope: str,
    idempotency_key: Optional[str],
    payload: dict,
):
    """Claim the request key, run the gateway and commit, mapping domain errors to HTTP."""

    def _unit():
        if idempotency_key:
            account_services.register_idempotency_key(db, scope=scope, key=idempotency_key, payload=payload)
        return operation()

    try:
        return ledger.commit_with_retry(db, _unit)
    except LedgerError as exc:
        raise ledger.to_http_exception(exc)
    except account_services.IdempotencyError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


def _ledger_key(scope: str, key: Optional[str]) -> Optional[str]:
    return f"{scope}:{key}" if key else None


def _movement_result(db: Session, part_id: int, entry) -> dict:
    return {"transaction": entry, "part": services.get_part(db, part_id, fresh=True)}


def _get_part_or_404(db: Session, part_id: int):
    try:
        return services.get_part(db, part_id)
    except LedgerError as exc:
        raise ledger.to_http_exception(exc)


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


@router.post("/parts", response_model=schemas.PartRead, status_code=status.HTTP_201_CREATED)
def create_part(
    payload: schemas.PartCreate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_roles(*STOCK_WRITE_ROLES)),
):
    try:
        part = services.create_part(db, payload=payload, actor_user_id=current_user.id)
    except LedgerError as exc:
        db.rollback()
        raise ledger.to_http_exception(exc)
    db.commit()
    db.refresh(part)
    return part


@router.get("/parts", response_model=List[schemas.PartRead])
def list_parts(
    search: Optional[str] = None,
    stock_status: Optional[reorder.StockStatusEnum] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return services.list_parts(db, search=search, stock_status=stock_status, skip=skip, limit=limit)


@router.get("/parts/suggest", response_model=List[schemas.PartSuggestionRead])
def suggest_parts(
    q: str = Query(..., min_length=1),
    limit: int = Query(5, ge=1, le=20),
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return [schemas.PartSuggestionRead.model_validate(s) for s in services.suggest_parts(db, q, limit=limit)]


@router.get("/parts/{part_id}", response_model=schemas.PartRead)
def get_part(
    part_id: int,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return _get_part_or_404(db, part_id)


@router.patch("/parts/{part_id}", response_model=schemas.PartRead)
def update_part(
    part_id: int,
    payload: schemas.PartUpdate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_roles(*STOCK_WRITE_ROLES)),
):
    part = _get_part_or_404(db, part_id)
    try:
        part = services.update_part(db, part=part, payload=payload, actor_user_id=current_user.id)
    except LedgerError as exc:
        db.rollback()
        raise ledger.to_http_exception(exc)
    db.commit()
    db.refresh(part)
    return part


@router.get("/parts/{part_id}/transactions", response_model=List[schemas.InventoryTransactionRead])
def list_part_transactions(
    part_id: int,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    try:
        return services.list_transactions(db, part_id, skip=skip, limit=limit)
    except LedgerError as exc:
        raise ledger.to_http_exception(exc)


@router.get("/parts/{part_id}/reconcile", response_model=schemas.ReconciliationRead)
def reconcile_part(
    part_id: int,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(require_roles(*STOCK_WRITE_ROLES)),
):
    try:
        return schemas.ReconciliationRead.model_validate(ledger.reconcile(db, part_id))
    except LedgerError as exc:
        raise ledger.to_http_exception(exc)


@router.get("/scan/{code}", response_model=schemas.PartRead)
def resolve_scan(
    code: str,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    try:
        return services.resolve_scan(db, code)
    except LedgerError as exc:
        raise ledger.to_http_exception(exc)


# ---------------------------------------------------------------------------
# Gateways
# ---------------------------------------------------------------------------


@router.post("/parts/{part_id}/adjust", response_model=schemas.StockMovementResult)
def adjust_part(
    part_id: int,
    payload: schemas.AdjustRequest,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_roles(*STOCK_WRITE_ROLES)),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
):
    if not payload.idempotency_key and idempotency_key:
        payload.idempotency_key = idempotency_key
    gateway = gateways.ManualAdjustment(part_id, payload.new_quantity, notes=payload.notes)
    entry = _run(
        db,
        lambda: gateway.submit(
            db,
            actor_user_id=current_user.id,
            idempotency_key=_ledger_key("inventory.adjust", payload.idempotency_key),
        ),
        scope="inventory.adjust",
        idempotency_key=payload.idempotency_key,
        payload={"part_id": part_id, "new_quantity": payload.new_quantity},
    )
    return _movement_result(db, part_id, entry)


@router.post("/parts/{part_id}/check-in", response_model=schemas.StockMovementResult)
def check_in_part(
    part_id: int,
    payload: schemas.CheckInRequest,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_roles(*STOCK_WRITE_ROLES)),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
):
    if not payload.idempotency_key and idempotency_key:
        payload.idempotency_key = idempotency_key
    gateway = gateways.BarcodeCheckIn(part_id, payload.quantity, notes=payload.notes)
    entry = _run(
        db,
        lambda: gateway.submit(
            db,
            actor_user_id=current_user.id,
            idempotency_key=_ledger_key("inventory.check_in", payload.idempotency_key),
        ),
        scope="inventory.check_in",
        idempotency_key=payload.idempotency_key,
        payload={"part_id": part_id, "quantity": payload.quantity},
    )
    return _movement_result(db, part_id, entry)


@router.post("/parts/{part_id}/check-out", response_model=schemas.StockMovementResult)
def check_out_part(
    part_id: int,
    payload: schemas.CheckOutRequest,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_roles(*STOCK_ISSUE_ROLES)),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
):
    if not payload.idempotency_key and idempotency_key:
        payload.idempotency_key = idempotency_key
    gateway = gateways.BarcodeCheckOut(
        part_id,
        payload.quantity,
        work_order_id=payload.work_order_id,
        notes=payload.notes,
    )
    entry = _run(
        db,
        lambda: gateway.submit(
            db,
            actor_user_id=current_user.id,
            idempotency_key=_ledger_key("inventory.check_out", payload.idempotency_key),
        ),
        scope="inventory.check_out",
        idempotency_key=payload.idempotency_key,
        payload={"part_id": part_id, "quantity": payload.quantity, "work_order_id": payload.work_order_id},
    )
    return _movement_result(db, part_id, entry)


@router.post("/parts/{part_id}/return", response_model=schemas.StockMovementResult)
def return_part(
    part_id: int,
    payload: schemas.ReturnRequest,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_roles(*STOCK_ISSUE_ROLES)),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
):
    if not payload.idempotency_key and idempotency_key:
        payload.idempotency_key = idempotency_key
    gateway = gateways.PartReturn(
        part_id,
        payload.quantity,
        work_order_id=payload.work_order_id,
        notes=payload.notes,
    )
    entry = _run(
        db,
        lambda: gateway.submit(
            db,
            actor_user_id=current_user.id,
            idempotency_key=_ledger_key("inventory.return", payload.idempotency_key),
        ),
        scope="inventory.return",
        idempotency_key=payload.idempotency_key,
        payload={"part_id": part_id, "quantity": payload.quantity, "work_order_id": payload.work_order_id},
    )
    return _movement_result(db, part_id, entry)


@router.post("/stocktake", response_model=schemas.StocktakeResultRead)
def save_stocktake(
    payload: schemas.StocktakeRequest,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_roles(*STOCK_WRITE_ROLES)),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
):
    # Per-part ledger keys derive from the session id, so a keyed retry replays line by line.
    if idempotency_key:
        try:
            account_services.register_idempotency_key(
                db,
                scope="inventory.stocktake",
                key=idempotency_key,
                payload=payload.model_dump(mode="json"),
            )
            db.commit()
        except account_services.IdempotencyError as exc:
            db.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    session = stocktake.StocktakeSession.from_lines(
        (
            stocktake.StocktakeLine(
                part_id=line.part_id,
                counted_quantity=line.counted_quantity,
                system_quantity=line.system_quantity,
            )
            for line in payload.lines
        ),
        session_id=payload.session_id or idempotency_key,
    )
    result = stocktake.save_stocktake(db, session, actor_user_id=current_user.id)
    return schemas.StocktakeResultRead.model_validate(result)


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


@router.get("/low-stock", response_model=List[schemas.PartRead])
def list_low_stock(
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return services.list_low_stock(db)


@router.get("/summary", response_model=schemas.StockSummaryRead)
def stock_summary(
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return services.stock_summary(db)


@router.get("/reconciliation", response_model=List[schemas.ReconciliationRead])
def reconciliation_report(
    unbalanced_only: bool = False,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(require_roles(*STOCK_WRITE_ROLES)),
):
    report = ledger.reconcile_all(db)
    if unbalanced_only:
        report = [row for row in report if not row.balanced]
    return [schemas.ReconciliationRead.model_validate(row) for row in report]
