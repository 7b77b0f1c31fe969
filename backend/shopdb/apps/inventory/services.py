from __future__ import annotations

import difflib
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional

from fastapi import HTTPException, status
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from shopdb.apps.audit import services as audit_services

from . import models, reorder, schemas
from .ledger import InvalidQuantity, PartNotFound, is_whole_number

logger = logging.getLogger(__name__)

_AUDITED_FIELDS = (
    "name",
    "description",
    "cost_price",
    "sell_price",
    "reorder_threshold",
    "reorder_quantity",
    "auto_reorder",
    "location",
    "barcode",
    "supplier_id",
)


def normalise_part_number(value: str) -> str:
    return (value or "").strip().upper()


def _normalise_barcode(value: Optional[str]) -> Optional[str]:
    value = (value or "").strip()
    return value or None


def _audit_value(value):
    if isinstance(value, Decimal):
        return str(value)
    return value


def _require_non_negative(value, field: str) -> None:
    if not is_whole_number(value) or value < 0:
        raise InvalidQuantity(f"{field} must be a whole number >= 0.")


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


def get_part(db: Session, part_id: int, *, fresh: bool = False) -> models.Part:
    """Load a part or raise PartNotFound. `fresh` re-reads the row over the identity map."""
    part = db.get(models.Part, part_id, populate_existing=fresh)
    if not part:
        raise PartNotFound(f"Part {part_id} not found.", part_id=part_id)
    return part


def get_part_by_number(db: Session, part_number: str) -> Optional[models.Part]:
    return (
        db.query(models.Part)
        .filter(models.Part.part_number == normalise_part_number(part_number))
        .first()
    )


def _ensure_barcode_free(db: Session, barcode: Optional[str], *, part_id: Optional[int] = None) -> None:
    if not barcode:
        return
    query = db.query(models.Part).filter(models.Part.barcode == barcode)
    if part_id is not None:
        query = query.filter(models.Part.id != part_id)
    if query.first():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Barcode already assigned to another part.")


def create_part(
    db: Session,
    *,
    payload: schemas.PartCreate,
    actor_user_id: Optional[str] = None,
) -> models.Part:
    part_number = normalise_part_number(payload.part_number)
    if not part_number:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Part number is required.")
    _require_non_negative(payload.opening_quantity, "opening_quantity")
    _require_non_negative(payload.reorder_threshold, "reorder_threshold")

    if get_part_by_number(db, part_number):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Part number already exists.")
    barcode = _normalise_barcode(payload.barcode)
    _ensure_barcode_free(db, barcode)

    part = models.Part(
        part_number=part_number,
        name=payload.name.strip(),
        description=payload.description,
        quantity=payload.opening_quantity,
        opening_quantity=payload.opening_quantity,
        cost_price=payload.cost_price,
        sell_price=payload.sell_price,
        reorder_threshold=payload.reorder_threshold,
        reorder_quantity=payload.reorder_quantity,
        auto_reorder=payload.auto_reorder,
        location=payload.location,
        barcode=barcode,
        supplier_id=payload.supplier_id,
    )
    db.add(part)
    db.flush()

    audit_services.log_event(
        db,
        actor_user_id=actor_user_id,
        entity_type="part",
        entity_id=str(part.id),
        action="create",
        summary=part.name,
        after={"part_number": part.part_number, "opening_quantity": part.opening_quantity},
    )
    return part


def update_part(
    db: Session,
    *,
    part: models.Part,
    payload: schemas.PartUpdate,
    actor_user_id: Optional[str] = None,
) -> models.Part:
    """
    Edit catalog fields. Quantity is not editable here; stock only moves
    through the ledger. Price changes never touch existing billing lines.
    """
    data = payload.model_dump(exclude_unset=True)
    if "barcode" in data:
        data["barcode"] = _normalise_barcode(data["barcode"])
        _ensure_barcode_free(db, data["barcode"], part_id=part.id)
    if "reorder_threshold" in data:
        _require_non_negative(data["reorder_threshold"], "reorder_threshold")

    before: Dict[str, object] = {}
    after: Dict[str, object] = {}
    for field, value in data.items():
        if field not in _AUDITED_FIELDS:
            continue
        current = getattr(part, field)
        if current == value:
            continue
        before[field] = _audit_value(current)
        after[field] = _audit_value(value)
        setattr(part, field, value)

    if not after:
        return part

    db.add(part)
    db.flush()

    price_changed = "cost_price" in after or "sell_price" in after
    audit_services.log_event(
        db,
        actor_user_id=actor_user_id,
        entity_type="part",
        entity_id=str(part.id),
        action="update",
        summary="price change" if price_changed else None,
        before=before,
        after=after,
        critical=price_changed,
    )
    return part


def list_parts(
    db: Session,
    *,
    search: Optional[str] = None,
    stock_status: Optional[reorder.StockStatusEnum] = None,
    skip: int = 0,
    limit: int = 100,
) -> List[models.Part]:
    query = db.query(models.Part)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(
            or_(
                models.Part.part_number.ilike(like),
                models.Part.name.ilike(like),
                models.Part.barcode.ilike(like),
            )
        )
    if stock_status == reorder.StockStatusEnum.OUT_OF_STOCK:
        query = query.filter(models.Part.quantity <= 0)
    elif stock_status == reorder.StockStatusEnum.LOW_STOCK:
        query = query.filter(models.Part.quantity > 0, models.Part.quantity <= models.Part.reorder_threshold)
    elif stock_status == reorder.StockStatusEnum.IN_STOCK:
        query = query.filter(models.Part.quantity > models.Part.reorder_threshold, models.Part.quantity > 0)
    return query.order_by(models.Part.part_number.asc()).offset(skip).limit(limit).all()


# ---------------------------------------------------------------------------
# Scan resolution and suggestions
# ---------------------------------------------------------------------------


def resolve_scan(db: Session, code: str) -> models.Part:
    """Resolve a scanned string: exact barcode first, then part number."""
    raw = (code or "").strip()
    if not raw:
        raise PartNotFound("Empty scan.")
    part = db.query(models.Part).filter(models.Part.barcode == raw).first()
    if part is None:
        part = get_part_by_number(db, raw)
    if part is None:
        raise PartNotFound(f"No part matches scan {raw!r}.")
    return part


@dataclass(frozen=True)
class PartSuggestion:
    part: models.Part
    score: float


def _similarity(text: str, part: models.Part) -> float:
    needle = text.lower()
    scores = [
        difflib.SequenceMatcher(None, needle, (part.name or "").lower()).ratio(),
        difflib.SequenceMatcher(None, needle, (part.part_number or "").lower()).ratio(),
    ]
    if needle in (part.name or "").lower() or needle in (part.part_number or "").lower():
        scores.append(0.9)
    return max(scores)


def suggest_parts(
    db: Session,
    text: str,
    *,
    limit: int = 5,
    min_score: float = 0.4,
) -> List[PartSuggestion]:
    """
    Rank catalog entries against free text. Suggestions only: the operator
    has to pick one explicitly before anything is bound or consumed.
    """
    text = (text or "").strip()
    if not text:
        return []

    words = [w for w in text.split() if len(w) >= 3] or [text]
    filters = []
    for word in words:
        like = f"%{word}%"
        filters.append(models.Part.name.ilike(like))
        filters.append(models.Part.part_number.ilike(like))
    candidates = db.query(models.Part).filter(or_(*filters)).limit(200).all()

    ranked = [PartSuggestion(part=p, score=round(_similarity(text, p), 3)) for p in candidates]
    ranked = [s for s in ranked if s.score >= min_score]
    ranked.sort(key=lambda s: (-s.score, s.part.part_number))
    return ranked[:limit]


# ---------------------------------------------------------------------------
# Read models
# ---------------------------------------------------------------------------


def list_transactions(
    db: Session,
    part_id: int,
    *,
    skip: int = 0,
    limit: int = 100,
) -> List[models.InventoryTransaction]:
    get_part(db, part_id)
    return (
        db.query(models.InventoryTransaction)
        .filter(models.InventoryTransaction.part_id == part_id)
        .order_by(models.InventoryTransaction.created_at.desc(), models.InventoryTransaction.id.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )


def list_low_stock(db: Session) -> List[models.Part]:
    return (
        db.query(models.Part)
        .filter(models.Part.quantity <= models.Part.reorder_threshold)
        .order_by(models.Part.quantity.asc(), models.Part.part_number.asc())
        .all()
    )


def stock_summary(db: Session) -> dict:
    out_of_stock = db.query(func.count(models.Part.id)).filter(models.Part.quantity <= 0).scalar() or 0
    low_stock = (
        db.query(func.count(models.Part.id))
        .filter(models.Part.quantity > 0, models.Part.quantity <= models.Part.reorder_threshold)
        .scalar()
        or 0
    )
    total = db.query(func.count(models.Part.id)).scalar() or 0
    value = (
        db.query(func.coalesce(func.sum(models.Part.quantity * models.Part.cost_price), 0))
        .filter(models.Part.cost_price.isnot(None))
        .scalar()
    )
    return {
        "total_parts": total,
        "in_stock": total - low_stock - out_of_stock,
        "low_stock": low_stock,
        "out_of_stock": out_of_stock,
        "stock_value": Decimal(str(value or 0)).quantize(Decimal("0.01")),
    }
