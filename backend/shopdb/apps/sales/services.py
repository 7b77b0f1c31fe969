# backend/shopdb/apps/sales/services.py

from __future__ import annotations

import logging
import os
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

from fastapi import HTTPException, status
from sqlalchemy import func
from sqlalchemy.orm import Session

from shopdb.apps.inventory import ledger
from shopdb.apps.inventory import models as inventory_models
from shopdb.apps.inventory import services as inventory_services
from shopdb.utils.identifiers import generate_document_number

from . import models, schemas

logger = logging.getLogger(__name__)

POS_TAX_RATE = Decimal(os.getenv("POS_TAX_RATE", "0.10"))

CENT = Decimal("0.01")


def _money(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def _next_sale_number(db: Session) -> str:
    today = datetime.utcnow()
    prefix = f"SALE-{today:%Y%m%d}-"
    issued = db.query(func.count(models.Sale.id)).filter(models.Sale.sale_number.like(f"{prefix}%")).scalar()
    return generate_document_number("SALE", (issued or 0) + 1, on=today)


def get_sale(db: Session, sale_id: int) -> models.Sale:
    sale = db.get(models.Sale, sale_id)
    if not sale:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Sale not found.")
    return sale


def _line_price(part: inventory_models.Part, override: Optional[Decimal]) -> Decimal:
    if override is not None:
        if Decimal(override) < 0:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="unit_price must be >= 0.")
        return _money(override)
    if part.sell_price is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Part {part.part_number} has no sell price; supply a unit price.",
        )
    return _money(part.sell_price)


def complete_sale(
    db: Session,
    *,
    payload: schemas.SaleCreate,
    actor_user_id: Optional[str] = None,
    tax_rate: Optional[Decimal] = None,
) -> models.Sale:
    """
    Record a counter sale and take its parts out of stock.

    Every line's stock movement and the sale itself share one SAVEPOINT:
    if any line is short or unpriced, nothing is written.
    """
    if payload.idempotency_key:
        existing = db.query(models.Sale).filter(models.Sale.idempotency_key == payload.idempotency_key).first()
        if existing:
            return existing

    rate = POS_TAX_RATE if tax_rate is None else Decimal(tax_rate)

    with db.begin_nested():
        sale = models.Sale(
            sale_number=_next_sale_number(db),
            customer_name=payload.customer_name,
            subtotal=Decimal("0"),
            tax=Decimal("0"),
            total=Decimal("0"),
            idempotency_key=payload.idempotency_key,
            created_by_user_id=actor_user_id,
        )
        db.add(sale)
        db.flush()

        subtotal = Decimal("0")
        lines: List[models.SaleLine] = []
        for item in payload.lines:
            part = inventory_services.get_part(db, item.part_id)
            quantity = ledger.require_positive_quantity(item.quantity, part_id=part.id)
            unit_price = _line_price(part, item.unit_price)
            ledger.apply_transaction(
                db,
                part_id=part.id,
                transaction_type=inventory_models.TransactionTypeEnum.USED,
                quantity_delta=-quantity,
                reference_type=inventory_models.ReferenceTypeEnum.POS_SALE.value,
                reference_id=str(sale.id),
                actor_user_id=actor_user_id,
                notes=f"Sold on {sale.sale_number}",
            )
            line_total = _money(unit_price * quantity)
            lines.append(
                models.SaleLine(
                    part_id=part.id,
                    quantity=quantity,
                    unit_price=unit_price,
                    total_price=line_total,
                )
            )
            subtotal += line_total

        sale.lines = lines
        sale.subtotal = _money(subtotal)
        sale.tax = _money(subtotal * rate)
        sale.total = _money(sale.subtotal + sale.tax)
        db.add(sale)
        db.flush()

    logger.info(
        "Sale completed",
        extra={"sale_id": sale.id, "lines": len(lines), "total": str(sale.total), "actor_user_id": actor_user_id},
    )
    return sale
