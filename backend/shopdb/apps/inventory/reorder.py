"""
Reorder signal.

`is_low_stock` is a pure predicate over a part's current balance. The ledger
calls `evaluate` after every successful apply, with the post-transaction
quantity already loaded, so readers never see a signal computed from a stale
balance.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


class StockStatusEnum(str, enum.Enum):
    IN_STOCK = "in_stock"
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"


def is_low_stock(part: Any) -> bool:
    return part.quantity <= part.reorder_threshold


def stock_status(part: Any) -> StockStatusEnum:
    if part.quantity <= 0:
        return StockStatusEnum.OUT_OF_STOCK
    if is_low_stock(part):
        return StockStatusEnum.LOW_STOCK
    return StockStatusEnum.IN_STOCK


@dataclass(frozen=True)
class ReorderSignal:
    part_id: int
    quantity: int
    reorder_threshold: int
    low_stock: bool
    crossed: bool  # went from above threshold to at/below it on this apply


def evaluate(
    db: Session,
    *,
    part: Any,
    quantity_before: int,
    actor_user_id: Optional[str],
) -> ReorderSignal:
    low = is_low_stock(part)
    signal = ReorderSignal(
        part_id=part.id,
        quantity=part.quantity,
        reorder_threshold=part.reorder_threshold,
        low_stock=low,
        crossed=low and quantity_before > part.reorder_threshold,
    )
    if signal.crossed:
        logger.info(
            "Part dropped to reorder threshold",
            extra={"part_id": part.id, "quantity": part.quantity, "reorder_threshold": part.reorder_threshold},
        )
    if low and part.auto_reorder:
        _open_reorder_request(db, part=part, actor_user_id=actor_user_id)
    return signal


def _open_reorder_request(db: Session, *, part: Any, actor_user_id: Optional[str]) -> None:
    from shopdb.apps.purchasing import services as purchasing_services

    try:
        with db.begin_nested():
            purchasing_services.ensure_reorder_request(db, part=part, actor_user_id=actor_user_id)
    except Exception:
        # The stock movement stands; the sweep job picks the part up later.
        logger.warning("Failed to open reorder request", extra={"part_id": part.id}, exc_info=True)
