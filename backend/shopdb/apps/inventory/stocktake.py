"""
Stocktake reconciliation.

A session is an in-memory working set of counts. Saving it writes one
`adjustment` per part whose count differs from the system quantity the count
was taken against, then the session is discarded. Each part commits on its
own; a failed line is reported and the rest of the batch carries on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from shopdb.apps.accounts.services import IdempotencyError
from shopdb.utils.identifiers import generate_uuid7

from . import ledger, models, services
from .gateways import StockGateway, StockMovement
from .ledger import InvalidQuantity, LedgerError

logger = logging.getLogger(__name__)


@dataclass
class StocktakeLine:
    part_id: int
    counted_quantity: int
    # Balance shown to the counter; None means "whatever it is when saved".
    system_quantity: Optional[int] = None


@dataclass
class StocktakeSession:
    id: str = field(default_factory=generate_uuid7)
    lines: Dict[int, StocktakeLine] = field(default_factory=dict)

    def count(self, part_id: int, counted_quantity: int, *, system_quantity: Optional[int] = None) -> StocktakeLine:
        """Record a count. Counting the same part again replaces the earlier count."""
        line = StocktakeLine(part_id=part_id, counted_quantity=counted_quantity, system_quantity=system_quantity)
        self.lines[part_id] = line
        return line

    def scan(self, db: Session, code: str, counted_quantity: int) -> StocktakeLine:
        part = services.resolve_scan(db, code)
        existing = self.lines.get(part.id)
        system_quantity = existing.system_quantity if existing else part.quantity
        return self.count(part.id, counted_quantity, system_quantity=system_quantity)

    @classmethod
    def from_lines(cls, lines: Iterable[StocktakeLine], *, session_id: Optional[str] = None) -> "StocktakeSession":
        session = cls(id=session_id) if session_id else cls()
        for line in lines:
            session.lines[line.part_id] = line
        return session


class StocktakeReconciliation(StockGateway):
    transaction_type = models.TransactionTypeEnum.ADJUSTMENT

    def __init__(self, session_id: str, line: StocktakeLine) -> None:
        self.session_id = session_id
        self.line = line

    @property
    def target_part_id(self) -> int:
        return self.line.part_id

    def propose(self, db: Session) -> Optional[StockMovement]:
        counted = self.line.counted_quantity
        if not ledger.is_whole_number(counted) or counted < 0:
            raise InvalidQuantity("counted_quantity must be a whole number >= 0.", part_id=self.line.part_id)
        part = services.get_part(db, self.line.part_id, fresh=True)
        system = self.line.system_quantity if self.line.system_quantity is not None else part.quantity
        if counted == system:
            return None
        return StockMovement(
            part_id=part.id,
            transaction_type=models.TransactionTypeEnum.ADJUSTMENT,
            quantity_delta=counted - system,
            reference_type=models.ReferenceTypeEnum.STOCKTAKE.value,
            reference_id=self.session_id,
            notes=f"Stocktake adjustment (was {system}, now {counted})",
            expected_quantity=system,
        )


@dataclass
class StocktakeFailure:
    part_id: int
    code: str
    message: str
    available: Optional[int] = None


@dataclass
class StocktakeResult:
    session_id: str
    applied: List[models.InventoryTransaction] = field(default_factory=list)
    unchanged: List[int] = field(default_factory=list)
    failed: List[StocktakeFailure] = field(default_factory=list)


def save_stocktake(
    db: Session,
    session: StocktakeSession,
    *,
    actor_user_id: Optional[str] = None,
) -> StocktakeResult:
    """
    Apply and commit every differing count. Lines counted against a balance
    that has since moved are reported as failed rather than overwritten.
    """
    result = StocktakeResult(session_id=session.id)

    for part_id, line in session.lines.items():
        gateway = StocktakeReconciliation(session.id, line)
        key = f"stocktake:{session.id}:part:{part_id}"
        try:
            entry = ledger.commit_with_retry(
                db,
                lambda: gateway.submit(db, actor_user_id=actor_user_id, idempotency_key=key),
                retry_stale=False,
            )
        except (LedgerError, IdempotencyError) as exc:
            code = getattr(exc, "code", "idempotency_conflict")
            available = ledger.current_quantity(db, part_id)
            logger.warning(
                "Stocktake line failed",
                extra={"session_id": session.id, "part_id": part_id, "code": code},
            )
            result.failed.append(
                StocktakeFailure(part_id=part_id, code=code, message=str(exc), available=available)
            )
            continue

        if entry is None:
            result.unchanged.append(part_id)
        else:
            result.applied.append(entry)

    logger.info(
        "Stocktake saved",
        extra={
            "session_id": session.id,
            "applied": len(result.applied),
            "unchanged": len(result.unchanged),
            "failed": len(result.failed),
        },
    )
    return result
