"""
Stock ledger.

`apply_transaction` is the single entry point that changes a part's quantity.
It applies the delta with one conditional UPDATE (the row is only touched if
the result stays >= 0, and optionally only if it still holds an expected
value) and appends the transaction row inside the same SAVEPOINT, so the
balance and the log move together or not at all. Concurrent applies against
the same part serialise on that row; different parts do not contend.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, TypeVar, Union

import sqlalchemy as sa
from fastapi import HTTPException, status
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from shopdb.apps.accounts.services import IdempotencyError

from . import models, reorder

logger = logging.getLogger(__name__)

LEDGER_WRITE_ATTEMPTS = int(os.getenv("LEDGER_WRITE_ATTEMPTS", "3"))
LEDGER_RETRY_BACKOFF_SEC = float(os.getenv("LEDGER_RETRY_BACKOFF_SEC", "0.05"))

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class LedgerError(Exception):
    """Base class for stock ledger rejections and failures."""

    code = "ledger_error"
    http_status = status.HTTP_400_BAD_REQUEST
    retryable = False

    def __init__(self, message: str, *, part_id: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.part_id = part_id

    def to_detail(self) -> dict:
        detail = {"code": self.code, "message": self.message}
        if self.part_id is not None:
            detail["part_id"] = self.part_id
        return detail


class PartNotFound(LedgerError):
    code = "part_not_found"
    http_status = status.HTTP_404_NOT_FOUND


class InvalidQuantity(LedgerError):
    code = "invalid_quantity"
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY


class InsufficientStock(LedgerError):
    """Raised when an apply would take a part below zero."""

    code = "insufficient_stock"
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, *, part_id: int, requested: int, available: int) -> None:
        super().__init__(
            f"Only {available} in stock; cannot take {requested}.",
            part_id=part_id,
        )
        self.requested = requested
        self.available = available

    def to_detail(self) -> dict:
        detail = super().to_detail()
        detail.update({"requested": self.requested, "available": self.available})
        return detail


class DuplicateReceipt(LedgerError):
    code = "duplicate_receipt"
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, purchase_order_id: int) -> None:
        super().__init__(f"Purchase order {purchase_order_id} has already been received.")
        self.purchase_order_id = purchase_order_id

    def to_detail(self) -> dict:
        detail = super().to_detail()
        detail["purchase_order_id"] = self.purchase_order_id
        return detail


class LedgerWriteFailure(LedgerError):
    """The atomic apply could not complete. Safe to retry."""

    code = "ledger_write_failure"
    http_status = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True


class StaleQuantity(LedgerWriteFailure):
    """The part no longer holds the quantity the caller computed against."""

    code = "stale_quantity"

    def __init__(self, *, part_id: int, expected: int, actual: int) -> None:
        super().__init__(
            f"Quantity changed from {expected} to {actual} before the update was applied.",
            part_id=part_id,
        )
        self.expected = expected
        self.actual = actual

    def to_detail(self) -> dict:
        detail = super().to_detail()
        detail.update({"expected": self.expected, "available": self.actual})
        return detail


class ReconciliationMismatch(LedgerError):
    code = "reconciliation_mismatch"
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR


def to_http_exception(exc: LedgerError) -> HTTPException:
    return HTTPException(status_code=exc.http_status, detail=exc.to_detail())


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

_POSITIVE_TYPES = {models.TransactionTypeEnum.RECEIVED, models.TransactionTypeEnum.RETURN}
_NEGATIVE_TYPES = {models.TransactionTypeEnum.USED}


def is_whole_number(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def require_positive_quantity(value: Any, *, field: str = "quantity", part_id: Optional[int] = None) -> int:
    if not is_whole_number(value) or value <= 0:
        raise InvalidQuantity(f"{field} must be a whole number greater than zero.", part_id=part_id)
    return value


def _coerce_type(transaction_type: Union[str, models.TransactionTypeEnum]) -> models.TransactionTypeEnum:
    try:
        return models.TransactionTypeEnum(transaction_type)
    except ValueError:
        raise InvalidQuantity(f"Unknown transaction type {transaction_type!r}.")


def validate_delta(
    transaction_type: Union[str, models.TransactionTypeEnum],
    quantity_delta: Any,
    *,
    part_id: Optional[int] = None,
) -> models.TransactionTypeEnum:
    tx_type = _coerce_type(transaction_type)
    if not is_whole_number(quantity_delta):
        raise InvalidQuantity("quantity_delta must be a whole number.", part_id=part_id)
    if quantity_delta == 0:
        raise InvalidQuantity("quantity_delta must not be zero.", part_id=part_id)
    if tx_type in _POSITIVE_TYPES and quantity_delta < 0:
        raise InvalidQuantity(f"{tx_type.value} transactions must increase stock.", part_id=part_id)
    if tx_type in _NEGATIVE_TYPES and quantity_delta > 0:
        raise InvalidQuantity(f"{tx_type.value} transactions must decrease stock.", part_id=part_id)
    return tx_type


# ---------------------------------------------------------------------------
# Apply
# ---------------------------------------------------------------------------


def get_by_idempotency_key(db: Session, key: str) -> Optional[models.InventoryTransaction]:
    return (
        db.query(models.InventoryTransaction)
        .filter(models.InventoryTransaction.idempotency_key == key)
        .first()
    )


def _replay(
    existing: models.InventoryTransaction,
    *,
    part_id: int,
    tx_type: models.TransactionTypeEnum,
    quantity_delta: int,
) -> models.InventoryTransaction:
    if (
        existing.part_id != part_id
        or existing.transaction_type != tx_type
        or existing.quantity_delta != quantity_delta
    ):
        raise IdempotencyError("Idempotency key reuse with different stock movement.")
    return existing


def current_quantity(db: Session, part_id: int) -> Optional[int]:
    """Read the balance straight from the row, bypassing the identity map."""
    return db.execute(
        sa.select(models.Part.quantity).where(models.Part.id == part_id)
    ).scalar_one_or_none()


def _rejection(
    db: Session,
    *,
    part_id: int,
    quantity_delta: int,
    expected_quantity: Optional[int],
) -> LedgerError:
    available = current_quantity(db, part_id)
    if available is None:
        return PartNotFound(f"Part {part_id} not found.", part_id=part_id)
    if expected_quantity is not None and available != expected_quantity:
        return StaleQuantity(part_id=part_id, expected=expected_quantity, actual=available)
    return InsufficientStock(part_id=part_id, requested=-quantity_delta, available=available)


def apply_transaction(
    db: Session,
    *,
    part_id: int,
    transaction_type: Union[str, models.TransactionTypeEnum],
    quantity_delta: int,
    reference_type: str,
    reference_id: Optional[Union[str, int]] = None,
    actor_user_id: Optional[str] = None,
    notes: Optional[str] = None,
    idempotency_key: Optional[str] = None,
    expected_quantity: Optional[int] = None,
) -> models.InventoryTransaction:
    """
    Apply `quantity_delta` to a part and append the matching transaction.

    Raises PartNotFound, InvalidQuantity, InsufficientStock, StaleQuantity or
    LedgerWriteFailure; on any of them neither the part nor the log changes.
    Replaying an `idempotency_key` returns the original transaction.

    Flushes only; the caller commits.
    """
    tx_type = validate_delta(transaction_type, quantity_delta, part_id=part_id)
    if expected_quantity is not None and (not is_whole_number(expected_quantity) or expected_quantity < 0):
        raise InvalidQuantity("expected_quantity must be a whole number >= 0.", part_id=part_id)

    if idempotency_key:
        existing = get_by_idempotency_key(db, idempotency_key)
        if existing is not None:
            return _replay(existing, part_id=part_id, tx_type=tx_type, quantity_delta=quantity_delta)

    conditions = [models.Part.id == part_id, models.Part.quantity + quantity_delta >= 0]
    if expected_quantity is not None:
        conditions.append(models.Part.quantity == expected_quantity)

    try:
        with db.begin_nested():
            result = db.execute(
                sa.update(models.Part)
                .where(*conditions)
                .values(quantity=models.Part.quantity + quantity_delta)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise _rejection(
                    db,
                    part_id=part_id,
                    quantity_delta=quantity_delta,
                    expected_quantity=expected_quantity,
                )

            quantity_after = current_quantity(db, part_id)
            entry = models.InventoryTransaction(
                part_id=part_id,
                transaction_type=tx_type,
                quantity_delta=quantity_delta,
                quantity_after=quantity_after,
                reference_type=str(getattr(reference_type, "value", reference_type)),
                reference_id=str(reference_id) if reference_id is not None else None,
                notes=notes,
                idempotency_key=idempotency_key,
                actor_user_id=actor_user_id,
            )
            db.add(entry)
            db.flush()
    except LedgerError:
        raise
    except IntegrityError as exc:
        if idempotency_key:
            existing = get_by_idempotency_key(db, idempotency_key)
            if existing is not None:
                return _replay(existing, part_id=part_id, tx_type=tx_type, quantity_delta=quantity_delta)
        logger.error(
            "Ledger apply violated a constraint",
            extra={"part_id": part_id, "quantity_delta": quantity_delta, "reference_type": reference_type},
        )
        raise LedgerWriteFailure(f"Could not record stock movement for part {part_id}.", part_id=part_id) from exc
    except SQLAlchemyError as exc:
        logger.error(
            "Ledger apply failed",
            extra={"part_id": part_id, "quantity_delta": quantity_delta, "reference_type": reference_type},
        )
        raise LedgerWriteFailure(f"Could not record stock movement for part {part_id}.", part_id=part_id) from exc

    part = db.get(models.Part, part_id)
    db.refresh(part)
    reorder.evaluate(
        db,
        part=part,
        quantity_before=quantity_after - quantity_delta,
        actor_user_id=actor_user_id,
    )
    return entry


def commit_with_retry(
    db: Session,
    operation: Callable[[], T],
    *,
    attempts: Optional[int] = None,
    backoff_sec: Optional[float] = None,
    retry_stale: bool = True,
) -> T:
    """
    Run `operation` and commit, retrying only on LedgerWriteFailure.

    Business rejections propagate on the first attempt. The operation must be
    safe to repeat, which ledger applies are when they carry an idempotency
    key or re-read the balance they compute against.
    """
    attempts = max(1, attempts or LEDGER_WRITE_ATTEMPTS)
    backoff_sec = LEDGER_RETRY_BACKOFF_SEC if backoff_sec is None else backoff_sec

    for attempt in range(1, attempts + 1):
        try:
            try:
                result = operation()
                db.commit()
                return result
            except SQLAlchemyError as exc:
                raise LedgerWriteFailure("Could not commit stock movement.") from exc
        except LedgerWriteFailure as exc:
            db.rollback()
            if isinstance(exc, StaleQuantity) and not retry_stale:
                raise
            if attempt >= attempts:
                logger.error(
                    "Ledger write failed after retries",
                    extra={"attempts": attempts, "part_id": exc.part_id, "code": exc.code},
                )
                raise
            logger.warning(
                "Retrying ledger write",
                extra={"attempt": attempt, "part_id": exc.part_id, "code": exc.code},
            )
            time.sleep(backoff_sec * attempt)
        except Exception:
            db.rollback()
            raise
    raise AssertionError("unreachable")


# ---------------------------------------------------------------------------
# Reconciliation (read-only)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Reconciliation:
    part_id: int
    part_number: str
    quantity: int
    opening_quantity: int
    ledger_total: int
    transaction_count: int

    @property
    def expected_quantity(self) -> int:
        return self.opening_quantity + self.ledger_total

    @property
    def balanced(self) -> bool:
        return self.quantity == self.expected_quantity

    def assert_balanced(self) -> "Reconciliation":
        if not self.balanced:
            raise ReconciliationMismatch(
                f"Part {self.part_number} holds {self.quantity} but its ledger implies {self.expected_quantity}.",
                part_id=self.part_id,
            )
        return self


def reconcile(db: Session, part_id: int) -> Reconciliation:
    """Compare a part's balance with its opening quantity plus every logged delta."""
    part = db.execute(
        sa.select(models.Part.id, models.Part.part_number, models.Part.quantity, models.Part.opening_quantity)
        .where(models.Part.id == part_id)
    ).first()
    if part is None:
        raise PartNotFound(f"Part {part_id} not found.", part_id=part_id)

    total, count = db.execute(
        sa.select(
            sa.func.coalesce(sa.func.sum(models.InventoryTransaction.quantity_delta), 0),
            sa.func.count(models.InventoryTransaction.id),
        ).where(models.InventoryTransaction.part_id == part_id)
    ).one()
    return Reconciliation(
        part_id=part.id,
        part_number=part.part_number,
        quantity=part.quantity,
        opening_quantity=part.opening_quantity,
        ledger_total=int(total),
        transaction_count=int(count),
    )


def reconcile_all(db: Session) -> List[Reconciliation]:
    part_ids = db.execute(sa.select(models.Part.id).order_by(models.Part.id)).scalars().all()
    return [reconcile(db, part_id) for part_id in part_ids]
