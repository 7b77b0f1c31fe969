"""
Stock mutation gateways.

Each gateway turns one operator event into at most one ledger apply:
`propose` checks the channel's own preconditions against the current catalog
and returns the movement (or None when there is nothing to do); `submit`
hands that movement to `ledger.apply_transaction`. Gateways never write
`Part.quantity` themselves.

Work-order consumption lives in `shopdb.apps.work.services` and purchase-order
receipt in `shopdb.apps.purchasing.services`; both follow the same contract.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from shopdb.apps.accounts.services import IdempotencyError

from . import ledger, models, services
from .ledger import InsufficientStock, InvalidQuantity, require_positive_quantity

logger = logging.getLogger(__name__)

TX = models.TransactionTypeEnum
REF = models.ReferenceTypeEnum


@dataclass(frozen=True)
class StockMovement:
    part_id: int
    transaction_type: models.TransactionTypeEnum
    quantity_delta: int
    reference_type: str
    reference_id: Optional[str] = None
    notes: Optional[str] = None
    expected_quantity: Optional[int] = None


class StockGateway:
    """Base class for the ledger's entry channels."""

    transaction_type: models.TransactionTypeEnum

    @property
    def target_part_id(self) -> int:
        return self.part_id

    def requested_delta(self) -> Optional[int]:
        """The fixed delta asked for, or None when it is derived from the live balance."""
        return None

    def propose(self, db: Session) -> Optional[StockMovement]:
        raise NotImplementedError

    def replay(self, db: Session, idempotency_key: str) -> Optional[models.InventoryTransaction]:
        """
        Return the entry already written under `idempotency_key`, if any.

        Checked before `propose`, since a balance-derived delta can differ
        on a retry once other movements have landed.
        """
        existing = ledger.get_by_idempotency_key(db, idempotency_key)
        if existing is None:
            return None
        delta = self.requested_delta()
        if (
            existing.part_id != self.target_part_id
            or existing.transaction_type != self.transaction_type
            or (delta is not None and existing.quantity_delta != delta)
        ):
            raise IdempotencyError("Idempotency key reuse with different stock movement.")
        return existing

    def submit(
        self,
        db: Session,
        *,
        actor_user_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> Optional[models.InventoryTransaction]:
        if idempotency_key:
            existing = self.replay(db, idempotency_key)
            if existing is not None:
                return existing
        movement = self.propose(db)
        if movement is None:
            return None
        try:
            return ledger.apply_transaction(
                db,
                part_id=movement.part_id,
                transaction_type=movement.transaction_type,
                quantity_delta=movement.quantity_delta,
                reference_type=movement.reference_type,
                reference_id=movement.reference_id,
                actor_user_id=actor_user_id,
                notes=movement.notes,
                idempotency_key=idempotency_key,
                expected_quantity=movement.expected_quantity,
            )
        except InsufficientStock as exc:
            logger.warning(
                "Stock movement rejected",
                extra={
                    "gateway": type(self).__name__,
                    "part_id": exc.part_id,
                    "requested": exc.requested,
                    "available": exc.available,
                },
            )
            raise


def _check_available(part: models.Part, quantity: int) -> None:
    if quantity > part.quantity:
        raise InsufficientStock(part_id=part.id, requested=quantity, available=part.quantity)


def _open_work_order(db: Session, work_order_id: int):
    from shopdb.apps.work import services as work_services

    return work_services.require_open_work_order(db, work_order_id)


class ManualAdjustment(StockGateway):
    """Set a part to a counted quantity. The delta is computed against the live balance."""

    transaction_type = TX.ADJUSTMENT

    def __init__(self, part_id: int, new_quantity: int, notes: Optional[str] = None) -> None:
        self.part_id = part_id
        self.new_quantity = new_quantity
        self.notes = notes

    def propose(self, db: Session) -> Optional[StockMovement]:
        if not ledger.is_whole_number(self.new_quantity) or self.new_quantity < 0:
            raise InvalidQuantity("new_quantity must be a whole number >= 0.", part_id=self.part_id)
        part = services.get_part(db, self.part_id, fresh=True)
        current = part.quantity
        if self.new_quantity == current:
            return None
        return StockMovement(
            part_id=part.id,
            transaction_type=TX.ADJUSTMENT,
            quantity_delta=self.new_quantity - current,
            reference_type=REF.MANUAL.value,
            notes=self.notes or f"Manual adjustment (was {current}, now {self.new_quantity})",
            expected_quantity=current,
        )


class BarcodeCheckIn(StockGateway):
    transaction_type = TX.RECEIVED

    def __init__(self, part_id: int, quantity: int, notes: Optional[str] = None) -> None:
        self.part_id = part_id
        self.quantity = quantity
        self.notes = notes

    @classmethod
    def from_scan(cls, db: Session, code: str, quantity: int, notes: Optional[str] = None) -> "BarcodeCheckIn":
        return cls(services.resolve_scan(db, code).id, quantity, notes)

    def requested_delta(self) -> Optional[int]:
        return self.quantity

    def propose(self, db: Session) -> StockMovement:
        quantity = require_positive_quantity(self.quantity, part_id=self.part_id)
        part = services.get_part(db, self.part_id)
        return StockMovement(
            part_id=part.id,
            transaction_type=TX.RECEIVED,
            quantity_delta=quantity,
            reference_type=REF.SCAN_IN.value,
            notes=self.notes or "Barcode check-in",
        )


class BarcodeCheckOut(StockGateway):
    """Take stock off the shelf, optionally against an open work order."""

    transaction_type = TX.USED

    def __init__(
        self,
        part_id: int,
        quantity: int,
        *,
        work_order_id: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> None:
        self.part_id = part_id
        self.quantity = quantity
        self.work_order_id = work_order_id
        self.notes = notes

    @classmethod
    def from_scan(
        cls,
        db: Session,
        code: str,
        quantity: int,
        *,
        work_order_id: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> "BarcodeCheckOut":
        return cls(services.resolve_scan(db, code).id, quantity, work_order_id=work_order_id, notes=notes)

    def requested_delta(self) -> Optional[int]:
        return -self.quantity

    def propose(self, db: Session) -> StockMovement:
        quantity = require_positive_quantity(self.quantity, part_id=self.part_id)
        part = services.get_part(db, self.part_id, fresh=True)
        reference_type, reference_id = REF.SCAN_OUT.value, None
        if self.work_order_id is not None:
            work_order = _open_work_order(db, self.work_order_id)
            reference_type, reference_id = REF.WORK_ORDER.value, str(work_order.id)
        _check_available(part, quantity)
        return StockMovement(
            part_id=part.id,
            transaction_type=TX.USED,
            quantity_delta=-quantity,
            reference_type=reference_type,
            reference_id=reference_id,
            notes=self.notes or "Barcode check-out",
        )


class PartReturn(StockGateway):
    """Put unused stock back on the shelf."""

    transaction_type = TX.RETURN

    def __init__(
        self,
        part_id: int,
        quantity: int,
        *,
        work_order_id: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> None:
        self.part_id = part_id
        self.quantity = quantity
        self.work_order_id = work_order_id
        self.notes = notes

    def requested_delta(self) -> Optional[int]:
        return self.quantity

    def propose(self, db: Session) -> StockMovement:
        quantity = require_positive_quantity(self.quantity, part_id=self.part_id)
        part = services.get_part(db, self.part_id)
        reference_type, reference_id = REF.RETURN.value, None
        if self.work_order_id is not None:
            from shopdb.apps.work import services as work_services

            work_order = work_services.get_work_order(db, self.work_order_id)
            reference_type, reference_id = REF.WORK_ORDER.value, str(work_order.id)
        return StockMovement(
            part_id=part.id,
            transaction_type=TX.RETURN,
            quantity_delta=quantity,
            reference_type=reference_type,
            reference_id=reference_id,
            notes=self.notes or "Returned to stock",
        )
