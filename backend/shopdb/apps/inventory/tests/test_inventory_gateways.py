from __future__ import annotations

import pytest
from fastapi import HTTPException

from shopdb.apps.accounts.services import IdempotencyError
from shopdb.apps.inventory import ledger
from shopdb.apps.inventory import models as inventory_models
from shopdb.apps.inventory.gateways import (
    BarcodeCheckIn,
    BarcodeCheckOut,
    ManualAdjustment,
    PartReturn,
)
from shopdb.apps.inventory.ledger import InsufficientStock, InvalidQuantity, PartNotFound
from shopdb.apps.work import models as work_models
from shopdb.apps.work import schemas as work_schemas
from shopdb.apps.work import services as work_services


def _create_work_order(db, **kwargs):
    work_order = work_services.create_work_order(db, payload=work_schemas.WorkOrderCreate(**kwargs))
    db.commit()
    db.refresh(work_order)
    return work_order


def _close_work_order(db, work_order):
    for target in (work_models.WorkOrderStatusEnum.IN_PROGRESS, work_models.WorkOrderStatusEnum.COMPLETED):
        work_services.transition_work_order(db, work_order=work_order, to_status=target)
    db.commit()


def test_checkout_below_zero_is_rejected_and_leaves_balance(db_session, make_part):
    part = make_part(quantity=10, reorder_threshold=5)

    BarcodeCheckOut(part.id, 7).submit(db_session)
    db_session.commit()
    db_session.refresh(part)
    assert part.quantity == 3
    assert part.is_low_stock

    with pytest.raises(InsufficientStock) as excinfo:
        BarcodeCheckOut(part.id, 5).submit(db_session)
    assert excinfo.value.available == 3

    db_session.rollback()
    db_session.refresh(part)
    assert part.quantity == 3
    entries = db_session.query(inventory_models.InventoryTransaction).filter_by(part_id=part.id).all()
    assert [e.quantity_delta for e in entries] == [-7]


def test_manual_adjustment_writes_computed_delta(db_session, make_part, make_user):
    user = make_user()
    part = make_part(quantity=10)

    entry = ManualAdjustment(part.id, 4).submit(db_session, actor_user_id=user.id)
    db_session.commit()

    assert entry.transaction_type == inventory_models.TransactionTypeEnum.ADJUSTMENT
    assert entry.quantity_delta == -6
    assert entry.quantity_after == 4
    assert entry.notes == "Manual adjustment (was 10, now 4)"
    assert entry.reference_type == "manual"


def test_manual_adjustment_to_same_quantity_is_noop(db_session, make_part):
    part = make_part(quantity=8)

    assert ManualAdjustment(part.id, 8).submit(db_session) is None
    assert db_session.query(inventory_models.InventoryTransaction).count() == 0


def test_manual_adjustment_rejects_negative_target(db_session, make_part):
    part = make_part(quantity=8)

    with pytest.raises(InvalidQuantity):
        ManualAdjustment(part.id, -1).submit(db_session)


def test_manual_adjustment_uses_live_balance(db_session, make_part):
    part = make_part(quantity=10)
    BarcodeCheckOut(part.id, 3).submit(db_session)
    db_session.commit()

    entry = ManualAdjustment(part.id, 10).submit(db_session)
    db_session.commit()

    assert entry.quantity_delta == 3
    assert ledger.reconcile(db_session, part.id).balanced


def test_check_in_by_barcode(db_session, make_part):
    part = make_part(quantity=2, barcode="9300000000017")

    gateway = BarcodeCheckIn.from_scan(db_session, "9300000000017", 5)
    entry = gateway.submit(db_session)
    db_session.commit()

    assert entry.part_id == part.id
    assert entry.transaction_type == inventory_models.TransactionTypeEnum.RECEIVED
    assert entry.reference_type == "scan_in"
    assert entry.quantity_after == 7


@pytest.mark.parametrize("quantity", [0, -2, 1.5])
def test_check_in_rejects_non_positive_quantity(db_session, make_part, quantity):
    part = make_part(quantity=2)

    with pytest.raises(InvalidQuantity):
        BarcodeCheckIn(part.id, quantity).submit(db_session)


def test_unknown_scan_code(db_session, make_part):
    make_part(quantity=2, barcode="111")

    with pytest.raises(PartNotFound):
        BarcodeCheckOut.from_scan(db_session, "999", 1)


def test_checkout_against_open_work_order_references_it(db_session, make_part):
    part = make_part(quantity=5)
    work_order = _create_work_order(db_session, customer_name="J. Smith")

    entry = BarcodeCheckOut(part.id, 2, work_order_id=work_order.id).submit(db_session)
    db_session.commit()

    assert entry.reference_type == "work_order"
    assert entry.reference_id == str(work_order.id)
    # A plain check-out never bills the job.
    assert work_services.list_billing_lines(db_session, work_order.id) == []


def test_checkout_against_closed_work_order_is_rejected(db_session, make_part):
    part = make_part(quantity=5)
    work_order = _create_work_order(db_session)
    _close_work_order(db_session, work_order)

    with pytest.raises(HTTPException) as excinfo:
        BarcodeCheckOut(part.id, 1, work_order_id=work_order.id).submit(db_session)

    assert excinfo.value.status_code == 409
    db_session.refresh(part)
    assert part.quantity == 5


def test_return_puts_stock_back(db_session, make_part):
    part = make_part(quantity=0)
    work_order = _create_work_order(db_session)

    entry = PartReturn(part.id, 2, work_order_id=work_order.id).submit(db_session)
    plain = PartReturn(part.id, 1).submit(db_session)
    db_session.commit()

    assert entry.transaction_type == inventory_models.TransactionTypeEnum.RETURN
    assert entry.reference_type == "work_order"
    assert plain.reference_type == "return"
    assert plain.quantity_after == 3


def test_gateway_replay_with_same_key(db_session, make_part):
    part = make_part(quantity=5)

    first = BarcodeCheckOut(part.id, 2).submit(db_session, idempotency_key="till-1:42")
    db_session.commit()
    second = BarcodeCheckOut(part.id, 2).submit(db_session, idempotency_key="till-1:42")
    db_session.commit()
    db_session.refresh(part)

    assert first.id == second.id
    assert part.quantity == 3


def test_manual_adjustment_retry_replays_after_other_movements(db_session, make_part):
    part = make_part(quantity=10)

    first = ManualAdjustment(part.id, 8).submit(db_session, idempotency_key="inventory.adjust:shelf-3")
    db_session.commit()
    BarcodeCheckOut(part.id, 1).submit(db_session)
    db_session.commit()

    retried = ManualAdjustment(part.id, 8).submit(db_session, idempotency_key="inventory.adjust:shelf-3")
    db_session.commit()
    db_session.refresh(part)

    assert retried.id == first.id
    assert retried.quantity_delta == -2
    assert part.quantity == 7
    assert ledger.reconcile(db_session, part.id).balanced


def test_manual_adjustment_retry_with_nothing_moved_returns_original(db_session, make_part):
    part = make_part(quantity=10)

    first = ManualAdjustment(part.id, 4).submit(db_session, idempotency_key="inventory.adjust:shelf-4")
    db_session.commit()
    retried = ManualAdjustment(part.id, 4).submit(db_session, idempotency_key="inventory.adjust:shelf-4")

    assert retried is not None
    assert retried.id == first.id


def test_replayed_key_must_name_the_same_part_and_channel(db_session, make_part):
    part = make_part(quantity=10)
    other = make_part(quantity=10)
    BarcodeCheckOut(part.id, 2).submit(db_session, idempotency_key="till-2:9")
    db_session.commit()

    for gateway in (BarcodeCheckOut(other.id, 2), BarcodeCheckOut(part.id, 3), PartReturn(part.id, 2)):
        with pytest.raises(IdempotencyError):
            gateway.submit(db_session, idempotency_key="till-2:9")

    db_session.refresh(part)
    assert part.quantity == 8
