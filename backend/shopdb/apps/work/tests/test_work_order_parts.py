from __future__ import annotations

from decimal import Decimal

import pytest
import sqlalchemy as sa
from fastapi import HTTPException

from shopdb.apps.accounts.services import IdempotencyError
from shopdb.apps.inventory import ledger
from shopdb.apps.inventory import models as inventory_models
from shopdb.apps.inventory import schemas as inventory_schemas
from shopdb.apps.inventory import services as inventory_services
from shopdb.apps.inventory.ledger import InsufficientStock
from shopdb.apps.work import models as work_models
from shopdb.apps.work import schemas as work_schemas
from shopdb.apps.work import services as work_services


def _create_work_order(db, **kwargs) -> work_models.WorkOrder:
    work_order = work_services.create_work_order(db, payload=work_schemas.WorkOrderCreate(**kwargs))
    db.commit()
    db.refresh(work_order)
    return work_order


def _consume(db, work_order, part, quantity, **kwargs):
    result = work_services.consume_part(
        db,
        work_order_id=work_order.id,
        payload=work_schemas.ConsumePartRequest(part_id=part.id, quantity=quantity, **kwargs),
    )
    db.commit()
    return result


def test_repeat_consumption_keeps_first_price(db_session, make_part):
    part = make_part(quantity=10, sell_price=Decimal("50.00"))
    work_order = _create_work_order(db_session, customer_name="A. Driver")

    first = _consume(db_session, work_order, part, 2)
    assert first.line.quantity == 2
    assert first.line.unit_price == Decimal("50.00")
    assert first.line.total_price == Decimal("100.00")

    inventory_services.update_part(
        db_session,
        part=part,
        payload=inventory_schemas.PartUpdate(sell_price=Decimal("60.00")),
    )
    db_session.commit()

    second = _consume(db_session, work_order, part, 1)
    assert second.line.id == first.line.id
    assert second.line.quantity == 3
    assert second.line.unit_price == Decimal("50.00")
    assert second.line.total_price == Decimal("150.00")

    db_session.refresh(part)
    assert part.quantity == 7
    assert work_services.parts_total(db_session, work_order.id) == Decimal("150.00")


def test_consumption_writes_used_entry_referencing_the_job(db_session, make_part):
    part = make_part(quantity=4, sell_price=Decimal("12.00"))
    work_order = _create_work_order(db_session)

    result = _consume(db_session, work_order, part, 3)

    entry = result.transaction
    assert entry.transaction_type == inventory_models.TransactionTypeEnum.USED
    assert entry.quantity_delta == -3
    assert entry.reference_type == "work_order"
    assert entry.reference_id == str(work_order.id)
    assert entry.notes == f"Used on {work_order.wo_number}"


def test_quoted_price_is_used_for_a_new_line_only(db_session, make_part):
    part = make_part(quantity=10, sell_price=Decimal("50.00"))
    work_order = _create_work_order(db_session)

    _consume(db_session, work_order, part, 1, unit_price=Decimal("45.00"))
    result = _consume(db_session, work_order, part, 1, unit_price=Decimal("10.00"))

    assert result.line.unit_price == Decimal("45.00")
    assert result.line.total_price == Decimal("90.00")


def test_part_without_price_needs_a_quote(db_session, make_part):
    part = make_part(quantity=10)
    work_order = _create_work_order(db_session)

    with pytest.raises(HTTPException) as excinfo:
        _consume(db_session, work_order, part, 1)
    assert excinfo.value.status_code == 409

    db_session.rollback()
    db_session.refresh(part)
    assert part.quantity == 10


def test_overdraw_creates_no_line(db_session, make_part):
    part = make_part(quantity=1, sell_price=Decimal("5.00"))
    work_order = _create_work_order(db_session)

    with pytest.raises(InsufficientStock):
        _consume(db_session, work_order, part, 2)

    db_session.rollback()
    assert work_services.list_billing_lines(db_session, work_order.id) == []
    assert ledger.reconcile(db_session, part.id).transaction_count == 0


def test_closed_job_rejects_parts(db_session, make_part):
    part = make_part(quantity=5, sell_price=Decimal("5.00"))
    work_order = _create_work_order(db_session)
    work_services.transition_work_order(
        db_session, work_order=work_order, to_status=work_models.WorkOrderStatusEnum.CANCELLED
    )
    db_session.commit()

    with pytest.raises(HTTPException) as excinfo:
        _consume(db_session, work_order, part, 1)

    assert excinfo.value.status_code == 409
    db_session.rollback()
    db_session.refresh(part)
    assert part.quantity == 5


def test_consumption_replay_with_same_key(db_session, make_part):
    part = make_part(quantity=10, sell_price=Decimal("20.00"))
    work_order = _create_work_order(db_session)

    first = _consume(db_session, work_order, part, 2, idempotency_key="bay-3:17")
    again = _consume(db_session, work_order, part, 2, idempotency_key="bay-3:17")

    assert again.replayed
    assert again.transaction.id == first.transaction.id
    assert again.line.quantity == 2
    db_session.refresh(part)
    assert part.quantity == 8

    with pytest.raises(IdempotencyError):
        _consume(db_session, work_order, part, 5, idempotency_key="bay-3:17")


def test_same_key_on_other_job_is_independent(db_session, make_part):
    part = make_part(quantity=10, sell_price=Decimal("20.00"))
    job_a = _create_work_order(db_session)
    job_b = _create_work_order(db_session)

    _consume(db_session, job_a, part, 1, idempotency_key="scan-1")
    _consume(db_session, job_b, part, 1, idempotency_key="scan-1")

    db_session.refresh(part)
    assert part.quantity == 8


def test_lines_per_part_are_unique(db_session, make_part):
    oil = make_part(quantity=10, sell_price=Decimal("8.00"), name="Engine oil")
    filt = make_part(quantity=10, sell_price=Decimal("15.00"))
    work_order = _create_work_order(db_session)

    _consume(db_session, work_order, oil, 4)
    _consume(db_session, work_order, filt, 1)
    _consume(db_session, work_order, oil, 1)

    lines = work_services.list_billing_lines(db_session, work_order.id)
    assert [(line.part_id, line.quantity) for line in lines] == [(oil.id, 5), (filt.id, 1)]
    assert work_services.parts_total(db_session, work_order.id) == Decimal("55.00")


def test_line_growth_counts_consumption_committed_by_another_terminal(db_session, make_part):
    part = make_part(quantity=10, sell_price=Decimal("50.00"))
    work_order = _create_work_order(db_session, customer_name="B. Driver")
    first = _consume(db_session, work_order, part, 2)

    # Another terminal grows the line after this session has loaded it.
    db_session.execute(
        sa.text(
            "UPDATE work_order_part_lines SET quantity = quantity + 1, total_price = total_price + 50 "
            "WHERE id = :id"
        ),
        {"id": first.line.id},
    )
    db_session.commit()

    second = _consume(db_session, work_order, part, 1)

    assert second.line.id == first.line.id
    assert second.line.quantity == 4
    assert second.line.total_price == Decimal("200.00")
    assert work_services.parts_total(db_session, work_order.id) == Decimal("200.00")
