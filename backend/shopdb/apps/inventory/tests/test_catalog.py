from __future__ import annotations

from decimal import Decimal

import pytest
from fastapi import HTTPException

from shopdb.apps.audit import models as audit_models
from shopdb.apps.inventory import ledger, reorder
from shopdb.apps.inventory import schemas as inventory_schemas
from shopdb.apps.inventory import services as inventory_services
from shopdb.apps.inventory.ledger import InvalidQuantity, PartNotFound


def _create_part(db, **kwargs):
    data = {"part_number": "flt-100", "name": "Oil filter", "opening_quantity": 4}
    data.update(kwargs)
    part = inventory_services.create_part(db, payload=inventory_schemas.PartCreate(**data))
    db.commit()
    db.refresh(part)
    return part


def test_create_part_normalises_and_opens_balance(db_session):
    part = _create_part(db_session, barcode="  9300001  ")

    assert part.part_number == "FLT-100"
    assert part.barcode == "9300001"
    assert part.quantity == 4
    assert part.opening_quantity == 4
    assert ledger.reconcile(db_session, part.id).balanced

    events = db_session.query(audit_models.AuditEvent).filter_by(entity_type="part", action="create").all()
    assert len(events) == 1
    assert events[0].after["part_number"] == "FLT-100"


def test_create_part_rejects_duplicates(db_session):
    _create_part(db_session, barcode="111")

    with pytest.raises(HTTPException) as excinfo:
        _create_part(db_session, part_number="FLT-100 ")
    assert excinfo.value.status_code == 409

    with pytest.raises(HTTPException) as excinfo:
        _create_part(db_session, part_number="FLT-200", barcode="111")
    assert excinfo.value.status_code == 409


def test_create_part_rejects_negative_opening_quantity(db_session):
    with pytest.raises(InvalidQuantity):
        _create_part(db_session, opening_quantity=-1)


def test_update_part_audits_only_changed_fields(db_session, make_user):
    user = make_user()
    part = _create_part(db_session, sell_price=Decimal("50.00"))

    inventory_services.update_part(
        db_session,
        part=part,
        payload=inventory_schemas.PartUpdate(name="Oil filter", sell_price=Decimal("60.00"), location="A3"),
        actor_user_id=user.id,
    )
    db_session.commit()

    event = db_session.query(audit_models.AuditEvent).filter_by(action="update").one()
    assert event.actor_user_id == user.id
    assert event.before == {"sell_price": "50.00", "location": None}
    assert event.after == {"sell_price": "60.00", "location": "A3"}


def test_update_part_without_changes_writes_nothing(db_session):
    part = _create_part(db_session)

    inventory_services.update_part(db_session, part=part, payload=inventory_schemas.PartUpdate(name="Oil filter"))
    db_session.commit()

    assert db_session.query(audit_models.AuditEvent).filter_by(action="update").count() == 0


def test_update_part_cannot_take_a_used_barcode(db_session):
    _create_part(db_session, barcode="111")
    other = _create_part(db_session, part_number="FLT-200")

    with pytest.raises(HTTPException) as excinfo:
        inventory_services.update_part(db_session, part=other, payload=inventory_schemas.PartUpdate(barcode="111"))
    assert excinfo.value.status_code == 409


def test_resolve_scan_prefers_barcode(db_session, make_part):
    make_part(part_number="4006381333931")
    by_barcode = make_part(barcode="4006381333931")
    by_number = make_part(part_number="FLT-9")

    assert inventory_services.resolve_scan(db_session, "4006381333931").id == by_barcode.id
    assert inventory_services.resolve_scan(db_session, " flt-9 ").id == by_number.id
    with pytest.raises(PartNotFound):
        inventory_services.resolve_scan(db_session, "   ")


def test_suggest_parts_ranks_closest_first(db_session, make_part):
    pads = make_part(name="Front brake pads")
    make_part(name="Rear brake shoes")
    make_part(name="Wiper blade")

    suggestions = inventory_services.suggest_parts(db_session, "front brake pad")

    assert suggestions
    assert suggestions[0].part.id == pads.id
    assert all(s.part.name != "Wiper blade" for s in suggestions)
    assert inventory_services.suggest_parts(db_session, "  ") == []


def test_list_parts_by_stock_status(db_session, make_part):
    full = make_part(quantity=20, reorder_threshold=5)
    low = make_part(quantity=3, reorder_threshold=5)
    empty = make_part(quantity=0, reorder_threshold=5)

    def ids(status):
        return [p.id for p in inventory_services.list_parts(db_session, stock_status=status)]

    assert ids(reorder.StockStatusEnum.IN_STOCK) == [full.id]
    assert ids(reorder.StockStatusEnum.LOW_STOCK) == [low.id]
    assert ids(reorder.StockStatusEnum.OUT_OF_STOCK) == [empty.id]
    assert [p.id for p in inventory_services.list_low_stock(db_session)] == [empty.id, low.id]


def test_stock_summary(db_session, make_part):
    make_part(quantity=20, cost_price=Decimal("2.50"))
    make_part(quantity=3, cost_price=Decimal("10.00"))
    make_part(quantity=0)

    summary = inventory_services.stock_summary(db_session)

    assert summary["total_parts"] == 3
    assert summary["in_stock"] == 1
    assert summary["low_stock"] == 1
    assert summary["out_of_stock"] == 1
    assert summary["stock_value"] == Decimal("80.00")


def test_transactions_listed_newest_first(db_session, make_part):
    part = make_part(quantity=5)
    for delta in (1, 2, 3):
        ledger.apply_transaction(
            db_session,
            part_id=part.id,
            transaction_type="received",
            quantity_delta=delta,
            reference_type="manual",
        )
    db_session.commit()

    history = inventory_services.list_transactions(db_session, part.id)
    assert [t.quantity_delta for t in history] == [3, 2, 1]
    with pytest.raises(PartNotFound):
        inventory_services.list_transactions(db_session, 9999)
