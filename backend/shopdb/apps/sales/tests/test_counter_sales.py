from __future__ import annotations

from decimal import Decimal

import pytest
from fastapi import HTTPException

from shopdb.apps.inventory import ledger
from shopdb.apps.inventory import models as inventory_models
from shopdb.apps.inventory.ledger import InsufficientStock
from shopdb.apps.sales import models as sales_models
from shopdb.apps.sales import router as sales_router
from shopdb.apps.sales import schemas as sales_schemas
from shopdb.apps.sales import services as sales_services


def _sale(db, lines, **kwargs):
    sale = sales_services.complete_sale(db, payload=sales_schemas.SaleCreate(lines=lines, **kwargs))
    db.commit()
    return sale


def test_sale_takes_stock_and_adds_tax(db_session, make_part, make_user):
    user = make_user()
    wipers = make_part(quantity=6, sell_price=Decimal("19.99"), name="Wiper blade")
    bulbs = make_part(quantity=10, sell_price=Decimal("4.50"), name="H7 bulb")

    sale = sales_services.complete_sale(
        db_session,
        payload=sales_schemas.SaleCreate(
            customer_name="Walk-in",
            lines=[
                {"part_id": wipers.id, "quantity": 2},
                {"part_id": bulbs.id, "quantity": 1, "unit_price": Decimal("4.00")},
            ],
        ),
        actor_user_id=user.id,
        tax_rate=Decimal("0.10"),
    )
    db_session.commit()

    assert sale.sale_number.startswith("SALE-")
    assert sale.subtotal == Decimal("43.98")
    assert sale.tax == Decimal("4.40")
    assert sale.total == Decimal("48.38")
    assert [(line.part_id, line.total_price) for line in sale.lines] == [
        (wipers.id, Decimal("39.98")),
        (bulbs.id, Decimal("4.00")),
    ]

    db_session.refresh(wipers)
    db_session.refresh(bulbs)
    assert (wipers.quantity, bulbs.quantity) == (4, 9)
    entries = db_session.query(inventory_models.InventoryTransaction).all()
    assert {e.reference_type for e in entries} == {"pos_sale"}
    assert {e.reference_id for e in entries} == {str(sale.id)}


def test_short_line_cancels_the_whole_sale(db_session, make_part):
    plenty = make_part(quantity=10, sell_price=Decimal("1.00"))
    short = make_part(quantity=1, sell_price=Decimal("1.00"))

    with pytest.raises(InsufficientStock):
        _sale(db_session, [{"part_id": plenty.id, "quantity": 3}, {"part_id": short.id, "quantity": 2}])
    db_session.rollback()

    db_session.refresh(plenty)
    assert plenty.quantity == 10
    assert db_session.query(sales_models.Sale).count() == 0
    assert db_session.query(inventory_models.InventoryTransaction).count() == 0
    assert ledger.reconcile(db_session, plenty.id).balanced


def test_unpriced_part_needs_a_price(db_session, make_part):
    part = make_part(quantity=10)

    with pytest.raises(HTTPException) as excinfo:
        _sale(db_session, [{"part_id": part.id, "quantity": 1}])
    assert excinfo.value.status_code == 409

    db_session.rollback()
    assert db_session.query(sales_models.Sale).count() == 0


def test_sale_replays_by_key(db_session, make_part):
    part = make_part(quantity=10, sell_price=Decimal("2.00"))

    first = _sale(db_session, [{"part_id": part.id, "quantity": 3}], idempotency_key="till-1:0001")
    again = _sale(db_session, [{"part_id": part.id, "quantity": 3}], idempotency_key="till-1:0001")

    assert again.id == first.id
    db_session.refresh(part)
    assert part.quantity == 7


def test_sale_route_maps_short_stock(db_session, make_part, make_user):
    user = make_user()
    part = make_part(quantity=0, sell_price=Decimal("2.00"))

    with pytest.raises(HTTPException) as excinfo:
        sales_router.complete_sale(
            sales_schemas.SaleCreate(lines=[{"part_id": part.id, "quantity": 1}]),
            db=db_session,
            current_user=user,
            idempotency_key=None,
        )

    assert excinfo.value.status_code == 409
    assert excinfo.value.detail["code"] == "insufficient_stock"
