from __future__ import annotations

import pytest
from fastapi import HTTPException

from shopdb.apps.accounts import models as account_models
from shopdb.apps.inventory import models as inventory_models
from shopdb.apps.inventory import router as inventory_router
from shopdb.apps.inventory import schemas as inventory_schemas


def _has_route(path: str, method: str) -> bool:
    return any(
        route.path == path and method in (route.methods or [])
        for route in inventory_router.router.routes
    )


def test_router_has_expected_routes():
    assert _has_route("/inventory/parts", "POST")
    assert _has_route("/inventory/parts", "GET")
    assert _has_route("/inventory/parts/{part_id}", "PATCH")
    assert _has_route("/inventory/parts/{part_id}/transactions", "GET")
    assert _has_route("/inventory/scan/{code}", "GET")
    for action in ("adjust", "check-in", "check-out", "return"):
        assert _has_route(f"/inventory/parts/{{part_id}}/{action}", "POST")
    assert _has_route("/inventory/stocktake", "POST")
    assert _has_route("/inventory/low-stock", "GET")
    assert _has_route("/inventory/reconciliation", "GET")


def test_part_quantity_is_not_writable_through_update():
    assert "quantity" not in inventory_schemas.PartUpdate.model_fields


def test_check_out_route_maps_insufficient_stock(db_session, make_part, make_user):
    user = make_user(account_models.AccountRole.TECHNICIAN, email="tech@example.com")
    part = make_part(quantity=3)

    with pytest.raises(HTTPException) as excinfo:
        inventory_router.check_out_part(
            part.id,
            inventory_schemas.CheckOutRequest(quantity=5),
            db=db_session,
            current_user=user,
            idempotency_key=None,
        )

    assert excinfo.value.status_code == 409
    assert excinfo.value.detail["code"] == "insufficient_stock"
    assert excinfo.value.detail["available"] == 3


def test_check_out_route_replays_idempotency_header(db_session, make_part, make_user):
    user = make_user()
    part = make_part(quantity=10)

    def _call(quantity):
        return inventory_router.check_out_part(
            part.id,
            inventory_schemas.CheckOutRequest(quantity=quantity),
            db=db_session,
            current_user=user,
            idempotency_key="terminal-2:0007",
        )

    first = _call(4)
    second = _call(4)

    assert first["transaction"].id == second["transaction"].id
    assert second["part"].quantity == 6
    assert db_session.query(inventory_models.InventoryTransaction).count() == 1

    with pytest.raises(HTTPException) as excinfo:
        _call(2)
    assert excinfo.value.status_code == 409


def test_adjust_route_returns_part_after_change(db_session, make_part, make_user):
    user = make_user()
    part = make_part(quantity=10, reorder_threshold=5)

    result = inventory_router.adjust_part(
        part.id,
        inventory_schemas.AdjustRequest(new_quantity=2),
        db=db_session,
        current_user=user,
        idempotency_key=None,
    )
    read = inventory_schemas.StockMovementResult.model_validate(result, from_attributes=True)

    assert read.transaction.quantity_delta == -8
    assert read.part.quantity == 2
    assert read.part.is_low_stock


def test_stocktake_route_reports_per_line(db_session, make_part, make_user):
    user = make_user()
    part = make_part(quantity=10)

    result = inventory_router.save_stocktake(
        inventory_schemas.StocktakeRequest(
            lines=[
                {"part_id": part.id, "counted_quantity": 7, "system_quantity": 10},
                {"part_id": 4242, "counted_quantity": 1},
            ]
        ),
        db=db_session,
        current_user=user,
        idempotency_key=None,
    )

    assert [t.quantity_delta for t in result.applied] == [-3]
    assert [f.code for f in result.failed] == ["part_not_found"]


def test_reconciliation_route_filters_balanced(db_session, make_part, make_user):
    user = make_user()
    make_part(quantity=4)

    assert inventory_router.reconciliation_report(unbalanced_only=True, db=db_session, current_user=user) == []
    report = inventory_router.reconciliation_report(unbalanced_only=False, db=db_session, current_user=user)
    assert len(report) == 1 and report[0].balanced


def test_stocktake_route_replays_idempotency_header(db_session, make_part, make_user):
    user = make_user()
    part = make_part(quantity=10)

    def _save(counted):
        return inventory_router.save_stocktake(
            inventory_schemas.StocktakeRequest(lines=[{"part_id": part.id, "counted_quantity": counted}]),
            db=db_session,
            current_user=user,
            idempotency_key="count-bay-2",
        )

    first = _save(7)
    again = _save(7)

    assert first.session_id == again.session_id == "count-bay-2"
    assert [t.id for t in again.applied] == [t.id for t in first.applied]
    db_session.refresh(part)
    assert part.quantity == 7
    assert db_session.query(inventory_models.InventoryTransaction).filter_by(part_id=part.id).count() == 1

    with pytest.raises(HTTPException) as excinfo:
        _save(6)
    assert excinfo.value.status_code == 409
