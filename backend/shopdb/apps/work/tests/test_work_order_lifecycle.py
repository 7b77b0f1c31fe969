from __future__ import annotations

import pytest
from fastapi import HTTPException

from shopdb.apps.audit import models as audit_models
from shopdb.apps.work import models as work_models
from shopdb.apps.work import router as work_router
from shopdb.apps.work import schemas as work_schemas
from shopdb.apps.work import services as work_services
from shopdb.apps.workflow import TransitionError

WO = work_models.WorkOrderStatusEnum


def _create_work_order(db, **kwargs) -> work_models.WorkOrder:
    work_order = work_services.create_work_order(db, payload=work_schemas.WorkOrderCreate(**kwargs))
    db.commit()
    db.refresh(work_order)
    return work_order


def test_work_order_numbers_are_sequential_per_day(db_session):
    first = _create_work_order(db_session)
    second = _create_work_order(db_session)

    assert first.wo_number.startswith("WO-")
    assert first.wo_number != second.wo_number
    assert first.status == WO.PENDING
    assert first.is_open


def test_explicit_number_must_be_unique(db_session):
    _create_work_order(db_session, wo_number="wo-77")

    with pytest.raises(HTTPException) as excinfo:
        _create_work_order(db_session, wo_number="WO-77")
    assert excinfo.value.status_code == 409


def test_lifecycle_to_invoiced(db_session, make_user):
    user = make_user()
    work_order = _create_work_order(db_session)

    for target in (WO.IN_PROGRESS, WO.WAITING_ON_PARTS, WO.IN_PROGRESS, WO.COMPLETED, WO.INVOICED):
        work_services.transition_work_order(
            db_session, work_order=work_order, to_status=target, actor_user_id=user.id
        )
    db_session.commit()

    assert work_order.status == WO.INVOICED
    assert work_order.completed_at is not None
    assert not work_order.is_open
    transitions = (
        db_session.query(audit_models.AuditEvent)
        .filter_by(entity_type="work_order", entity_id=str(work_order.id), action="transition")
        .count()
    )
    assert transitions == 5


def test_illegal_transition_is_rejected(db_session):
    work_order = _create_work_order(db_session)

    with pytest.raises(TransitionError) as excinfo:
        work_services.transition_work_order(db_session, work_order=work_order, to_status=WO.INVOICED)

    assert excinfo.value.code == "invalid_transition"
    assert work_order.status == WO.PENDING


def test_router_maps_transition_error_to_conflict(db_session, make_user):
    user = make_user()
    work_order = _create_work_order(db_session)

    with pytest.raises(HTTPException) as excinfo:
        work_router.update_work_order_status(
            work_order.id,
            work_schemas.WorkOrderStatusUpdate(status=WO.COMPLETED),
            db=db_session,
            current_user=user,
        )

    assert excinfo.value.status_code == 409
    assert excinfo.value.detail["code"] == "invalid_transition"


def test_list_filters_by_status(db_session):
    open_job = _create_work_order(db_session)
    cancelled = _create_work_order(db_session)
    work_services.transition_work_order(db_session, work_order=cancelled, to_status=WO.CANCELLED)
    db_session.commit()

    pending = work_services.list_work_orders(db_session, status_filter=WO.PENDING)
    assert [w.id for w in pending] == [open_job.id]


def test_router_has_expected_routes():
    paths = {(route.path, method) for route in work_router.router.routes for method in route.methods}

    assert ("/work-orders", "POST") in paths
    assert ("/work-orders/{work_order_id}/status", "POST") in paths
    assert ("/work-orders/{work_order_id}/parts", "POST") in paths
    assert ("/work-orders/{work_order_id}/billing-lines", "GET") in paths
