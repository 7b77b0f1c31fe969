from __future__ import annotations

import pytest

from shopdb.apps.audit import models as audit_models
from shopdb.apps.workflow import TransitionError, allowed_targets, apply_transition, check_transition


def test_apply_transition_records_audit_event(db_session):
    apply_transition(
        db_session,
        actor_user_id=None,
        entity_type="purchase_order",
        entity_id="po-1",
        from_state="draft",
        to_state="sent",
        obj={"items": [{"part_id": 1}], "supplier_id": 3},
        extra={"note": "emailed"},
    )

    event = (
        db_session.query(audit_models.AuditEvent)
        .filter(
            audit_models.AuditEvent.entity_type == "purchase_order",
            audit_models.AuditEvent.action == "transition",
        )
        .one()
    )
    assert event.before == {"status": "draft"}
    assert event.after == {"status": "sent", "note": "emailed"}


def test_sending_empty_purchase_order_is_rejected(db_session):
    with pytest.raises(TransitionError) as excinfo:
        apply_transition(
            db_session,
            actor_user_id=None,
            entity_type="purchase_order",
            entity_id="po-2",
            from_state="draft",
            to_state="sent",
            obj={"items": [], "supplier_id": None},
        )

    assert excinfo.value.code == "missing_requirements"
    assert {item["field"] for item in excinfo.value.detail} == {"items", "supplier_id"}
    assert db_session.query(audit_models.AuditEvent).count() == 0


def test_unknown_edge_and_workflow(db_session):
    with pytest.raises(TransitionError) as excinfo:
        check_transition(db_session, entity_type="work_order", from_state="cancelled", to_state="in_progress", obj=None)
    assert excinfo.value.code == "invalid_transition"

    with pytest.raises(TransitionError):
        check_transition(db_session, entity_type="invoice", from_state="a", to_state="b", obj=None)


def test_invoicing_needs_priced_lines(db_session):
    with pytest.raises(TransitionError) as excinfo:
        check_transition(
            db_session,
            entity_type="work_order",
            from_state="completed",
            to_state="invoiced",
            obj={"part_lines": [{"part_id": 4, "unit_price": None}]},
        )
    assert excinfo.value.code == "missing_requirements"


def test_received_reachable_from_every_open_supplier_state():
    for state in ("sent", "confirmed", "shipped"):
        assert "received" in allowed_targets("purchase_order", state)
    assert "received" not in allowed_targets("purchase_order", "draft")
    assert allowed_targets("purchase_order", "received") == []
