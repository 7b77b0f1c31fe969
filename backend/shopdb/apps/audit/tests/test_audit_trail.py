from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from shopdb.apps.audit import models as audit_models
from shopdb.apps.audit import services as audit_services


def test_log_event_records_before_and_after(db_session, make_user):
    user = make_user()

    event = audit_services.log_event(
        db_session,
        actor_user_id=user.id,
        entity_type="part",
        entity_id=12,
        action="update",
        before={"sell_price": "50.00"},
        after={"sell_price": "60.00"},
        metadata={"source": "catalog"},
    )
    db_session.commit()

    stored = db_session.get(audit_models.AuditEvent, event.id)
    assert stored.entity_id == "12"
    assert stored.before == {"sell_price": "50.00"}
    assert stored.after == {"sell_price": "60.00"}
    assert stored.metadata_json == {"source": "catalog"}


def test_failed_non_critical_event_does_not_break_caller(db_session, monkeypatch):
    def _boom(db, *, data):
        raise RuntimeError("audit store unavailable")

    monkeypatch.setattr(audit_services, "create_audit_event", _boom)

    assert audit_services.log_event(
        db_session, actor_user_id=None, entity_type="part", entity_id="1", action="create"
    ) is None

    with pytest.raises(RuntimeError):
        audit_services.log_event(
            db_session,
            actor_user_id=None,
            entity_type="purchase_order",
            entity_id="1",
            action="transition",
            critical=True,
        )


def test_list_audit_events_filters(db_session):
    for entity_id, action in (("1", "create"), ("1", "update"), ("2", "create")):
        audit_services.log_event(
            db_session, actor_user_id=None, entity_type="part", entity_id=entity_id, action=action
        )
    audit_services.log_event(
        db_session, actor_user_id=None, entity_type="purchase_order", entity_id="1", action="create"
    )
    db_session.commit()

    assert len(audit_services.list_audit_events(db_session, entity_type="part")) == 3
    assert len(audit_services.list_audit_events(db_session, entity_type="part", entity_id="1")) == 2
    assert len(audit_services.list_audit_events(db_session, action="create")) == 3
    future = datetime.utcnow() + timedelta(days=1)
    assert audit_services.list_audit_events(db_session, start=future) == []


def test_changed_fields_and_actor_filter(db_session, make_user):
    user = make_user()
    audit_services.log_event(
        db_session,
        actor_user_id=user.id,
        entity_type="part",
        entity_id="7",
        action="update",
        summary="price change",
        before={"sell_price": "12.00", "location": "A1"},
        after={"sell_price": "14.50", "location": "A1", "barcode": "501234"},
    )
    audit_services.log_event(db_session, actor_user_id=None, entity_type="part", entity_id="8", action="create")
    db_session.commit()

    events = audit_services.list_audit_events(db_session, actor_user_id=user.id)

    assert len(events) == 1
    assert events[0].summary == "price change"
    assert events[0].changed_fields == ["barcode", "sell_price"]
