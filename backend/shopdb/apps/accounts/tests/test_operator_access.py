from __future__ import annotations

import pytest
from fastapi import HTTPException

from shopdb import security
from shopdb.apps.accounts import models as account_models
from shopdb.apps.accounts import schemas as account_schemas
from shopdb.apps.accounts import services as account_services

Role = account_models.AccountRole


def test_operator_ids_are_generated(db_session, make_user):
    user = make_user()

    assert user.id.startswith("USR-")
    assert len(user.id) == 12


def test_create_user_normalises_email_and_rejects_duplicates(db_session):
    user = account_services.create_user(
        db_session,
        payload=account_schemas.UserCreate(email="Sam.Parts@Garage.com", full_name="Sam", role=Role.PARTS_MANAGER),
    )
    db_session.commit()
    assert user.email == "sam.parts@garage.com"

    with pytest.raises(HTTPException) as excinfo:
        account_services.create_user(
            db_session,
            payload=account_schemas.UserCreate(email="sam.parts@garage.com", full_name="Sam again"),
        )
    assert excinfo.value.status_code == 409


def test_current_user_comes_from_actor_header(db_session, make_user):
    user = make_user()

    assert security.get_current_user(actor_id=f" {user.id} ", db=db_session).id == user.id
    for actor_id in (None, "", "USR-NOBODY00"):
        with pytest.raises(HTTPException) as excinfo:
            security.get_current_user(actor_id=actor_id, db=db_session)
        assert excinfo.value.status_code == 401


def test_inactive_operator_is_blocked(db_session, make_user):
    user = make_user()
    user.is_active = False
    db_session.commit()

    with pytest.raises(HTTPException) as excinfo:
        security.get_current_active_user(current_user=user)
    assert excinfo.value.status_code == 400


@pytest.mark.parametrize(
    "role,allowed",
    [
        (Role.PARTS_MANAGER, True),
        (Role.ADMIN, True),
        (Role.TECHNICIAN, False),
        (Role.FRONT_DESK, False),
    ],
)
def test_require_roles(db_session, make_user, role, allowed):
    user = make_user(role=role, email=f"{role.value.lower()}@example.com")
    check = security.require_roles(Role.PARTS_MANAGER, "SERVICE_MANAGER")

    if allowed:
        assert check(current_user=user) is user
    else:
        with pytest.raises(HTTPException) as excinfo:
            check(current_user=user)
        assert excinfo.value.status_code == 403


def test_require_roles_rejects_unknown_role_names():
    with pytest.raises(ValueError):
        security.require_roles("MECHANIC")


def test_idempotency_key_replay_and_conflict(db_session):
    first = account_services.register_idempotency_key(
        db_session, scope="inventory.check_out", key="k-1", payload={"part_id": 1, "quantity": 2}
    )
    db_session.commit()

    again = account_services.register_idempotency_key(
        db_session, scope="inventory.check_out", key="k-1", payload={"quantity": 2, "part_id": 1}
    )
    assert again.id == first.id

    other_scope = account_services.register_idempotency_key(
        db_session, scope="inventory.check_in", key="k-1", payload={"part_id": 1}
    )
    assert other_scope.id != first.id

    with pytest.raises(account_services.IdempotencyError):
        account_services.register_idempotency_key(
            db_session, scope="inventory.check_out", key="k-1", payload={"part_id": 1, "quantity": 3}
        )
