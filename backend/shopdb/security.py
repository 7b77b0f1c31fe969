# backend/shopdb/security.py

"""
Request identity helpers for shopdb.

Responsibilities:
- Resolve the operator behind a request to a `User` row
- FastAPI dependencies for current user / role checks

Sign-in, passwords and session tokens live in the front-end session layer.
That layer forwards the signed-in operator's id in a header (default
`X-User-Id`); this module only checks that the operator exists, is active,
and holds a role allowed to call the route.
"""

from __future__ import annotations

import os
from typing import Callable, Optional, Set, Union

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from .database import get_db
from shopdb.apps.accounts import models as account_models
from shopdb.apps.accounts.models import AccountRole

# ---------------------------------------------------------------------------
# CONFIG
# ---------------------------------------------------------------------------

ACTOR_HEADER = os.getenv("SHOPDB_ACTOR_HEADER", "X-User-Id")


def _credentials_exception() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not identify the operator for this request",
    )


# ---------------------------------------------------------------------------
# USER LOOKUP HELPERS
# ---------------------------------------------------------------------------


def get_user_by_id(db: Session, user_id: Union[str, int]) -> Optional[account_models.User]:
    return (
        db.query(account_models.User)
        .filter(account_models.User.id == str(user_id))
        .first()
    )


# ---------------------------------------------------------------------------
# FASTAPI DEPENDENCIES
# ---------------------------------------------------------------------------


def get_current_user(
    actor_id: Optional[str] = Header(None, alias=ACTOR_HEADER),
    db: Session = Depends(get_db),
) -> account_models.User:
    """Return the User named by the actor header."""
    if not actor_id:
        raise _credentials_exception()

    user = get_user_by_id(db, actor_id.strip())
    if user is None:
        raise _credentials_exception()
    return user


def get_current_active_user(
    current_user: account_models.User = Depends(get_current_user),
) -> account_models.User:
    """
    Ensure the current user is active.

    Deactivated operators are blocked here rather than deeper in the app.
    """
    if not getattr(current_user, "is_active", False):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Inactive user account",
        )
    return current_user


def require_roles(
    *allowed_roles: Union[AccountRole, str],
) -> Callable[[account_models.User], account_models.User]:
    """
    Dependency factory to enforce that the current user has one of the given roles.

    Usage:
        @router.post(...)
        def endpoint(
            current_user: User = Depends(
                require_roles(AccountRole.PARTS_MANAGER, "SERVICE_MANAGER")
            )
        ):
            ...

    ADMIN always passes, even if not explicitly listed in `allowed_roles`.
    """
    normalised_roles: Set[AccountRole] = set()
    for r in allowed_roles:
        if isinstance(r, AccountRole):
            normalised_roles.add(r)
        else:
            try:
                normalised_roles.add(AccountRole(r))
            except ValueError:
                raise ValueError(f"Unknown role {r!r} passed to require_roles()")

    def dependency(
        current_user: account_models.User = Depends(get_current_active_user),
    ) -> account_models.User:
        if current_user.is_admin:
            return current_user

        if current_user.role not in normalised_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions for this operation",
            )
        return current_user

    return dependency
