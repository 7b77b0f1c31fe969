# backend/shopdb/apps/accounts/services.py

from __future__ import annotations

import hashlib
import json
from typing import List, Optional

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from . import models, schemas


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class IdempotencyError(Exception):
    """Raised when an idempotency key is reused with conflicting payload."""


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


def _normalise_email(value: str) -> str:
    return (value or "").strip().lower()


def get_user(db: Session, user_id: str) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.id == user_id).first()


def list_users(db: Session, *, include_inactive: bool = False) -> List[models.User]:
    query = db.query(models.User)
    if not include_inactive:
        query = query.filter(models.User.is_active.is_(True))
    return query.order_by(models.User.full_name.asc()).all()


def create_user(db: Session, *, payload: schemas.UserCreate) -> models.User:
    email = _normalise_email(payload.email)
    existing = db.query(models.User).filter(models.User.email == email).first()
    if existing:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered.")
    user = models.User(email=email, full_name=payload.full_name.strip(), role=payload.role, is_active=True)
    db.add(user)
    db.flush()
    return user


# ---------------------------------------------------------------------------
# Idempotency keys
# ---------------------------------------------------------------------------


def _hash_payload(payload: dict) -> str:
    return hashlib.sha256(json.dumps(payload, sort_keys=True, default=str).encode("utf-8")).hexdigest()


def register_idempotency_key(
    db: Session,
    *,
    scope: str,
    key: str,
    payload: dict,
) -> models.IdempotencyKey:
    """
    Record a request key, or confirm a replay of the same request.

    Only flushes; the caller's unit of work decides whether the key sticks,
    so a rejected request does not burn its key.
    """
    if not key:
        raise ValueError("idempotency key is required")

    payload_hash = _hash_payload(payload)
    existing = (
        db.query(models.IdempotencyKey)
        .filter(
            models.IdempotencyKey.scope == scope,
            models.IdempotencyKey.key == key,
        )
        .first()
    )
    if existing:
        if existing.payload_hash != payload_hash:
            raise IdempotencyError("Idempotency key reuse with different payload.")
        return existing

    idem = models.IdempotencyKey(
        scope=scope,
        key=key,
        payload_hash=payload_hash,
    )
    db.add(idem)
    db.flush()
    return idem
