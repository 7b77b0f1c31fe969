from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from shopdb.database import get_db, get_read_db
from shopdb.security import require_roles

from . import models, schemas, services

router = APIRouter(prefix="/accounts", tags=["accounts"])


@router.post("/users", response_model=schemas.UserRead, status_code=status.HTTP_201_CREATED)
def create_user(
    payload: schemas.UserCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(models.AccountRole.ADMIN)),
):
    user = services.create_user(db, payload=payload)
    db.commit()
    db.refresh(user)
    return user


@router.get("/users", response_model=List[schemas.UserRead])
def list_users(
    include_inactive: bool = False,
    db: Session = Depends(get_read_db),
    current_user: models.User = Depends(require_roles(models.AccountRole.ADMIN, models.AccountRole.SERVICE_MANAGER)),
):
    return services.list_users(db, include_inactive=include_inactive)
