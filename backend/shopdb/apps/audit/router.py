from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from shopdb.database import get_read_db
from shopdb.security import require_roles
from shopdb.apps.accounts import models as account_models

from . import schemas, services

router = APIRouter(prefix="/audit", tags=["audit"])


@router.get("/events", response_model=List[schemas.AuditEventRead])
def list_events(
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    action: Optional[str] = None,
    actor_user_id: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = 200,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(
        require_roles(account_models.AccountRole.SERVICE_MANAGER, account_models.AccountRole.PARTS_MANAGER)
    ),
):
    return services.list_audit_events(
        db,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor_user_id=actor_user_id,
        start=start,
        end=end,
        limit=min(limit, 1000),
    )
