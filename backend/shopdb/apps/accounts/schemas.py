from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, EmailStr

from .models import AccountRole


class UserCreate(BaseModel):
    email: EmailStr
    full_name: str
    role: AccountRole = AccountRole.TECHNICIAN


class UserRead(UserCreate):
    id: str
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True
