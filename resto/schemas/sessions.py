from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class UserSessionOut(BaseModel):
    id: UUID
    browser: Optional[str] = None
    os: Optional[str] = None
    device_type: Optional[str] = None
    ip_address: Optional[str] = None
    location: Optional[str] = None
    last_active_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    is_current: bool

    class Config:
        from_attributes = True


class RevokeOthersOut(BaseModel):
    revoked: int
