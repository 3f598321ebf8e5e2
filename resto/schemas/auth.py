from typing import Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class SessionOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: Optional[int] = None
    refresh_token: Optional[str] = None


class LoginResponse(BaseModel):
    session: SessionOut
    mfa_required: bool = False


class MeOut(BaseModel):
    id: UUID
    email: Optional[str] = None
    aal: str
    session_id: Optional[str] = None
