from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

from resto.schemas.auth import SessionOut


class FactorOut(BaseModel):
    id: str
    factor_type: Literal["totp"] = "totp"
    status: Literal["unverified", "verified"]
    friendly_name: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class MfaStatusOut(BaseModel):
    enabled: bool
    factors: list[FactorOut]
    current_level: str
    next_level: str
    step_up_required: bool
    remaining_backup_codes: int
    backup_codes_low: bool


class EnrollRequest(BaseModel):
    friendly_name: Optional[str] = Field(default=None, max_length=120)


class EnrollmentOut(BaseModel):
    factor_id: str
    secret: str
    uri: str
    qr_code: str
    state: str


class TotpCodeRequest(BaseModel):
    code: str = Field(min_length=1, max_length=16)


class EnrollVerifyRequest(TotpCodeRequest):
    factor_id: str


class EnrollCancelRequest(BaseModel):
    factor_id: str


class BackupCodesOut(BaseModel):
    codes: list[str]
    remaining: int


class EnrollVerifiedOut(BaseModel):
    factor: FactorOut
    backup_codes: BackupCodesOut
    session: SessionOut
    state: str


class BackupCodeRequest(BaseModel):
    code: str = Field(min_length=1, max_length=32)


class StepUpOut(BaseModel):
    method: Literal["totp", "backup_code"]
    assurance_elevated: bool
    session: Optional[SessionOut] = None
    remaining_backup_codes: Optional[int] = None
    notices: list[str] = []


class BackupCodesStatusOut(BaseModel):
    remaining: int
    low: bool


class RegeneratedCodesOut(BaseModel):
    backup_codes: BackupCodesOut
    session: Optional[SessionOut] = None


class DisableOut(BaseModel):
    factor_id: str
    backup_codes_deleted: int
    session: Optional[SessionOut] = None
