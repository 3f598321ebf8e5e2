from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal, Optional, Union
from uuid import UUID

from resto.core.security import AAL1, AAL2


@dataclass(frozen=True, slots=True)
class AuthContext:
    """The caller's provider session, passed explicitly into every flow."""

    user_id: UUID
    access_token: str
    session_id: Optional[str] = None
    email: Optional[str] = None
    aal: str = AAL1

    @classmethod
    def from_claims(cls, access_token: str, claims: dict[str, Any]) -> "AuthContext":
        sub = claims.get("sub")
        if not sub:
            raise ValueError("Token has no subject")
        return cls(
            user_id=UUID(str(sub)),
            access_token=access_token,
            session_id=claims.get("session_id"),
            email=claims.get("email"),
            aal=claims.get("aal") or AAL1,
        )


@dataclass(frozen=True, slots=True)
class UnverifiedFactor:
    id: str
    friendly_name: Optional[str] = None
    created_at: Optional[datetime] = None
    factor_type: Literal["totp"] = "totp"
    status: Literal["unverified"] = "unverified"


@dataclass(frozen=True, slots=True)
class VerifiedFactor:
    id: str
    friendly_name: Optional[str] = None
    created_at: Optional[datetime] = None
    factor_type: Literal["totp"] = "totp"
    status: Literal["verified"] = "verified"


Factor = Union[UnverifiedFactor, VerifiedFactor]


def build_factor(
    *,
    id: str,
    status: str,
    friendly_name: Optional[str] = None,
    created_at: Optional[datetime] = None,
) -> Factor:
    if status == "verified":
        return VerifiedFactor(id=id, friendly_name=friendly_name, created_at=created_at)
    if status == "unverified":
        return UnverifiedFactor(id=id, friendly_name=friendly_name, created_at=created_at)
    raise ValueError(f"Unknown factor status: {status}")


@dataclass(frozen=True, slots=True)
class TotpEnrollment:
    factor_id: str
    secret: str
    uri: str
    qr_code: str


@dataclass(frozen=True, slots=True)
class Challenge:
    id: str
    factor_id: str
    expires_at: Optional[datetime] = None


@dataclass(frozen=True, slots=True)
class ProviderSession:
    access_token: str
    token_type: str = "bearer"
    expires_in: Optional[int] = None
    refresh_token: Optional[str] = None


@dataclass(frozen=True, slots=True)
class AssuranceLevel:
    current_level: str
    next_level: str

    @property
    def step_up_required(self) -> bool:
        return self.current_level == AAL1 and self.next_level == AAL2
