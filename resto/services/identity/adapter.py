from __future__ import annotations

import re
from abc import ABC, abstractmethod
from typing import Any, Optional

from resto.core.errors import CodeValidationError
from resto.core.security import AAL1, AAL2
from resto.services.identity.types import (
    AssuranceLevel,
    AuthContext,
    Challenge,
    Factor,
    ProviderSession,
    TotpEnrollment,
    VerifiedFactor,
)

_TOTP_CODE_RE = re.compile(r"^\d{6}$")


def validate_totp_code(code: str) -> str:
    """Return the 6-digit code with whitespace removed, or raise before any network call."""
    cleaned = "".join((code or "").split())
    if not _TOTP_CODE_RE.match(cleaned):
        raise CodeValidationError("Enter the 6-digit code from your authenticator app")
    return cleaned


class IdentityProvider(ABC):
    """Operations consumed from the identity provider.

    Implementations raise ``ProviderError`` for transport/config/state
    failures and ``AuthenticationFailed`` for wrong or expired codes.
    """

    name: str = "local"

    @abstractmethod
    async def list_factors(self, ctx: AuthContext) -> list[Factor]:
        pass

    @abstractmethod
    async def enroll_totp(self, ctx: AuthContext, friendly_name: str) -> TotpEnrollment:
        pass

    @abstractmethod
    async def challenge(self, ctx: AuthContext, factor_id: str) -> Challenge:
        pass

    @abstractmethod
    async def verify(
        self, ctx: AuthContext, factor_id: str, challenge_id: str, code: str
    ) -> ProviderSession:
        pass

    @abstractmethod
    async def unenroll(self, ctx: AuthContext, factor_id: str) -> None:
        pass

    @abstractmethod
    async def sign_in_with_password(self, email: str, password: str) -> ProviderSession:
        pass

    @abstractmethod
    async def sign_out(self, ctx: AuthContext) -> None:
        pass

    async def ensure_session_active(self, ctx: AuthContext, claims: dict[str, Any]) -> None:
        """Hook for providers that can revoke tokens server-side."""
        return None

    async def get_assurance_level(self, ctx: AuthContext) -> AssuranceLevel:
        factors = await self.list_factors(ctx)
        has_verified = any(isinstance(factor, VerifiedFactor) for factor in factors)
        return AssuranceLevel(current_level=ctx.aal, next_level=AAL2 if has_verified else AAL1)

    async def verified_factor(self, ctx: AuthContext) -> Optional[VerifiedFactor]:
        for factor in await self.list_factors(ctx):
            if isinstance(factor, VerifiedFactor):
                return factor
        return None
