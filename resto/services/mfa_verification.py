from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Literal, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from resto.core.errors import InvalidFlowTransition
from resto.core.logging import audit_event
from resto.services import backup_codes
from resto.services.identity.adapter import IdentityProvider, validate_totp_code
from resto.services.identity.types import AssuranceLevel, AuthContext, ProviderSession
from resto.services.mfa import confirm_totp, require_verified_factor

logger = logging.getLogger(__name__)

BACKUP_CODE_NOTICE = (
    "You signed in with a backup code, which can't be used again. "
    "Regenerate your backup codes in Settings."
)
LOW_CODES_NOTICE = "You're running low on backup codes."


class StepUpState(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class StepUpResult:
    method: Literal["totp", "backup_code"]
    assurance_elevated: bool
    session: Optional[ProviderSession] = None
    remaining_backup_codes: Optional[int] = None
    notices: tuple[str, ...] = ()


async def step_up_requirement(ctx: AuthContext, provider: IdentityProvider) -> AssuranceLevel:
    return await provider.get_assurance_level(ctx)


class StepUpFlow:
    """Sign-in step-up for a session at aal1 whose user has a verified factor."""

    def __init__(self, ctx: AuthContext, provider: IdentityProvider, db: AsyncSession) -> None:
        self.ctx = ctx
        self.provider = provider
        self.db = db
        self.state = StepUpState.PENDING

    def _require_pending(self) -> None:
        if self.state is not StepUpState.PENDING:
            raise InvalidFlowTransition(
                f"Verification is {self.state.value}",
                details={"state": self.state.value},
            )

    async def submit_totp(self, code: str) -> StepUpResult:
        self._require_pending()
        cleaned = validate_totp_code(code)
        factor = await require_verified_factor(self.ctx, self.provider)
        session = await confirm_totp(self.ctx, self.provider, factor.id, cleaned)

        self.state = StepUpState.VERIFIED
        audit_event("mfa.step_up.totp", user_id=str(self.ctx.user_id), factor_id=factor.id)
        return StepUpResult(method="totp", assurance_elevated=True, session=session)

    async def submit_backup_code(self, code: str) -> StepUpResult:
        """Accept a backup code in place of TOTP.

        The provider session stays at its current assurance level: the code
        proves identity to this service only.
        """
        self._require_pending()
        await backup_codes.redeem(self.db, user_id=self.ctx.user_id, code=code)
        remaining = await backup_codes.count_remaining(self.db, user_id=self.ctx.user_id)

        self.state = StepUpState.VERIFIED
        audit_event(
            "mfa.step_up.backup_code",
            user_id=str(self.ctx.user_id),
            remaining=remaining,
            assurance_elevated=False,
        )
        notices = [BACKUP_CODE_NOTICE]
        if backup_codes.is_low(remaining):
            notices.append(LOW_CODES_NOTICE)
        return StepUpResult(
            method="backup_code",
            assurance_elevated=False,
            remaining_backup_codes=remaining,
            notices=tuple(notices),
        )

    async def cancel(self) -> None:
        """Abort the sign-in and drop the half-authenticated session."""
        self._require_pending()
        self.state = StepUpState.CANCELLED
        await self.provider.sign_out(self.ctx)
        audit_event("mfa.step_up.cancelled", user_id=str(self.ctx.user_id))
