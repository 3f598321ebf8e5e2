from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from resto.core.errors import AuthenticationFailed, InvalidFlowTransition, ProviderError
from resto.core.logging import audit_event
from resto.core.settings import settings
from resto.services import backup_codes
from resto.services.identity.adapter import IdentityProvider, validate_totp_code
from resto.services.identity.types import (
    AuthContext,
    ProviderSession,
    TotpEnrollment,
    UnverifiedFactor,
    VerifiedFactor,
)
from resto.services.mfa import confirm_totp

logger = logging.getLogger(__name__)


class EnrollmentState(str, Enum):
    IDLE = "idle"
    ENROLLING = "enrolling"
    AWAITING_VERIFICATION = "awaiting_verification"
    VERIFIED = "verified"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class EnrollmentResult:
    factor: VerifiedFactor
    backup_codes: list[str]
    session: ProviderSession


class EnrollmentFlow:
    """TOTP enrollment: idle -> enrolling -> awaiting_verification -> verified.

    ``cancel`` is allowed any time before verification and only forgets the
    pending factor locally; the provider keeps it registered as unverified.
    """

    def __init__(self, ctx: AuthContext, provider: IdentityProvider, db: AsyncSession) -> None:
        self.ctx = ctx
        self.provider = provider
        self.db = db
        self.state = EnrollmentState.IDLE
        self.factor_id: Optional[str] = None
        self.enrollment: Optional[TotpEnrollment] = None

    def _require(self, *allowed: EnrollmentState) -> None:
        if self.state not in allowed:
            raise InvalidFlowTransition(
                f"Enrollment is {self.state.value}",
                details={"state": self.state.value},
            )

    @classmethod
    async def resume(
        cls,
        ctx: AuthContext,
        provider: IdentityProvider,
        db: AsyncSession,
        factor_id: str,
    ) -> "EnrollmentFlow":
        """Rebuild a flow waiting on ``factor_id`` (one HTTP request per event)."""
        factors = await provider.list_factors(ctx)
        pending = next((f for f in factors if f.id == factor_id), None)
        if not isinstance(pending, UnverifiedFactor):
            raise InvalidFlowTransition(
                "No pending enrollment for this factor",
                details={"factor_id": factor_id},
            )
        flow = cls(ctx, provider, db)
        flow.factor_id = factor_id
        flow.state = EnrollmentState.AWAITING_VERIFICATION
        return flow

    async def start(self, friendly_name: Optional[str] = None) -> TotpEnrollment:
        self._require(EnrollmentState.IDLE)
        self.state = EnrollmentState.ENROLLING
        try:
            enrollment = await self.provider.enroll_totp(
                self.ctx, friendly_name or settings.mfa_friendly_name
            )
        except ProviderError:
            self.state = EnrollmentState.IDLE
            raise
        if self.state is not EnrollmentState.ENROLLING:
            # cancelled while the provider call was in flight
            return enrollment

        self.enrollment = enrollment
        self.factor_id = enrollment.factor_id
        self.state = EnrollmentState.AWAITING_VERIFICATION
        audit_event("mfa.enroll.started", user_id=str(self.ctx.user_id), factor_id=enrollment.factor_id)
        return enrollment

    async def submit_code(self, code: str) -> EnrollmentResult:
        self._require(EnrollmentState.AWAITING_VERIFICATION)
        cleaned = validate_totp_code(code)

        try:
            session = await confirm_totp(self.ctx, self.provider, self.factor_id, cleaned)
        except AuthenticationFailed:
            audit_event("mfa.enroll.rejected", user_id=str(self.ctx.user_id), factor_id=self.factor_id)
            raise

        self.state = EnrollmentState.VERIFIED
        self.enrollment = None
        audit_event("mfa.enroll.verified", user_id=str(self.ctx.user_id), factor_id=self.factor_id)

        codes = await backup_codes.generate(self.db, user_id=self.ctx.user_id)
        factor = VerifiedFactor(id=self.factor_id)
        return EnrollmentResult(factor=factor, backup_codes=codes, session=session)

    def cancel(self) -> None:
        self._require(EnrollmentState.ENROLLING, EnrollmentState.AWAITING_VERIFICATION)
        logger.info("Enrollment cancelled for user_id=%s factor_id=%s", self.ctx.user_id, self.factor_id)
        self.state = EnrollmentState.CANCELLED
        self.enrollment = None
        self.factor_id = None
