from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from resto.core.errors import InvalidFlowTransition
from resto.services import backup_codes
from resto.services.identity.adapter import IdentityProvider, validate_totp_code
from resto.services.identity.types import (
    AssuranceLevel,
    AuthContext,
    Factor,
    ProviderSession,
    VerifiedFactor,
)


@dataclass(frozen=True)
class MfaStatus:
    enabled: bool
    factors: list[Factor]
    assurance: AssuranceLevel
    remaining_backup_codes: int
    backup_codes_low: bool


@dataclass(frozen=True)
class RegeneratedCodes:
    codes: list[str] = field(default_factory=list)
    session: ProviderSession | None = None


async def confirm_totp(
    ctx: AuthContext,
    provider: IdentityProvider,
    factor_id: str,
    code: str,
) -> ProviderSession:
    """Challenge ``factor_id`` and verify it with ``code``."""
    challenge = await provider.challenge(ctx, factor_id)
    return await provider.verify(ctx, factor_id, challenge.id, code)


async def require_verified_factor(ctx: AuthContext, provider: IdentityProvider) -> VerifiedFactor:
    factor = await provider.verified_factor(ctx)
    if factor is None:
        raise InvalidFlowTransition("Two-factor authentication is not enabled", details={"state": "not_enrolled"})
    return factor


async def get_status(ctx: AuthContext, provider: IdentityProvider, db: AsyncSession) -> MfaStatus:
    factors = await provider.list_factors(ctx)
    enabled = any(isinstance(factor, VerifiedFactor) for factor in factors)
    assurance = await provider.get_assurance_level(ctx)
    remaining = await backup_codes.count_remaining(db, user_id=ctx.user_id) if enabled else 0
    return MfaStatus(
        enabled=enabled,
        factors=factors,
        assurance=assurance,
        remaining_backup_codes=remaining,
        backup_codes_low=enabled and backup_codes.is_low(remaining),
    )


async def regenerate_backup_codes(
    ctx: AuthContext,
    provider: IdentityProvider,
    db: AsyncSession,
    code: str,
) -> RegeneratedCodes:
    cleaned = validate_totp_code(code)
    factor = await require_verified_factor(ctx, provider)
    session = await confirm_totp(ctx, provider, factor.id, cleaned)
    codes = await backup_codes.generate(db, user_id=ctx.user_id)
    return RegeneratedCodes(codes=codes, session=session)
