from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from resto.core.errors import ProviderError
from resto.core.logging import audit_event
from resto.core.security import AAL2
from resto.services import backup_codes
from resto.services.identity.adapter import IdentityProvider, validate_totp_code
from resto.services.identity.types import AuthContext, ProviderSession
from resto.services.mfa import confirm_totp, require_verified_factor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DisableResult:
    factor_id: str
    backup_codes_deleted: int
    session: Optional[ProviderSession] = None


async def disable(
    ctx: AuthContext,
    provider: IdentityProvider,
    db: AsyncSession,
    code: str,
) -> DisableResult:
    """Re-verify a current TOTP code, then unenroll the factor and drop its backup codes.

    A wrong code leaves the factor and codes untouched. If unenroll succeeds
    but the code cleanup fails, the error propagates and a retry (or
    ``cleanup_orphaned_codes``) finishes the job.
    """
    cleaned = validate_totp_code(code)
    factor = await require_verified_factor(ctx, provider)
    session = await confirm_totp(ctx, provider, factor.id, cleaned)

    # the provider only removes a verified factor for an aal2 session
    elevated = replace(ctx, access_token=session.access_token, aal=AAL2)
    await provider.unenroll(elevated, factor.id)
    audit_event("mfa.disabled", user_id=str(ctx.user_id), factor_id=factor.id)

    try:
        deleted = await backup_codes.delete_for_user(db, user_id=ctx.user_id)
    except ProviderError:
        logger.error("Factor %s removed but backup codes remain for user_id=%s", factor.id, ctx.user_id)
        raise
    return DisableResult(factor_id=factor.id, backup_codes_deleted=deleted, session=session)


async def cleanup_orphaned_codes(
    ctx: AuthContext,
    provider: IdentityProvider,
    db: AsyncSession,
) -> int:
    """Delete backup codes left behind for a user without a verified factor."""
    if await provider.verified_factor(ctx) is not None:
        return 0
    return await backup_codes.delete_for_user(db, user_id=ctx.user_id)
