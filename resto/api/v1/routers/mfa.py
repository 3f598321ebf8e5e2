from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from resto.api import deps
from resto.api.v1.routers.auth import session_out
from resto.core.limiter import limiter
from resto.core.settings import settings
from resto.db.session import get_db
from resto.schemas.mfa import (
    BackupCodeRequest,
    BackupCodesOut,
    BackupCodesStatusOut,
    DisableOut,
    EnrollCancelRequest,
    EnrollmentOut,
    EnrollRequest,
    EnrollVerifiedOut,
    EnrollVerifyRequest,
    FactorOut,
    MfaStatusOut,
    RegeneratedCodesOut,
    StepUpOut,
    TotpCodeRequest,
)
from resto.services import backup_codes, mfa as mfa_service, mfa_disable
from resto.services.identity.adapter import IdentityProvider
from resto.services.identity.types import AuthContext
from resto.services.mfa_enrollment import EnrollmentFlow
from resto.services.mfa_verification import StepUpFlow, StepUpResult

router = APIRouter(prefix="/auth/mfa", tags=["mfa"])


def _step_up_out(result: StepUpResult) -> StepUpOut:
    return StepUpOut(
        method=result.method,
        assurance_elevated=result.assurance_elevated,
        session=session_out(result.session) if result.session else None,
        remaining_backup_codes=result.remaining_backup_codes,
        notices=list(result.notices),
    )


@router.get("/status", response_model=MfaStatusOut)
async def read_status(
    ctx: AuthContext = Depends(deps.get_auth_context),
    provider: IdentityProvider = Depends(deps.get_provider),
    db: AsyncSession = Depends(get_db),
) -> MfaStatusOut:
    status = await mfa_service.get_status(ctx, provider, db)
    if not status.enabled:
        # leftovers from a disable whose cleanup step failed
        await mfa_disable.cleanup_orphaned_codes(ctx, provider, db)
    return MfaStatusOut(
        enabled=status.enabled,
        factors=[FactorOut.model_validate(factor) for factor in status.factors],
        current_level=status.assurance.current_level,
        next_level=status.assurance.next_level,
        step_up_required=status.assurance.step_up_required,
        remaining_backup_codes=status.remaining_backup_codes,
        backup_codes_low=status.backup_codes_low,
    )


@router.post("/enroll", response_model=EnrollmentOut)
async def start_enrollment(
    payload: EnrollRequest,
    ctx: AuthContext = Depends(deps.get_auth_context),
    provider: IdentityProvider = Depends(deps.get_provider),
    db: AsyncSession = Depends(get_db),
) -> EnrollmentOut:
    flow = EnrollmentFlow(ctx, provider, db)
    enrollment = await flow.start(payload.friendly_name)
    return EnrollmentOut(
        factor_id=enrollment.factor_id,
        secret=enrollment.secret,
        uri=enrollment.uri,
        qr_code=enrollment.qr_code,
        state=flow.state.value,
    )


@router.post("/enroll/verify", response_model=EnrollVerifiedOut)
@limiter.limit(settings.mfa_verify_rate_limit)
async def verify_enrollment(
    payload: EnrollVerifyRequest,
    request: Request,
    ctx: AuthContext = Depends(deps.get_auth_context),
    provider: IdentityProvider = Depends(deps.get_provider),
    db: AsyncSession = Depends(get_db),
) -> EnrollVerifiedOut:
    flow = await EnrollmentFlow.resume(ctx, provider, db, payload.factor_id)
    result = await flow.submit_code(payload.code)
    return EnrollVerifiedOut(
        factor=FactorOut.model_validate(result.factor),
        backup_codes=BackupCodesOut(codes=result.backup_codes, remaining=len(result.backup_codes)),
        session=session_out(result.session),
        state=flow.state.value,
    )


@router.post("/enroll/cancel")
async def cancel_enrollment(
    payload: EnrollCancelRequest,
    ctx: AuthContext = Depends(deps.get_auth_context),
    provider: IdentityProvider = Depends(deps.get_provider),
    db: AsyncSession = Depends(get_db),
) -> dict:
    flow = await EnrollmentFlow.resume(ctx, provider, db, payload.factor_id)
    flow.cancel()
    return {"state": flow.state.value}


@router.post("/verify", response_model=StepUpOut)
@limiter.limit(settings.mfa_verify_rate_limit)
async def verify_totp(
    payload: TotpCodeRequest,
    request: Request,
    ctx: AuthContext = Depends(deps.get_auth_context),
    provider: IdentityProvider = Depends(deps.get_provider),
    db: AsyncSession = Depends(get_db),
) -> StepUpOut:
    result = await StepUpFlow(ctx, provider, db).submit_totp(payload.code)
    return _step_up_out(result)


@router.post("/verify/backup-code", response_model=StepUpOut)
@limiter.limit(settings.mfa_verify_rate_limit)
async def verify_backup_code(
    payload: BackupCodeRequest,
    request: Request,
    ctx: AuthContext = Depends(deps.get_auth_context),
    provider: IdentityProvider = Depends(deps.get_provider),
    db: AsyncSession = Depends(get_db),
) -> StepUpOut:
    result = await StepUpFlow(ctx, provider, db).submit_backup_code(payload.code)
    return _step_up_out(result)


@router.post("/verify/cancel", status_code=204)
async def cancel_verification(
    ctx: AuthContext = Depends(deps.get_auth_context),
    provider: IdentityProvider = Depends(deps.get_provider),
    db: AsyncSession = Depends(get_db),
) -> None:
    await StepUpFlow(ctx, provider, db).cancel()
    return None


@router.post("/disable", response_model=DisableOut)
@limiter.limit(settings.mfa_verify_rate_limit)
async def disable(
    payload: TotpCodeRequest,
    request: Request,
    ctx: AuthContext = Depends(deps.get_auth_context),
    provider: IdentityProvider = Depends(deps.get_provider),
    db: AsyncSession = Depends(get_db),
) -> DisableOut:
    result = await mfa_disable.disable(ctx, provider, db, payload.code)
    return DisableOut(
        factor_id=result.factor_id,
        backup_codes_deleted=result.backup_codes_deleted,
        session=session_out(result.session) if result.session else None,
    )


@router.get("/backup-codes", response_model=BackupCodesStatusOut)
async def backup_codes_status(
    ctx: AuthContext = Depends(deps.get_auth_context),
    db: AsyncSession = Depends(get_db),
) -> BackupCodesStatusOut:
    remaining = await backup_codes.count_remaining(db, user_id=ctx.user_id)
    return BackupCodesStatusOut(remaining=remaining, low=backup_codes.is_low(remaining))


@router.post("/backup-codes/regenerate", response_model=RegeneratedCodesOut)
@limiter.limit(settings.mfa_verify_rate_limit)
async def regenerate_backup_codes(
    payload: TotpCodeRequest,
    request: Request,
    ctx: AuthContext = Depends(deps.get_auth_context),
    provider: IdentityProvider = Depends(deps.get_provider),
    db: AsyncSession = Depends(get_db),
) -> RegeneratedCodesOut:
    result = await mfa_service.regenerate_backup_codes(ctx, provider, db, payload.code)
    return RegeneratedCodesOut(
        backup_codes=BackupCodesOut(codes=result.codes, remaining=len(result.codes)),
        session=session_out(result.session) if result.session else None,
    )
