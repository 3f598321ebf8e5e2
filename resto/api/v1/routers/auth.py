from fastapi import APIRouter, Depends, Request

from resto.api import deps
from resto.core.errors import ProviderError
from resto.core.limiter import limiter
from resto.core.security import decode_token
from resto.core.settings import settings
from resto.schemas.auth import LoginRequest, LoginResponse, MeOut, SessionOut
from resto.services.identity.adapter import IdentityProvider
from resto.services.identity.types import AuthContext, ProviderSession

router = APIRouter(prefix="/auth", tags=["auth"])


def session_out(session: ProviderSession) -> SessionOut:
    return SessionOut(
        access_token=session.access_token,
        token_type=session.token_type,
        expires_in=session.expires_in,
        refresh_token=session.refresh_token,
    )


@router.post("/login", response_model=LoginResponse)
@limiter.limit(f"{settings.rate_limit_per_minute}/minute")
async def login(
    credentials: LoginRequest,
    request: Request,
    provider: IdentityProvider = Depends(deps.get_provider),
) -> LoginResponse:
    session = await provider.sign_in_with_password(credentials.email, credentials.password)
    try:
        ctx = AuthContext.from_claims(session.access_token, decode_token(session.access_token))
    except ValueError as exc:
        raise ProviderError(details={"detail": "Provider issued an unreadable token"}) from exc
    level = await provider.get_assurance_level(ctx)
    return LoginResponse(session=session_out(session), mfa_required=level.step_up_required)


@router.post("/logout", status_code=204)
async def logout(
    ctx: AuthContext = Depends(deps.get_auth_context),
    provider: IdentityProvider = Depends(deps.get_provider),
) -> None:
    await provider.sign_out(ctx)
    return None


@router.get("/me", response_model=MeOut)
async def read_me(ctx: AuthContext = Depends(deps.get_auth_context)) -> MeOut:
    return MeOut(id=ctx.user_id, email=ctx.email, aal=ctx.aal, session_id=ctx.session_id)
