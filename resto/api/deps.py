from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from resto.core.context import set_user_id
from resto.core.errors import AuthenticationFailed
from resto.core.security import decode_token
from resto.db.session import get_db
from resto.services.identity.adapter import IdentityProvider
from resto.services.identity.service import get_identity_provider
from resto.services.identity.types import AuthContext

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login")


async def get_provider(db: AsyncSession = Depends(get_db)) -> IdentityProvider:
    return get_identity_provider(db)


async def get_auth_context(
    token: str = Depends(oauth2_scheme),
    provider: IdentityProvider = Depends(get_provider),
) -> AuthContext:
    try:
        claims = decode_token(token)
        ctx = AuthContext.from_claims(token, claims)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc

    try:
        await provider.ensure_session_active(ctx, claims)
    except AuthenticationFailed as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=exc.message,
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc

    set_user_id(str(ctx.user_id))
    return ctx
