from uuid import UUID

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from resto.api import deps
from resto.db.session import get_db
from resto.schemas.sessions import RevokeOthersOut, UserSessionOut
from resto.services import sessions as session_service
from resto.services.identity.types import AuthContext

router = APIRouter(prefix="/auth/sessions", tags=["sessions"])


@router.post("/current", response_model=UserSessionOut)
async def record_current_session(
    request: Request,
    ctx: AuthContext = Depends(deps.get_auth_context),
    db: AsyncSession = Depends(get_db),
) -> UserSessionOut:
    row = await session_service.record_current_session(
        db,
        ctx,
        user_agent=request.headers.get("user-agent"),
        ip_address=request.client.host if request.client else None,
    )
    return UserSessionOut.model_validate(row)


@router.get("", response_model=list[UserSessionOut])
async def list_sessions(
    ctx: AuthContext = Depends(deps.get_auth_context),
    db: AsyncSession = Depends(get_db),
) -> list[UserSessionOut]:
    rows = await session_service.list_sessions(db, user_id=ctx.user_id)
    return [UserSessionOut.model_validate(row) for row in rows]


@router.post("/revoke-others", response_model=RevokeOthersOut)
async def revoke_other_sessions(
    ctx: AuthContext = Depends(deps.get_auth_context),
    db: AsyncSession = Depends(get_db),
) -> RevokeOthersOut:
    revoked = await session_service.revoke_other_sessions(db, ctx)
    return RevokeOthersOut(revoked=revoked)


@router.post("/{session_id}/revoke", response_model=UserSessionOut)
async def revoke_session(
    session_id: UUID,
    ctx: AuthContext = Depends(deps.get_auth_context),
    db: AsyncSession = Depends(get_db),
) -> UserSessionOut:
    row = await session_service.revoke_session(db, user_id=ctx.user_id, session_id=session_id)
    return UserSessionOut.model_validate(row)
