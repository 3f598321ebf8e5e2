from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from resto.core.errors import NotFoundError
from resto.core.logging import audit_event
from resto.models.user_session import UserSession
from resto.services.identity.types import AuthContext

SESSION_TOKEN_FRAGMENT_LENGTH = 20

# Order matters: Edge and Opera UAs also contain "Chrome"/"Safari".
_BROWSERS = (
    ("Firefox", "Firefox"),
    ("Edg", "Edge"),
    ("OPR", "Opera"),
    ("Opera", "Opera"),
    ("Chrome", "Chrome"),
    ("Safari", "Safari"),
)


@dataclass(frozen=True, slots=True)
class DeviceInfo:
    browser: str
    os: str
    device_type: str


def parse_user_agent(user_agent: str | None) -> DeviceInfo:
    ua = user_agent or ""
    browser = next((name for token, name in _BROWSERS if token in ua), "Unknown Browser")

    # Mobile platforms first: iOS UAs mention "Mac OS X", Android UAs mention "Linux".
    if "iPad" in ua:
        return DeviceInfo(browser, "iPadOS", "tablet")
    if "iPhone" in ua:
        return DeviceInfo(browser, "iOS", "mobile")
    if "Android" in ua:
        return DeviceInfo(browser, "Android", "mobile")
    if "Windows" in ua:
        return DeviceInfo(browser, "Windows", "desktop")
    if "Mac" in ua:
        return DeviceInfo(browser, "macOS", "desktop")
    if "Linux" in ua:
        return DeviceInfo(browser, "Linux", "desktop")
    return DeviceInfo(browser, "Unknown OS", "desktop")


def session_token_fragment(access_token: str) -> str:
    return access_token[-SESSION_TOKEN_FRAGMENT_LENGTH:]


async def record_current_session(
    db: AsyncSession,
    ctx: AuthContext,
    *,
    user_agent: str | None,
    ip_address: str | None,
) -> UserSession:
    """Upsert the row for this token and make it the user's only current row."""
    token = session_token_fragment(ctx.access_token)
    now = datetime.now(timezone.utc)

    stmt = select(UserSession).where(
        UserSession.user_id == ctx.user_id,
        UserSession.session_token == token,
        UserSession.is_revoked.is_(False),
    )
    result = await db.execute(stmt)
    current = result.scalar_one_or_none()

    if current is None:
        device = parse_user_agent(user_agent)
        current = UserSession(
            user_id=ctx.user_id,
            session_token=token,
            device_info=user_agent,
            ip_address=ip_address,
            browser=device.browser,
            os=device.os,
            device_type=device.device_type,
            is_current=True,
            is_revoked=False,
            last_active_at=now,
        )
        db.add(current)
        await db.flush()
    else:
        current.last_active_at = now
        current.is_current = True
        db.add(current)

    await db.execute(
        update(UserSession)
        .where(UserSession.user_id == ctx.user_id, UserSession.id != current.id)
        .values(is_current=False)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    await db.refresh(current)
    return current


async def list_sessions(db: AsyncSession, *, user_id) -> list[UserSession]:
    stmt = (
        select(UserSession)
        .where(UserSession.user_id == user_id, UserSession.is_revoked.is_(False))
        .order_by(UserSession.last_active_at.desc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def revoke_session(db: AsyncSession, *, user_id, session_id: UUID) -> UserSession:
    stmt = select(UserSession).where(
        UserSession.id == session_id,
        UserSession.user_id == user_id,
        UserSession.is_revoked.is_(False),
    )
    result = await db.execute(stmt)
    row = result.scalar_one_or_none()
    if not row:
        raise NotFoundError("Session not found")

    row.is_revoked = True
    row.is_current = False
    row.revoked_at = datetime.now(timezone.utc)
    db.add(row)
    await db.commit()
    audit_event("session.revoked", user_id=str(user_id), session_id=str(session_id))
    return row


async def revoke_other_sessions(db: AsyncSession, ctx: AuthContext) -> int:
    token = session_token_fragment(ctx.access_token)
    stmt = (
        update(UserSession)
        .where(
            UserSession.user_id == ctx.user_id,
            UserSession.session_token != token,
            UserSession.is_revoked.is_(False),
        )
        .values(is_revoked=True, is_current=False, revoked_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    await db.commit()
    revoked = result.rowcount or 0
    audit_event("session.revoked_others", user_id=str(ctx.user_id), count=revoked)
    return revoked
