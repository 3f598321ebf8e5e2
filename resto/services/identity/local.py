from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

import pyotp
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from resto.core.errors import AuthenticationFailed, ProviderError
from resto.core.security import (
    AAL1,
    AAL2,
    create_access_token,
    decrypt_secret,
    encrypt_secret,
    verify_password,
)
from resto.core.settings import settings
from resto.models.auth_factor import AuthChallenge, AuthFactor
from resto.models.user import User
from resto.services.identity.adapter import IdentityProvider
from resto.services.identity.qr import render_qr_data_uri
from resto.services.identity.types import (
    AuthContext,
    Challenge,
    Factor,
    ProviderSession,
    TotpEnrollment,
    build_factor,
)

logger = logging.getLogger(__name__)


def _as_uuid(value: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(value))
    except ValueError as exc:
        raise ProviderError(details={"detail": f"Malformed id: {value}"}) from exc


def _as_aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class LocalTotpProvider(IdentityProvider):
    """Identity provider backed by this service's own tables and pyotp."""

    name = "local"

    def __init__(self, db: AsyncSession, *, issuer: str | None = None) -> None:
        self.db = db
        self.issuer = issuer or settings.mfa_issuer

    async def _commit(self, operation: str) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise ProviderError(details={"operation": operation}) from exc

    async def _get_factor(self, ctx: AuthContext, factor_id: str) -> AuthFactor:
        stmt = select(AuthFactor).where(
            AuthFactor.id == _as_uuid(factor_id),
            AuthFactor.user_id == ctx.user_id,
        )
        result = await self.db.execute(stmt)
        factor = result.scalar_one_or_none()
        if not factor:
            raise ProviderError(details={"detail": "Factor not found"})
        return factor

    async def _get_user(self, user_id) -> User:
        user = await self.db.get(User, user_id)
        if not user or not user.is_active:
            raise AuthenticationFailed("Inactive or unknown user")
        return user

    async def list_factors(self, ctx: AuthContext) -> list[Factor]:
        stmt = (
            select(AuthFactor)
            .where(AuthFactor.user_id == ctx.user_id, AuthFactor.factor_type == "totp")
            .order_by(AuthFactor.created_at)
        )
        result = await self.db.execute(stmt)
        return [
            build_factor(
                id=str(row.id),
                status=row.status,
                friendly_name=row.friendly_name,
                created_at=row.created_at,
            )
            for row in result.scalars().all()
        ]

    async def enroll_totp(self, ctx: AuthContext, friendly_name: str) -> TotpEnrollment:
        if await self.verified_factor(ctx):
            raise ProviderError(details={"detail": "A verified TOTP factor already exists"})

        secret = pyotp.random_base32()
        uri = pyotp.TOTP(secret).provisioning_uri(
            name=ctx.email or str(ctx.user_id),
            issuer_name=self.issuer,
        )
        factor = AuthFactor(
            id=uuid.uuid4(),
            user_id=ctx.user_id,
            factor_type="totp",
            status="unverified",
            friendly_name=friendly_name,
            secret_encrypted=encrypt_secret(secret),
        )
        self.db.add(factor)
        await self._commit("factor.enroll")
        return TotpEnrollment(
            factor_id=str(factor.id),
            secret=secret,
            uri=uri,
            qr_code=render_qr_data_uri(uri),
        )

    async def challenge(self, ctx: AuthContext, factor_id: str) -> Challenge:
        factor = await self._get_factor(ctx, factor_id)
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=settings.mfa_challenge_ttl_seconds)
        challenge = AuthChallenge(id=uuid.uuid4(), factor_id=factor.id, expires_at=expires_at)
        self.db.add(challenge)
        await self._commit("factor.challenge")
        return Challenge(id=str(challenge.id), factor_id=str(factor.id), expires_at=expires_at)

    async def verify(
        self, ctx: AuthContext, factor_id: str, challenge_id: str, code: str
    ) -> ProviderSession:
        factor = await self._get_factor(ctx, factor_id)
        stmt = select(AuthChallenge).where(
            AuthChallenge.id == _as_uuid(challenge_id),
            AuthChallenge.factor_id == factor.id,
        )
        result = await self.db.execute(stmt)
        challenge = result.scalar_one_or_none()
        if not challenge:
            raise ProviderError(details={"detail": "Challenge not found"})

        now = datetime.now(timezone.utc)
        if challenge.verified_at is not None or _as_aware(challenge.expires_at) <= now:
            raise AuthenticationFailed("Challenge expired. Please try again.")

        try:
            secret = decrypt_secret(factor.secret_encrypted)
        except ValueError as exc:
            raise ProviderError(details={"detail": "Factor secret unreadable"}) from exc
        if not pyotp.TOTP(secret).verify(code, valid_window=1):
            raise AuthenticationFailed()

        user = await self._get_user(ctx.user_id)
        challenge.verified_at = now
        factor.status = "verified"
        self.db.add(challenge)
        self.db.add(factor)
        await self._commit("factor.verify")

        token = create_access_token(
            str(user.id),
            email=user.email,
            aal=AAL2,
            amr=["totp", "password"],
            session_id=ctx.session_id,
            token_version=user.token_version,
        )
        return ProviderSession(access_token=token, expires_in=settings.access_token_expire_minutes * 60)

    async def unenroll(self, ctx: AuthContext, factor_id: str) -> None:
        factor = await self._get_factor(ctx, factor_id)
        await self.db.delete(factor)
        await self._commit("factor.unenroll")

    async def sign_in_with_password(self, email: str, password: str) -> ProviderSession:
        result = await self.db.execute(select(User).where(User.email == email))
        user = result.scalar_one_or_none()
        if not user or not verify_password(password, user.hashed_password):
            raise AuthenticationFailed("Invalid credentials")
        if not user.is_active:
            raise AuthenticationFailed("Inactive user")

        user.last_active_at = datetime.now(timezone.utc)
        self.db.add(user)
        await self._commit("user.sign_in")

        token = create_access_token(
            str(user.id),
            email=user.email,
            aal=AAL1,
            token_version=user.token_version,
        )
        return ProviderSession(access_token=token, expires_in=settings.access_token_expire_minutes * 60)

    async def sign_out(self, ctx: AuthContext) -> None:
        user = await self.db.get(User, ctx.user_id)
        if not user:
            return
        user.token_version += 1
        self.db.add(user)
        await self._commit("user.sign_out")

    async def ensure_session_active(self, ctx: AuthContext, claims: dict[str, Any]) -> None:
        user = await self._get_user(ctx.user_id)
        token_version = claims.get("tv")
        if token_version is not None and user.token_version != token_version:
            raise AuthenticationFailed("Token revoked")
