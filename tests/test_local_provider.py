from datetime import datetime, timedelta, timezone

import pyotp
import pytest
from sqlalchemy import Select

from conftest import FakeAsyncSession, FakeResult
from resto.core.errors import AuthenticationFailed, ProviderError
from resto.core.security import AAL1, AAL2, decode_token, decrypt_secret, get_password_hash
from resto.models.auth_factor import AuthChallenge, AuthFactor
from resto.models.user import User
from resto.services.identity.local import LocalTotpProvider
from resto.services.identity.types import UnverifiedFactor, VerifiedFactor


def local_store(db: FakeAsyncSession):
    """Serve SELECTs from whatever the provider has added to the session."""

    def _handler(stmt):
        if not isinstance(stmt, Select):
            return None
        entity = stmt.column_descriptions[0].get("entity")
        if entity is AuthFactor:
            rows = [o for o in db.added if isinstance(o, AuthFactor) and o not in db.deleted]
        elif entity is AuthChallenge:
            rows = [o for o in db.added if isinstance(o, AuthChallenge)][-1:]
        elif entity is User:
            rows = [o for o in db._get_store.values() if isinstance(o, User)]
        else:
            return None
        return FakeResult(scalar=rows[0] if rows else None, items=rows)

    return _handler


@pytest.fixture
def account(user_id) -> User:
    return User(
        id=user_id,
        email="guest@example.com",
        hashed_password=get_password_hash("Password123!"),
        is_active=True,
        is_admin=False,
        token_version=0,
    )


@pytest.fixture
def local_db(account) -> FakeAsyncSession:
    db = FakeAsyncSession()
    db.on_get(User, account.id, account)
    db.on_execute(local_store(db))
    return db


@pytest.mark.asyncio
async def test_enroll_stores_encrypted_secret(ctx, local_db) -> None:
    provider = LocalTotpProvider(local_db, issuer="Resto")

    enrollment = await provider.enroll_totp(ctx, "Authenticator App")

    factor = next(o for o in local_db.added if isinstance(o, AuthFactor))
    assert factor.status == "unverified"
    assert factor.secret_encrypted != enrollment.secret
    assert decrypt_secret(factor.secret_encrypted) == enrollment.secret
    assert "issuer=Resto" in enrollment.uri
    assert enrollment.qr_code.startswith("data:image/svg+xml;base64,")
    assert [type(f) for f in await provider.list_factors(ctx)] == [UnverifiedFactor]


@pytest.mark.asyncio
async def test_verify_with_current_code_elevates(ctx, local_db) -> None:
    provider = LocalTotpProvider(local_db)
    enrollment = await provider.enroll_totp(ctx, "Authenticator App")
    challenge = await provider.challenge(ctx, enrollment.factor_id)

    session = await provider.verify(
        ctx, enrollment.factor_id, challenge.id, pyotp.TOTP(enrollment.secret).now()
    )

    claims = decode_token(session.access_token)
    assert claims["aal"] == AAL2
    assert {"method": "totp"} in claims["amr"]
    assert [type(f) for f in await provider.list_factors(ctx)] == [VerifiedFactor]


@pytest.mark.asyncio
async def test_verify_wrong_code_fails_and_factor_stays_unverified(ctx, local_db) -> None:
    provider = LocalTotpProvider(local_db)
    enrollment = await provider.enroll_totp(ctx, "Authenticator App")
    challenge = await provider.challenge(ctx, enrollment.factor_id)
    totp = pyotp.TOTP(enrollment.secret)
    valid = {totp.at(datetime.now(timezone.utc) + timedelta(seconds=30 * step)) for step in (-1, 0, 1)}
    wrong = next(f"{n:06d}" for n in range(1000000) if f"{n:06d}" not in valid)

    with pytest.raises(AuthenticationFailed):
        await provider.verify(ctx, enrollment.factor_id, challenge.id, wrong)

    factor = next(o for o in local_db.added if isinstance(o, AuthFactor))
    assert factor.status == "unverified"


@pytest.mark.asyncio
async def test_challenge_is_single_use(ctx, local_db) -> None:
    provider = LocalTotpProvider(local_db)
    enrollment = await provider.enroll_totp(ctx, "Authenticator App")
    challenge = await provider.challenge(ctx, enrollment.factor_id)
    code = pyotp.TOTP(enrollment.secret).now()
    await provider.verify(ctx, enrollment.factor_id, challenge.id, code)

    with pytest.raises(AuthenticationFailed):
        await provider.verify(ctx, enrollment.factor_id, challenge.id, code)


@pytest.mark.asyncio
async def test_expired_challenge_is_rejected(ctx, local_db) -> None:
    provider = LocalTotpProvider(local_db)
    enrollment = await provider.enroll_totp(ctx, "Authenticator App")
    challenge = await provider.challenge(ctx, enrollment.factor_id)
    stored = next(o for o in local_db.added if isinstance(o, AuthChallenge))
    stored.expires_at = datetime.now(timezone.utc) - timedelta(seconds=1)

    with pytest.raises(AuthenticationFailed):
        await provider.verify(ctx, enrollment.factor_id, challenge.id, pyotp.TOTP(enrollment.secret).now())


@pytest.mark.asyncio
async def test_second_enrollment_blocked_once_verified(ctx, local_db) -> None:
    provider = LocalTotpProvider(local_db)
    enrollment = await provider.enroll_totp(ctx, "Authenticator App")
    challenge = await provider.challenge(ctx, enrollment.factor_id)
    await provider.verify(ctx, enrollment.factor_id, challenge.id, pyotp.TOTP(enrollment.secret).now())

    with pytest.raises(ProviderError):
        await provider.enroll_totp(ctx, "Second App")


@pytest.mark.asyncio
async def test_unenroll_deletes_factor(ctx, local_db) -> None:
    provider = LocalTotpProvider(local_db)
    enrollment = await provider.enroll_totp(ctx, "Authenticator App")

    await provider.unenroll(ctx, enrollment.factor_id)

    assert await provider.list_factors(ctx) == []


@pytest.mark.asyncio
async def test_unknown_factor_id_is_provider_error(ctx, local_db) -> None:
    with pytest.raises(ProviderError):
        await LocalTotpProvider(local_db).challenge(ctx, "not-a-uuid")


@pytest.mark.asyncio
async def test_password_sign_in_issues_aal1_token(local_db, account) -> None:
    session = await LocalTotpProvider(local_db).sign_in_with_password("guest@example.com", "Password123!")

    claims = decode_token(session.access_token)
    assert claims["sub"] == str(account.id)
    assert claims["aal"] == AAL1
    assert claims["tv"] == 0
    assert account.last_active_at is not None


@pytest.mark.asyncio
async def test_password_sign_in_rejects_wrong_password(local_db) -> None:
    with pytest.raises(AuthenticationFailed):
        await LocalTotpProvider(local_db).sign_in_with_password("guest@example.com", "not-the-password")


@pytest.mark.asyncio
async def test_sign_out_revokes_issued_tokens(ctx, local_db, account) -> None:
    provider = LocalTotpProvider(local_db)

    await provider.sign_out(ctx)

    assert account.token_version == 1
    with pytest.raises(AuthenticationFailed):
        await provider.ensure_session_active(ctx, {"sub": str(account.id), "tv": 0})
    await provider.ensure_session_active(ctx, {"sub": str(account.id), "tv": 1})


@pytest.mark.asyncio
async def test_commit_failure_is_provider_error(ctx, local_db) -> None:
    local_db.fail_commit = True

    with pytest.raises(ProviderError):
        await LocalTotpProvider(local_db).enroll_totp(ctx, "Authenticator App")
    assert local_db.rollbacks == 1
