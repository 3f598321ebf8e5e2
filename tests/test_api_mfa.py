from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from conftest import VALID_TOTP, FakeAsyncSession, FakeResult
from resto.core.errors import GENERIC_FAILURE_MESSAGE
from resto.core.security import create_access_token
from resto.db.session import get_db
from resto.main import app
from resto.models.user_session import UserSession
from resto.services import backup_codes
from resto.services.identity.types import ProviderSession

client = TestClient(app)


def test_protected_route_requires_token() -> None:
    response = client.get("/api/v1/auth/mfa/status")
    assert response.status_code == 401
    body = response.json()
    assert body["data"] is None
    assert body["code"] == "unauthorized"


def test_garbage_token_is_rejected() -> None:
    response = client.get("/api/v1/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401
    assert response.headers["www-authenticate"] == "Bearer"


def test_me_echoes_context(override_deps, ctx) -> None:
    response = client.get("/api/v1/auth/me")
    assert response.status_code == 200
    body = response.json()
    assert body["code"] == "ok"
    assert body["data"]["id"] == str(ctx.user_id)
    assert body["data"]["aal"] == "aal1"


def test_login_flags_step_up(override_deps, provider, user_id) -> None:
    provider.add_verified()

    async def sign_in(email, password):
        return ProviderSession(access_token=create_access_token(str(user_id)), expires_in=3600)

    provider.sign_in_with_password = sign_in

    response = client.post(
        "/api/v1/auth/login", json={"email": "guest@example.com", "password": "Password123!"}
    )

    assert response.status_code == 200
    assert response.json()["data"]["mfa_required"] is True


def test_enrollment_round_trip(override_deps, code_db, user_id) -> None:
    started = client.post("/api/v1/auth/mfa/enroll", json={})
    assert started.status_code == 200
    enrollment = started.json()["data"]
    assert enrollment["state"] == "awaiting_verification"
    assert started.headers["cache-control"] == "no-store"

    rejected = client.post(
        "/api/v1/auth/mfa/enroll/verify",
        json={"factor_id": enrollment["factor_id"], "code": "000000"},
    )
    assert rejected.status_code == 401
    assert rejected.json()["code"] == "invalid_code"
    assert rejected.json()["message"] == "Invalid verification code. Please try again."

    verified = client.post(
        "/api/v1/auth/mfa/enroll/verify",
        json={"factor_id": enrollment["factor_id"], "code": VALID_TOTP},
    )
    assert verified.status_code == 200
    data = verified.json()["data"]
    assert data["state"] == "verified"
    assert data["factor"]["status"] == "verified"
    assert len(data["backup_codes"]["codes"]) == 10
    assert data["session"]["access_token"] == "elevated-token"

    status = client.get("/api/v1/auth/mfa/status").json()["data"]
    assert status["enabled"] is True
    assert status["remaining_backup_codes"] == 10
    assert status["backup_codes_low"] is False


def test_enroll_cancel(override_deps, provider) -> None:
    factor_id = client.post("/api/v1/auth/mfa/enroll", json={}).json()["data"]["factor_id"]

    response = client.post("/api/v1/auth/mfa/enroll/cancel", json={"factor_id": factor_id})

    assert response.status_code == 200
    assert response.json()["data"] == {"state": "cancelled"}
    assert factor_id in provider.factors


def test_malformed_code_is_422(override_deps, provider) -> None:
    provider.add_verified()
    response = client.post("/api/v1/auth/mfa/verify", json={"code": "12ab56"})
    assert response.status_code == 422
    assert response.json()["code"] == "invalid_code_format"
    assert "challenge" not in provider.calls


def test_provider_outage_returns_generic_message(override_deps, provider) -> None:
    provider.add_verified()
    provider.fail_on.add("challenge")

    response = client.post("/api/v1/auth/mfa/verify", json={"code": VALID_TOTP})

    assert response.status_code == 502
    body = response.json()
    assert body["message"] == GENERIC_FAILURE_MESSAGE
    assert body["details"] == {}


@pytest.mark.asyncio
async def test_backup_code_step_up(override_deps, provider, code_db, user_id) -> None:
    provider.add_verified()
    codes = await backup_codes.generate(code_db, user_id=user_id)

    response = client.post("/api/v1/auth/mfa/verify/backup-code", json={"code": codes[0]})
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["method"] == "backup_code"
    assert data["assurance_elevated"] is False
    assert data["remaining_backup_codes"] == 9
    assert data["notices"]

    reused = client.post("/api/v1/auth/mfa/verify/backup-code", json={"code": codes[0]})
    assert reused.status_code == 401

    remaining = client.get("/api/v1/auth/mfa/backup-codes").json()["data"]
    assert remaining == {"remaining": 9, "low": False}


def test_verify_cancel_signs_out(override_deps, provider) -> None:
    provider.add_verified()

    response = client.post("/api/v1/auth/mfa/verify/cancel")

    assert response.status_code == 200
    assert response.json()["data"] is None
    assert provider.signed_out is True


@pytest.mark.asyncio
async def test_disable(override_deps, provider, code_db, user_id) -> None:
    provider.add_verified()
    await backup_codes.generate(code_db, user_id=user_id)

    wrong = client.post("/api/v1/auth/mfa/disable", json={"code": "654321"})
    assert wrong.status_code == 401
    assert await backup_codes.count_remaining(code_db, user_id=user_id) == 10

    response = client.post("/api/v1/auth/mfa/disable", json={"code": VALID_TOTP})
    assert response.status_code == 200
    assert response.json()["data"]["backup_codes_deleted"] == 10
    assert provider.factors == {}


def test_regenerate_backup_codes(override_deps, provider) -> None:
    provider.add_verified()

    response = client.post("/api/v1/auth/mfa/backup-codes/regenerate", json={"code": VALID_TOTP})

    assert response.status_code == 200
    assert response.json()["data"]["backup_codes"]["remaining"] == 10


def test_verify_is_rate_limited(override_deps, provider) -> None:
    provider.add_verified()
    statuses = [
        client.post("/api/v1/auth/mfa/verify", json={"code": "000000"}).status_code
        for _ in range(11)
    ]
    assert statuses[:10] == [401] * 10
    assert statuses[10] == 429


def test_list_sessions(override_deps, ctx) -> None:
    db = FakeAsyncSession()
    row = UserSession(
        id=uuid4(),
        user_id=ctx.user_id,
        session_token="t" * 20,
        browser="Chrome",
        os="Windows",
        device_type="desktop",
        is_current=True,
    )
    db.on_execute(lambda stmt: FakeResult(items=[row]))

    async def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db

    response = client.get("/api/v1/auth/sessions")

    assert response.status_code == 200
    sessions = response.json()["data"]
    assert sessions[0]["id"] == str(row.id)
    assert sessions[0]["is_current"] is True


def test_request_id_is_echoed(override_deps) -> None:
    response = client.get("/api/v1/auth/me", headers={"X-Request-ID": "req-123"})
    assert response.headers["x-request-id"] == "req-123"




def test_disable_without_factor_is_conflict(override_deps) -> None:
    response = client.post("/api/v1/auth/mfa/disable", json={"code": VALID_TOTP})

    assert response.status_code == 409
    assert response.json()["code"] == "invalid_state"
    assert response.json()["details"] == {"state": "not_enrolled"}
