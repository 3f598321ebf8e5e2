from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from resto.core.errors import AuthenticationFailed, ProviderError
from resto.services.identity.adapter import IdentityProvider
from resto.services.identity.types import (
    AuthContext,
    Challenge,
    Factor,
    ProviderSession,
    TotpEnrollment,
    build_factor,
)

logger = logging.getLogger(__name__)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _session_from_payload(payload: dict[str, Any]) -> ProviderSession:
    access_token = payload.get("access_token")
    if not access_token:
        raise ProviderError(details={"detail": "Provider returned no access token"})
    return ProviderSession(
        access_token=access_token,
        token_type=payload.get("token_type") or "bearer",
        expires_in=payload.get("expires_in"),
        refresh_token=payload.get("refresh_token"),
    )


class HostedAuthProvider(IdentityProvider):
    """Client for the hosted auth service's REST MFA endpoints."""

    name = "hosted"

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not base_url:
            raise ProviderError(details={"detail": "Hosted auth URL is not configured"})
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self._transport = transport

    def _headers(self, access_token: str | None) -> dict[str, str]:
        headers = {"apikey": self.api_key}
        headers["Authorization"] = f"Bearer {access_token or self.api_key}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        ctx: AuthContext | None = None,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
        auth_failure_statuses: tuple[int, ...] = (),
    ) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._headers(ctx.access_token if ctx else None),
                transport=self._transport,
            ) as client:
                response = await client.request(method, path, json=json, params=params)
        except httpx.HTTPError as exc:
            logger.warning("Hosted auth %s %s failed: %s", method, path, exc)
            raise ProviderError(details={"path": path, "error": str(exc)}) from exc

        if response.status_code in auth_failure_statuses:
            raise AuthenticationFailed()
        if response.status_code >= 400:
            logger.warning(
                "Hosted auth %s %s returned %s", method, path, response.status_code
            )
            raise ProviderError(
                details={"path": path, "status": response.status_code, "body": response.text[:500]}
            )
        if not response.content:
            return {}
        return response.json()

    async def list_factors(self, ctx: AuthContext) -> list[Factor]:
        payload = await self._request("GET", "/user", ctx=ctx)
        factors: list[Factor] = []
        for item in payload.get("factors") or []:
            if item.get("factor_type") != "totp":
                continue
            try:
                factors.append(
                    build_factor(
                        id=item["id"],
                        status=item.get("status", ""),
                        friendly_name=item.get("friendly_name"),
                        created_at=_parse_timestamp(item.get("created_at")),
                    )
                )
            except (KeyError, TypeError, ValueError) as exc:
                raise ProviderError(details={"detail": f"Malformed factor: {exc}"}) from exc
        return factors

    async def enroll_totp(self, ctx: AuthContext, friendly_name: str) -> TotpEnrollment:
        payload = await self._request(
            "POST",
            "/factors",
            ctx=ctx,
            json={"factor_type": "totp", "friendly_name": friendly_name},
        )
        totp = payload.get("totp") or {}
        if not payload.get("id") or not totp.get("secret"):
            raise ProviderError(details={"detail": "Enrollment response incomplete"})
        return TotpEnrollment(
            factor_id=payload["id"],
            secret=totp["secret"],
            uri=totp.get("uri", ""),
            qr_code=totp.get("qr_code", ""),
        )

    async def challenge(self, ctx: AuthContext, factor_id: str) -> Challenge:
        payload = await self._request("POST", f"/factors/{factor_id}/challenge", ctx=ctx)
        if not payload.get("id"):
            raise ProviderError(details={"detail": "Challenge response incomplete"})
        try:
            expires_at = _parse_timestamp(payload.get("expires_at"))
        except (TypeError, ValueError) as exc:
            raise ProviderError(details={"detail": f"Malformed challenge: {exc}"}) from exc
        return Challenge(id=payload["id"], factor_id=factor_id, expires_at=expires_at)

    async def verify(
        self, ctx: AuthContext, factor_id: str, challenge_id: str, code: str
    ) -> ProviderSession:
        payload = await self._request(
            "POST",
            f"/factors/{factor_id}/verify",
            ctx=ctx,
            json={"challenge_id": challenge_id, "code": code},
            auth_failure_statuses=(400, 422),
        )
        return _session_from_payload(payload)

    async def unenroll(self, ctx: AuthContext, factor_id: str) -> None:
        await self._request("DELETE", f"/factors/{factor_id}", ctx=ctx)

    async def sign_in_with_password(self, email: str, password: str) -> ProviderSession:
        payload = await self._request(
            "POST",
            "/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
            auth_failure_statuses=(400, 401),
        )
        return _session_from_payload(payload)

    async def sign_out(self, ctx: AuthContext) -> None:
        await self._request("POST", "/logout", ctx=ctx)
