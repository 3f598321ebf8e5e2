from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import text

from resto.core.settings import settings
from resto.db.session import engine
from resto.utils.redis_client import get_redis_client

logger = logging.getLogger(__name__)

APP_VERSION = "0.1.0"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _uses_redis() -> bool:
    return settings.rate_limit_storage_uri.startswith(("redis://", "rediss://"))


async def _check_db() -> dict[str, str]:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as exc:
        logger.warning("Database health check failed: %s", exc)
        return {"status": "error", "error": str(exc)}
    return {"status": "ok"}


async def _check_redis() -> dict[str, str]:
    if not _uses_redis():
        return {"status": "skipped"}
    try:
        await get_redis_client().ping()
    except Exception as exc:
        logger.warning("Redis health check failed: %s", exc)
        return {"status": "error", "error": str(exc)}
    return {"status": "ok"}


async def _check_identity_provider() -> dict[str, str]:
    # configuration only; a live call would need a user token
    if settings.identity_provider == "hosted" and not settings.hosted_auth_api_key:
        return {"status": "error", "provider": "hosted", "error": "HOSTED_AUTH_API_KEY is not set"}
    return {"status": "ok", "provider": settings.identity_provider}


async def _run_checks() -> dict[str, dict[str, Any]]:
    return {
        "database": await _check_db(),
        "redis": await _check_redis(),
        "identity_provider": await _check_identity_provider(),
    }


def _is_ready(checks: dict[str, dict[str, Any]]) -> bool:
    return all(check.get("status") in ("ok", "skipped") for check in checks.values())


async def live_payload() -> dict[str, str]:
    return {"status": "ok", "timestamp": _now()}


async def ready_payload() -> dict[str, Any]:
    checks = await _run_checks()
    ready = _is_ready(checks)
    return {
        "status": "ok" if ready else "degraded",
        "ready": ready,
        "environment": settings.environment,
        "timestamp": _now(),
        "checks": checks,
    }


async def status_summary_payload() -> dict[str, Any]:
    payload = await ready_payload()
    payload["version"] = APP_VERSION
    return payload
