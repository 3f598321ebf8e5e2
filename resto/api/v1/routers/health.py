from fastapi import APIRouter, Request

from resto.core.health import live_payload, ready_payload, status_summary_payload
from resto.core.limiter import limiter

router = APIRouter(tags=["health"])


@router.get("/health/live", summary="Liveness probe")
@limiter.exempt
async def health_live(request: Request) -> dict:
    return await live_payload()


@router.get("/health/ready", summary="Readiness probe")
@limiter.exempt
async def health_ready(request: Request) -> dict:
    return await ready_payload()


@router.get("/health", summary="Alias of /health/ready")
@limiter.exempt
async def read_health(request: Request) -> dict:
    return await ready_payload()


@router.get("/status/summary", tags=["status"], summary="Readiness plus build version")
@limiter.exempt
async def status_summary(request: Request) -> dict:
    return await status_summary_payload()
