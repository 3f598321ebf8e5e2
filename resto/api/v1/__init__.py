from fastapi import APIRouter

from resto.api.v1.routers import auth, health, mfa, sessions

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(auth.router)
api_router.include_router(mfa.router)
api_router.include_router(sessions.router)

__all__ = ["api_router"]
