import logging

from fastapi import FastAPI

from resto.core.settings import settings
from resto.db.init_db import init_db
from resto.db.session import engine

logger = logging.getLogger(__name__)


def register_event_handlers(app: FastAPI) -> None:
    @app.on_event("startup")
    async def on_startup() -> None:
        logger.info(
            "Starting up (environment=%s, identity_provider=%s)",
            settings.environment,
            settings.identity_provider,
        )
        await init_db()

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        await engine.dispose()
        logger.info("Shut down")
