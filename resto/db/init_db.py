import asyncio
import logging

from sqlalchemy import select

from resto.core.security import get_password_hash
from resto.core.settings import settings
from resto.db.session import AsyncSessionLocal
from resto.models.user import User

logger = logging.getLogger(__name__)


async def init_db() -> None:
    """Seed the admin account used by the local identity provider."""
    if settings.identity_provider != "local":
        return
    if not settings.seed_admin_email or not settings.seed_admin_password:
        logger.info("No seed admin configured; skipping")
        return

    async with AsyncSessionLocal() as session:
        stmt = select(User).where(User.email == settings.seed_admin_email)
        result = await session.execute(stmt)
        user = result.scalar_one_or_none()
        if user:
            logger.info("Seed admin already exists")
            return

        session.add(
            User(
                email=settings.seed_admin_email,
                hashed_password=get_password_hash(settings.seed_admin_password),
                is_active=True,
                is_admin=True,
                token_version=0,
            )
        )
        await session.commit()
        logger.info("Seed admin created")


if __name__ == "__main__":
    asyncio.run(init_db())
