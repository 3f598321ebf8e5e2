from sqlalchemy.ext.asyncio import AsyncSession

from resto.core.settings import settings
from resto.services.identity.adapter import IdentityProvider
from resto.services.identity.hosted import HostedAuthProvider
from resto.services.identity.local import LocalTotpProvider


def get_identity_provider(db: AsyncSession) -> IdentityProvider:
    if settings.identity_provider == "hosted":
        return HostedAuthProvider(
            base_url=settings.hosted_auth_url,
            api_key=settings.hosted_auth_api_key,
        )
    return LocalTotpProvider(db, issuer=settings.mfa_issuer)
