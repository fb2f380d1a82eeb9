"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_sync.config import LocationMap, Settings, get_settings
from payroll_sync.database import init_db
from payroll_sync.errors import UpstreamUnavailable
from payroll_sync.providers.base import WorkforcePlatform
from payroll_sync.providers.connecteam import ConnecteamProvider
from payroll_sync.services.identity_resolver import IdentityResolver


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    _, factory = init_db()
    async with factory() as session:
        try:
            yield session
        finally:
            await session.close()


def get_app_settings() -> Settings:
    """Get settings dependency."""
    return get_settings()


SettingsDep = Annotated[Settings, Depends(get_app_settings)]


async def get_platform(
    settings: SettingsDep,
) -> AsyncGenerator[WorkforcePlatform | None, None]:
    """Connecteam client scoped to one request, or None without an API key."""
    if not settings.connecteam_api_key:
        yield None
        return
    provider = ConnecteamProvider(
        settings.connecteam_api_key,
        base_url=settings.connecteam_api_base_url,
        timeout_seconds=settings.request_timeout_seconds,
        retry_count=settings.retry_count,
        backoff_seconds=settings.retry_backoff_seconds,
    )
    try:
        yield provider
    finally:
        await provider.close()


def get_locations(settings: SettingsDep) -> LocationMap:
    """Configured location → workforce source mapping."""
    return settings.locations


PlatformDep = Annotated[WorkforcePlatform | None, Depends(get_platform)]


def require_platform(platform: WorkforcePlatform | None) -> WorkforcePlatform:
    """The configured platform for paths that must call it.

    Raises:
        UpstreamUnavailable: If no API key is configured
    """
    if platform is None:
        raise UpstreamUnavailable("CONNECTEAM_API_KEY is not configured")
    return platform


def get_identity_resolver(platform: PlatformDep, settings: SettingsDep) -> IdentityResolver:
    """Identity resolver scoped to one request."""
    return IdentityResolver(
        platform,
        page_size=settings.user_page_size,
        max_pages=settings.user_page_cap,
    )


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
LocationsDep = Annotated[LocationMap, Depends(get_locations)]
ResolverDep = Annotated[IdentityResolver, Depends(get_identity_resolver)]
