from functools import lru_cache
from typing import AsyncGenerator
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from salesync.core.config import get_settings
from salesync.database import async_session
from salesync.integrations.registry import get_registry
from salesync.services.sales_sync_service import SalesSyncService


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting async database sessions."""
    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()


@lru_cache()
def get_sync_service() -> SalesSyncService:
    """Process-wide sync service; it owns the cooldown and in-flight state."""
    settings = get_settings()
    return SalesSyncService(
        registry=get_registry(),
        session_factory=async_session,
        cooldown_seconds=settings.SYNC_COOLDOWN_SECONDS,
        refresh_buffer=timedelta(minutes=settings.TOKEN_REFRESH_BUFFER_MINUTES),
        page_limit=settings.SALES_PAGE_LIMIT,
    )
