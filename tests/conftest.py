# tests/conftest.py
import os

# Must be set before salesync.database builds its engine
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from salesync.core.config import Settings
from salesync.database import Base
from salesync.dependencies import get_db, get_sync_service
from salesync.integrations.registry import build_registry, get_registry
from salesync.main import app
from salesync.services.sales_sync_service import SalesSyncService

TEST_DATABASE_URL = "sqlite+aiosqlite://"
TEST_USER_ID = "user-123"


@pytest.fixture
def settings():
    """Provide test settings"""
    return Settings(
        DATABASE_URL=TEST_DATABASE_URL,
        EBAY_CLIENT_ID="test-client-id",
        EBAY_CLIENT_SECRET="test-client-secret",
        EBAY_RU_NAME="test-ru-name",
        ETSY_CLIENT_ID="etsy-key",
        ETSY_REDIRECT_URI="https://app.example.com/etsy/callback",
        DEPOP_AUTH_PROXY_URL="https://depop-proxy.example.com",
        DEPOP_PROXY_SECRET="proxy-secret",
    )


@pytest.fixture
async def test_engine():
    """In-memory database, recreated for every test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    """Provide a database session for tests"""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def registry(settings):
    return build_registry(settings)


@pytest.fixture
def sync_service(registry, session_factory):
    return SalesSyncService(registry, session_factory=session_factory, cooldown_seconds=60)


@pytest.fixture
async def client(session_factory, registry, sync_service):
    """API client bound to the test database and adapters."""
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_registry] = lambda: registry
    app.dependency_overrides[get_sync_service] = lambda: sync_service

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"X-User-Id": TEST_USER_ID},
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
