# tests/unit/services/test_connection_repository.py
from datetime import timedelta

import pytest

from salesync.core.enums import PlatformName
from salesync.integrations.base import TokenPair, utc_now
from salesync.services.connection_repository import (
    ConnectionData,
    SQLConnectionRepository,
    list_users_with_connections,
)

USER = "user-123"


@pytest.fixture
def repository(db_session):
    return SQLConnectionRepository(db_session, USER)


@pytest.mark.asyncio
async def test_set_connection_creates_and_replaces(repository):
    await repository.set_connection(PlatformName.EBAY, ConnectionData(access_token="a1", refresh_token="r1"))
    connection = await repository.set_connection(
        PlatformName.EBAY,
        ConnectionData(access_token="a2", refresh_token="r2", platform_username="seller"),
    )

    assert connection.access_token == "a2"
    assert connection.platform_username == "seller"
    assert len(await repository.list_connections()) == 1


@pytest.mark.asyncio
async def test_from_token_pair_carries_account_fields():
    expires = utc_now() + timedelta(hours=1)
    data = ConnectionData.from_token_pair(
        TokenPair(access_token="a", refresh_token=None, expires_at=expires),
        platform_account_id="shop123",
    )
    assert data.refresh_token == ""
    assert data.token_expires_at == expires
    assert data.platform_account_id == "shop123"


@pytest.mark.asyncio
async def test_update_tokens_keeps_refresh_token_when_not_rotated(repository):
    await repository.set_connection(PlatformName.ETSY, ConnectionData(access_token="old", refresh_token="keep-me"))

    expires = utc_now() + timedelta(hours=1)
    await repository.update_tokens(PlatformName.ETSY, TokenPair(access_token="new", refresh_token=None, expires_at=expires))

    connection = await repository.get_connection(PlatformName.ETSY)
    assert connection.access_token == "new"
    assert connection.refresh_token == "keep-me"
    assert connection.token_expires_at is not None


@pytest.mark.asyncio
async def test_update_tokens_without_connection(repository):
    with pytest.raises(LookupError):
        await repository.update_tokens(PlatformName.DEPOP, TokenPair(access_token="x"))


@pytest.mark.asyncio
async def test_remove_connection(repository):
    await repository.set_connection(PlatformName.DEPOP, ConnectionData(access_token="a"))

    assert await repository.remove_connection(PlatformName.DEPOP) is True
    assert await repository.remove_connection(PlatformName.DEPOP) is False
    assert await repository.get_connection(PlatformName.DEPOP) is None


@pytest.mark.asyncio
async def test_list_connected_platforms_is_user_scoped(db_session, repository):
    await repository.set_connection(PlatformName.ETSY, ConnectionData(access_token="a"))
    await repository.set_connection(PlatformName.DEPOP, ConnectionData(access_token="b"))
    await SQLConnectionRepository(db_session, "user-456").set_connection(
        PlatformName.EBAY, ConnectionData(access_token="c"),
    )

    assert await repository.list_connected_platforms() == [PlatformName.DEPOP, PlatformName.ETSY]
    assert await list_users_with_connections(db_session) == [USER, "user-456"]
