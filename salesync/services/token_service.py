# salesync/services/token_service.py
import logging
from datetime import datetime, timedelta
from typing import Optional

from salesync.core.enums import PlatformName
from salesync.core.exceptions import PlatformServiceError, TokenRefreshError
from salesync.integrations.base import MarketplaceAdapter, ensure_utc, utc_now
from salesync.models.platform_connection import PlatformConnection
from salesync.services.connection_repository import ConnectionRepository

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_BUFFER = timedelta(minutes=5)


def reconnect_message(platform: PlatformName) -> str:
    return f"{PlatformName(platform).display_name} session expired. Please reconnect in Settings."


class TokenManager:
    """
    Hands out a usable access token for a connection.

    A token is used as stored while now < expires_at - buffer. Past that point
    it is refreshed through the adapter and the new credentials are written
    back through the connection repository before being returned. There is
    no lock around the refresh; if two runs race, the last write wins and
    both tokens stay valid.
    """

    def __init__(
        self,
        repository: ConnectionRepository,
        refresh_buffer: timedelta = DEFAULT_REFRESH_BUFFER,
    ):
        self.repository = repository
        self.refresh_buffer = refresh_buffer

    def needs_refresh(self, connection: PlatformConnection, now: Optional[datetime] = None) -> bool:
        if connection.token_expires_at is None:
            return False
        now = now or utc_now()
        return now >= ensure_utc(connection.token_expires_at) - self.refresh_buffer

    async def get_valid_token(self, adapter: MarketplaceAdapter, connection: PlatformConnection) -> str:
        """Raises TokenRefreshError when the user has to reconnect."""
        platform = PlatformName(connection.platform)

        if not self.needs_refresh(connection):
            return connection.access_token

        if not connection.refresh_token:
            logger.warning(f"{platform.value} token for user {self.repository.user_id} expired and no refresh token is stored")
            raise TokenRefreshError(reconnect_message(platform), platform=platform.value)

        logger.info(f"Refreshing {platform.value} token for user {self.repository.user_id} (expires {connection.token_expires_at})")
        try:
            tokens = await adapter.refresh_token(connection.refresh_token)
        except TokenRefreshError as e:
            logger.warning(f"{platform.value} refresh rejected for user {self.repository.user_id}: {e.message}")
            raise TokenRefreshError(reconnect_message(platform), platform=platform.value, status_code=e.status_code)

        await self.repository.update_tokens(platform, tokens)
        return tokens.access_token
