# salesync/services/connection_repository.py
"""
Connection store.

The sync engine never reads connections from ambient state; it is handed a
ConnectionRepository bound to one user. SQLConnectionRepository is the
production implementation, tests use an in-memory one.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from salesync.core.enums import PlatformName
from salesync.integrations.base import TokenPair
from salesync.models.platform_connection import PlatformConnection, utc_now

logger = logging.getLogger(__name__)


@dataclass
class ConnectionData:
    """Fields written on connect (OAuth exchange or manual capture)."""
    access_token: str
    refresh_token: str = ""
    token_expires_at: Optional[datetime] = None
    platform_account_id: Optional[str] = None
    platform_username: Optional[str] = None

    @classmethod
    def from_token_pair(cls, tokens: TokenPair, **account) -> "ConnectionData":
        return cls(
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token or "",
            token_expires_at=tokens.expires_at,
            **account,
        )


class ConnectionRepository(ABC):
    """Per-user access to PlatformConnection rows."""

    user_id: str

    @abstractmethod
    async def get_connection(self, platform: PlatformName) -> Optional[PlatformConnection]:
        pass

    @abstractmethod
    async def set_connection(self, platform: PlatformName, data: ConnectionData) -> PlatformConnection:
        """Create or replace the (user, platform) connection."""
        pass

    @abstractmethod
    async def update_tokens(self, platform: PlatformName, tokens: TokenPair) -> PlatformConnection:
        """Persist refreshed credentials in one write."""
        pass

    @abstractmethod
    async def remove_connection(self, platform: PlatformName) -> bool:
        pass

    @abstractmethod
    async def list_connected_platforms(self) -> List[PlatformName]:
        pass


class SQLConnectionRepository(ConnectionRepository):

    def __init__(self, session: AsyncSession, user_id: str):
        self.session = session
        self.user_id = user_id

    async def get_connection(self, platform: PlatformName) -> Optional[PlatformConnection]:
        result = await self.session.execute(
            select(PlatformConnection).where(
                PlatformConnection.user_id == self.user_id,
                PlatformConnection.platform == PlatformName(platform).value,
            )
        )
        return result.scalar_one_or_none()

    async def set_connection(self, platform: PlatformName, data: ConnectionData) -> PlatformConnection:
        platform = PlatformName(platform)
        connection = await self.get_connection(platform)
        now = utc_now()

        if connection is None:
            connection = PlatformConnection(
                user_id=self.user_id,
                platform=platform.value,
                connected_at=now,
            )
            self.session.add(connection)

        connection.access_token = data.access_token
        connection.refresh_token = data.refresh_token or ""
        connection.token_expires_at = data.token_expires_at
        connection.platform_account_id = data.platform_account_id
        connection.platform_username = data.platform_username
        connection.updated_at = now

        try:
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        await self.session.refresh(connection)

        logger.info(f"Stored {platform.value} connection for user {self.user_id}")
        return connection

    async def update_tokens(self, platform: PlatformName, tokens: TokenPair) -> PlatformConnection:
        connection = await self.get_connection(platform)
        if connection is None:
            raise LookupError(f"No {PlatformName(platform).value} connection for user {self.user_id}")

        connection.access_token = tokens.access_token
        connection.refresh_token = tokens.refresh_token or connection.refresh_token or ""
        connection.token_expires_at = tokens.expires_at
        connection.updated_at = utc_now()

        try:
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        return connection

    async def remove_connection(self, platform: PlatformName) -> bool:
        result = await self.session.execute(
            delete(PlatformConnection).where(
                PlatformConnection.user_id == self.user_id,
                PlatformConnection.platform == PlatformName(platform).value,
            )
        )
        await self.session.commit()
        removed = (result.rowcount or 0) > 0
        if removed:
            logger.info(f"Removed {PlatformName(platform).value} connection for user {self.user_id}")
        return removed

    async def list_connected_platforms(self) -> List[PlatformName]:
        result = await self.session.execute(
            select(PlatformConnection.platform)
            .where(PlatformConnection.user_id == self.user_id)
            .order_by(PlatformConnection.platform)
        )
        platforms = []
        for value in result.scalars().all():
            try:
                platforms.append(PlatformName(value))
            except ValueError:
                logger.warning(f"Ignoring connection for unsupported platform {value!r}")
        return platforms

    async def list_connections(self) -> List[PlatformConnection]:
        result = await self.session.execute(
            select(PlatformConnection)
            .where(PlatformConnection.user_id == self.user_id)
            .order_by(PlatformConnection.platform)
        )
        return list(result.scalars().all())


async def list_users_with_connections(session: AsyncSession) -> List[str]:
    """Distinct user ids that have at least one connection (scheduled sync)."""
    result = await session.execute(
        select(PlatformConnection.user_id).distinct().order_by(PlatformConnection.user_id)
    )
    return list(result.scalars().all())
