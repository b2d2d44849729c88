# salesync/services/sales_sync_service.py
"""
Sales sync orchestrator.

One run walks the user's connected platforms in sequence:
token (refresh if needed) -> adapter.get_sales -> SaleImportService.
Each platform is isolated; a failure is recorded as an error entry and the
loop moves on, so the result is usually a partial success.

The service is process-wide. It remembers when each user last finished a
sync (cooldown) and keeps the in-flight run per user as an asyncio.Task so
a second caller can await it instead of starting a duplicate.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from salesync.core.enums import PlatformName, SyncErrorKind
from salesync.core.exceptions import (
    PersistError,
    PlatformServiceError,
    SyncError,
    TokenRefreshError,
)
from salesync.integrations.base import SalesQuery, utc_now
from salesync.integrations.registry import AdapterRegistry, get_adapter
from salesync.services.connection_repository import ConnectionRepository, SQLConnectionRepository
from salesync.services.sale_import_service import ImportResult, SaleImportService
from salesync.services.token_service import DEFAULT_REFRESH_BUFFER, TokenManager

logger = logging.getLogger(__name__)


@dataclass
class SyncErrorEntry:
    platform: PlatformName
    reason: str
    kind: SyncErrorKind


@dataclass
class SyncResult:
    """synced = rows newly inserted, total = records the adapters returned,
    including batches that failed to save."""
    synced: int = 0
    total: int = 0
    errors: List[SyncErrorEntry] = field(default_factory=list)
    platforms: List[ImportResult] = field(default_factory=list)
    skipped: bool = False

    @property
    def summary(self) -> str:
        if self.skipped:
            return "Sales were synced moments ago; skipped"
        text = f"{len(self.platforms)} platforms synced, {len(self.errors)} failed"
        if self.errors:
            reasons = "; ".join(f"{e.platform.display_name}: {e.reason}" for e in self.errors)
            text += f": [{reasons}]"
        return text


def _reason(error: Exception) -> str:
    if isinstance(error, PlatformServiceError):
        return error.message
    return str(error) or error.__class__.__name__


async def _discard_pending(importer) -> None:
    """Roll back the shared session so the next platform starts clean."""
    session = getattr(importer, "db", None)
    if session is None:
        return
    try:
        await session.rollback()
    except Exception as e:
        logger.error(f"Rollback after failed platform sync did not succeed: {e}")


class SalesSyncService:

    def __init__(
        self,
        registry: AdapterRegistry,
        session_factory: Optional[Callable[[], AsyncSession]] = None,
        cooldown_seconds: int = 60,
        refresh_buffer: timedelta = DEFAULT_REFRESH_BUFFER,
        page_limit: int = 200,
    ):
        self.registry = registry
        self.session_factory = session_factory
        self.cooldown = timedelta(seconds=cooldown_seconds)
        self.refresh_buffer = refresh_buffer
        self.page_limit = page_limit

        self._in_flight: Dict[str, asyncio.Task] = {}
        self._last_completed: Dict[str, datetime] = {}

    def in_cooldown(self, user_id: str) -> bool:
        last = self._last_completed.get(user_id)
        return last is not None and utc_now() - last < self.cooldown

    def is_running(self, user_id: str) -> bool:
        task = self._in_flight.get(user_id)
        return task is not None and not task.done()

    async def sync_platform_sales(
        self,
        user_id: str,
        start_date: Optional[datetime] = None,
        force: bool = False,
        repository: Optional[ConnectionRepository] = None,
        importer: Optional[SaleImportService] = None,
    ) -> SyncResult:
        """
        Sync every connected platform for the user.

        Without force, a run inside the cooldown window is skipped and a run
        already in flight is awaited rather than duplicated. With force a new
        run always starts; overlapping runs are safe because imports dedup.

        repository/importer are injected in tests; otherwise the run opens its
        own session so it can outlive the caller.
        """
        if not force:
            running = self._in_flight.get(user_id)
            if running is not None and not running.done():
                logger.info(f"Sync already running for user {user_id}; waiting for it")
                return await asyncio.shield(running)
            if self.in_cooldown(user_id):
                logger.info(f"Sync for user {user_id} skipped (cooldown)")
                return SyncResult(skipped=True)

        task = asyncio.create_task(self._run_isolated(user_id, start_date, repository, importer))
        self._in_flight[user_id] = task
        task.add_done_callback(lambda t: self._finished(user_id, t))

        # A caller that stops waiting does not cancel the run
        return await asyncio.shield(task)

    def _finished(self, user_id: str, task: asyncio.Task) -> None:
        if self._in_flight.get(user_id) is task:
            del self._in_flight[user_id]
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Sync run for user {user_id} failed: {error}")
            return
        self._last_completed[user_id] = utc_now()

    async def _run_isolated(
        self,
        user_id: str,
        start_date: Optional[datetime],
        repository: Optional[ConnectionRepository],
        importer: Optional[SaleImportService],
    ) -> SyncResult:
        if repository is not None and importer is not None:
            return await self.run_sync(user_id, repository, importer, start_date)

        if self.session_factory is None:
            raise SyncError("No session factory configured for sales sync")

        async with self.session_factory() as session:
            return await self.run_sync(
                user_id,
                repository or SQLConnectionRepository(session, user_id),
                importer or SaleImportService(session),
                start_date,
            )

    async def run_sync(
        self,
        user_id: str,
        repository: ConnectionRepository,
        importer: SaleImportService,
        start_date: Optional[datetime] = None,
    ) -> SyncResult:
        """One pass over the user's platforms, no cooldown or in-flight handling."""
        try:
            platforms = await repository.list_connected_platforms()
        except Exception as e:
            logger.error(f"Could not load connections for user {user_id}: {e}", exc_info=True)
            raise SyncError(f"Could not load platform connections: {e}") from e

        result = SyncResult()
        if not platforms:
            logger.info(f"User {user_id} has no connected platforms")
            return result

        token_manager = TokenManager(repository, refresh_buffer=self.refresh_buffer)
        query = SalesQuery(start_date=start_date, limit=self.page_limit)

        for platform in platforms:
            try:
                imported = await self._sync_platform(user_id, platform, repository, importer, token_manager, query)
            except TokenRefreshError as e:
                result.errors.append(SyncErrorEntry(platform, e.message, SyncErrorKind.REAUTH))
                continue
            except PersistError as e:
                result.errors.append(SyncErrorEntry(platform, str(e), SyncErrorKind.PERSIST))
                result.total += e.fetched
                continue
            except PlatformServiceError as e:
                result.errors.append(SyncErrorEntry(platform, e.message, SyncErrorKind.FETCH))
                continue
            except Exception as e:
                logger.exception(f"Unexpected error syncing {platform.value} for user {user_id}")
                result.errors.append(SyncErrorEntry(platform, _reason(e), SyncErrorKind.UNEXPECTED))
                await _discard_pending(importer)
                continue

            if imported is None:
                continue
            result.platforms.append(imported)
            result.synced += imported.inserted
            result.total += imported.fetched

        for entry in result.errors:
            logger.warning(f"Sync {entry.platform.value} failed for user {user_id} ({entry.kind.value}): {entry.reason}")
        logger.info(f"Sync for user {user_id}: {result.summary} ({result.synced} new of {result.total} fetched)")
        return result

    async def _sync_platform(
        self,
        user_id: str,
        platform: PlatformName,
        repository: ConnectionRepository,
        importer: SaleImportService,
        token_manager: TokenManager,
        query: SalesQuery,
    ) -> Optional[ImportResult]:
        adapter = get_adapter(platform, self.registry)
        connection = await repository.get_connection(platform)
        if connection is None:
            # Disconnected since the platform list was read
            return None

        access_token = await token_manager.get_valid_token(adapter, connection)

        try:
            records = await adapter.get_sales(query, access_token, connection.platform_account_id)
        except PlatformServiceError:
            raise
        except Exception as e:
            raise PlatformServiceError(
                f"Failed to fetch {platform.display_name} sales: {_reason(e)}",
                platform=platform.value,
            ) from e

        return await importer.import_sales(user_id, platform, records)
