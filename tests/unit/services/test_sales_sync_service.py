# tests/unit/services/test_sales_sync_service.py
import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from salesync.core.enums import PlatformName, SyncErrorKind
from salesync.core.exceptions import PlatformAPIError, SyncError
from salesync.integrations.base import utc_now
from salesync.models.sale import Sale
from salesync.services.sale_import_service import ImportResult, SaleImportService
from salesync.services.sales_sync_service import SalesSyncService, SyncErrorEntry, SyncResult
from tests.mocks.mock_platform import InMemoryConnectionRepository, MockAdapter, make_record

USER = "user-123"


class GatedAdapter(MockAdapter):
    """get_sales blocks until the test opens the gate."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.gate = asyncio.Event()

    async def get_sales(self, query, access_token, account_id=None):
        await self.gate.wait()
        return await super().get_sales(query, access_token, account_id)


@pytest.fixture
def ebay():
    return MockAdapter(PlatformName.EBAY, [make_record("E1"), make_record("E2")])


@pytest.fixture
def etsy():
    return MockAdapter(PlatformName.ETSY, [
        make_record("T1", platform=PlatformName.ETSY),
        make_record("T2", platform=PlatformName.ETSY),
    ])


@pytest.fixture
def repository():
    repo = InMemoryConnectionRepository(USER)
    repo.add(PlatformName.EBAY, expires_at=utc_now() + timedelta(hours=1))
    repo.add(PlatformName.ETSY, expires_at=utc_now() + timedelta(hours=1), account_id="shop123")
    return repo


@pytest.fixture
def service(ebay, etsy):
    return SalesSyncService({PlatformName.EBAY: ebay, PlatformName.ETSY: etsy}, cooldown_seconds=60)


async def _platforms_in_ledger(db):
    result = await db.execute(select(Sale.platform, Sale.external_id).order_by(Sale.external_id))
    return result.all()


@pytest.mark.asyncio
async def test_sync_imports_every_platform(service, repository, db_session, etsy):
    result = await service.sync_platform_sales(USER, repository=repository, importer=SaleImportService(db_session))

    assert result.synced == 4
    assert result.total == 4
    assert result.errors == []
    assert {p.platform for p in result.platforms} == {PlatformName.EBAY, PlatformName.ETSY}
    assert result.summary == "2 platforms synced, 0 failed"
    # Shop-scoped platforms get their account id
    assert etsy.sales_calls[0]["account_id"] == "shop123"


@pytest.mark.asyncio
async def test_failing_platform_does_not_block_the_others(service, repository, db_session, ebay):
    ebay.fail_sales = PlatformAPIError("eBay is down", platform="ebay", status_code=503)

    result = await service.sync_platform_sales(USER, repository=repository, importer=SaleImportService(db_session))

    assert result.errors == [SyncErrorEntry(PlatformName.EBAY, "eBay is down", SyncErrorKind.FETCH)]
    assert result.synced == 2
    assert [row.platform for row in await _platforms_in_ledger(db_session)] == ["etsy", "etsy"]
    assert result.summary == "1 platforms synced, 1 failed: [eBay: eBay is down]"


@pytest.mark.asyncio
async def test_non_domain_adapter_error_is_a_fetch_error(service, repository, db_session, ebay):
    ebay.fail_sales = ValueError("unexpected payload")

    result = await service.sync_platform_sales(USER, repository=repository, importer=SaleImportService(db_session))

    assert len(result.errors) == 1
    assert result.errors[0].kind == SyncErrorKind.FETCH
    assert "unexpected payload" in result.errors[0].reason


@pytest.mark.asyncio
async def test_rejected_refresh_is_reported_as_reauth(service, repository, db_session, ebay):
    ebay.fail_refresh = True
    repository.connections[PlatformName.EBAY].token_expires_at = utc_now() - timedelta(minutes=1)

    result = await service.sync_platform_sales(USER, repository=repository, importer=SaleImportService(db_session))

    assert len(result.errors) == 1
    error = result.errors[0]
    assert error.platform == PlatformName.EBAY
    assert error.kind == SyncErrorKind.REAUTH
    assert "reconnect in Settings" in error.reason
    assert ebay.sales_calls == []
    assert result.synced == 2


@pytest.mark.asyncio
async def test_persist_failure_is_reported_per_platform(service, repository, db_session, mocker):
    mocker.patch.object(db_session, "commit", side_effect=RuntimeError("disk full"))

    result = await service.sync_platform_sales(USER, repository=repository, importer=SaleImportService(db_session))

    assert [e.kind for e in result.errors] == [SyncErrorKind.PERSIST, SyncErrorKind.PERSIST]
    assert result.errors[0].reason == "Failed to save eBay sales; they will be retried on the next sync"
    assert "disk full" not in result.summary
    assert result.synced == 0
    # Fetched-but-unsaved records still count toward the total
    assert result.total == 4


@pytest.mark.asyncio
async def test_unexpected_error_is_isolated(service, repository, db_session, mocker):
    original = repository.get_connection

    async def flaky_get_connection(platform):
        if platform == PlatformName.EBAY:
            raise RuntimeError("boom")
        return await original(platform)

    mocker.patch.object(repository, "get_connection", side_effect=flaky_get_connection)

    result = await service.sync_platform_sales(USER, repository=repository, importer=SaleImportService(db_session))

    assert result.errors == [SyncErrorEntry(PlatformName.EBAY, "boom", SyncErrorKind.UNEXPECTED)]
    assert result.synced == 2


@pytest.mark.asyncio
async def test_unexpected_error_rolls_back_before_next_platform(service, repository, db_session, mocker):
    original = repository.get_connection

    async def flaky_get_connection(platform):
        if platform == PlatformName.EBAY:
            raise RuntimeError("boom")
        return await original(platform)

    mocker.patch.object(repository, "get_connection", side_effect=flaky_get_connection)
    rollback = mocker.spy(db_session, "rollback")

    result = await service.sync_platform_sales(USER, repository=repository, importer=SaleImportService(db_session))

    assert rollback.call_count == 1
    assert [e.kind for e in result.errors] == [SyncErrorKind.UNEXPECTED]
    assert [row.platform for row in await _platforms_in_ledger(db_session)] == ["etsy", "etsy"]


@pytest.mark.asyncio
async def test_failed_rollback_does_not_stop_the_run(service, repository, db_session, mocker):
    original = repository.get_connection

    async def flaky_get_connection(platform):
        if platform == PlatformName.EBAY:
            raise RuntimeError("boom")
        return await original(platform)

    mocker.patch.object(repository, "get_connection", side_effect=flaky_get_connection)
    real_rollback = db_session.rollback
    calls = []

    async def broken_rollback():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("connection lost")
        await real_rollback()

    mocker.patch.object(db_session, "rollback", side_effect=broken_rollback)

    result = await service.sync_platform_sales(USER, repository=repository, importer=SaleImportService(db_session))

    assert result.synced == 2
    assert len(result.errors) == 1


@pytest.mark.asyncio
async def test_running_twice_does_not_duplicate(service, repository, db_session):
    importer = SaleImportService(db_session)

    first = await service.sync_platform_sales(USER, repository=repository, importer=importer)
    second = await service.sync_platform_sales(USER, force=True, repository=repository, importer=importer)

    assert first.synced == 4
    assert second.synced == 0
    assert second.total == 4
    assert len(await _platforms_in_ledger(db_session)) == 4


@pytest.mark.asyncio
async def test_start_date_is_passed_to_adapters(service, repository, db_session, ebay):
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    await service.sync_platform_sales(USER, start_date=start, repository=repository, importer=SaleImportService(db_session))
    assert ebay.sales_calls[0]["query"].start_date == start


@pytest.mark.asyncio
async def test_cooldown_skips_unforced_sync(service, repository, db_session, ebay):
    importer = SaleImportService(db_session)
    await service.sync_platform_sales(USER, repository=repository, importer=importer)

    skipped = await service.sync_platform_sales(USER, repository=repository, importer=importer)
    assert skipped.skipped is True
    assert skipped.synced == 0
    assert len(ebay.sales_calls) == 1

    forced = await service.sync_platform_sales(USER, force=True, repository=repository, importer=importer)
    assert forced.skipped is False
    assert len(ebay.sales_calls) == 2


@pytest.mark.asyncio
async def test_cooldown_is_per_user(service, repository, db_session):
    importer = SaleImportService(db_session)
    await service.sync_platform_sales(USER, repository=repository, importer=importer)

    other = InMemoryConnectionRepository("user-456")
    result = await service.sync_platform_sales("user-456", repository=other, importer=importer)
    assert result.skipped is False


async def _wait_until_running(service, user_id):
    for _ in range(50):
        if service.is_running(user_id):
            return
        await asyncio.sleep(0)
    raise AssertionError("sync never started")


@pytest.mark.asyncio
async def test_second_caller_waits_for_in_flight_sync(repository, db_session):
    adapter = GatedAdapter(PlatformName.EBAY, [make_record("E1")])
    service = SalesSyncService({PlatformName.EBAY: adapter, PlatformName.ETSY: MockAdapter(PlatformName.ETSY)})

    first = asyncio.create_task(
        service.sync_platform_sales(USER, repository=repository, importer=SaleImportService(db_session))
    )
    await _wait_until_running(service, USER)

    second = asyncio.create_task(service.sync_platform_sales(USER))
    await asyncio.sleep(0)
    adapter.gate.set()

    first_result, second_result = await asyncio.gather(first, second)

    assert first_result is second_result
    assert len(adapter.sales_calls) == 1
    assert not service.is_running(USER)


class InMemoryImporter:
    """Ledger kept in a set; enough to observe overlapping runs."""

    def __init__(self):
        self.ledger = set()

    async def import_sales(self, user_id, platform, records):
        result = ImportResult(platform=platform, fetched=len(records))
        for record in records:
            key = (user_id, platform, record.external_id)
            if key in self.ledger:
                result.already_present += 1
            else:
                self.ledger.add(key)
                result.inserted += 1
        return result


@pytest.mark.asyncio
async def test_forced_caller_runs_its_own_sync(repository):
    adapter = GatedAdapter(PlatformName.EBAY, [make_record("E1")])
    service = SalesSyncService({PlatformName.EBAY: adapter, PlatformName.ETSY: MockAdapter(PlatformName.ETSY)})
    importer = InMemoryImporter()

    first = asyncio.create_task(service.sync_platform_sales(USER, repository=repository, importer=importer))
    await _wait_until_running(service, USER)
    second = asyncio.create_task(
        service.sync_platform_sales(USER, force=True, repository=repository, importer=importer)
    )
    await asyncio.sleep(0)
    adapter.gate.set()

    first_result, second_result = await asyncio.gather(first, second)

    assert first_result is not second_result
    assert len(adapter.sales_calls) == 2
    # Overlapping runs cost redundant work, never a second row
    assert first_result.synced + second_result.synced == 1
    assert importer.ledger == {(USER, PlatformName.EBAY, "E1")}


@pytest.mark.asyncio
async def test_abandoned_sync_still_completes(repository, db_session):
    adapter = GatedAdapter(PlatformName.EBAY, [make_record("E1")])
    service = SalesSyncService({PlatformName.EBAY: adapter, PlatformName.ETSY: MockAdapter(PlatformName.ETSY)})

    caller = asyncio.create_task(
        service.sync_platform_sales(USER, repository=repository, importer=SaleImportService(db_session))
    )
    await _wait_until_running(service, USER)
    in_flight = service._in_flight[USER]

    caller.cancel()
    adapter.gate.set()

    with pytest.raises(asyncio.CancelledError):
        await caller
    result = await in_flight

    assert result.synced == 1
    assert [row.external_id for row in await _platforms_in_ledger(db_session)] == ["E1"]
    assert service.in_cooldown(USER)


@pytest.mark.asyncio
async def test_no_connections(service, db_session):
    result = await service.sync_platform_sales(
        USER, repository=InMemoryConnectionRepository(USER), importer=SaleImportService(db_session),
    )
    assert result == SyncResult()
    assert result.summary == "0 platforms synced, 0 failed"


@pytest.mark.asyncio
async def test_connection_listing_failure_raises_sync_error(service, repository, db_session, mocker):
    mocker.patch.object(repository, "list_connected_platforms", side_effect=RuntimeError("db gone"))

    with pytest.raises(SyncError):
        await service.sync_platform_sales(USER, repository=repository, importer=SaleImportService(db_session))
    assert not service.in_cooldown(USER)


@pytest.mark.asyncio
async def test_session_factory_required_without_injection(service):
    with pytest.raises(SyncError):
        await service.sync_platform_sales(USER)
