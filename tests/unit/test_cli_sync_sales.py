# tests/unit/test_cli_sync_sales.py
from unittest.mock import AsyncMock, MagicMock

import pytest
from click.testing import CliRunner

from salesync.cli import sync_sales as cli_module
from salesync.core.enums import PlatformName, SyncErrorKind
from salesync.services.sales_sync_service import SyncErrorEntry, SyncResult


@pytest.fixture
def runner():
    return CliRunner()


def test_prints_one_line_per_user(runner, mocker):
    run_sync = mocker.patch.object(cli_module, "run_sync", new=AsyncMock(return_value={
        "user-a": SyncResult(synced=2, total=3),
        "user-b": SyncResult(errors=[SyncErrorEntry(PlatformName.ETSY, "rate limited", SyncErrorKind.FETCH)]),
    }))

    result = runner.invoke(cli_module.sync_sales, ["--user", "user-a", "--user", "user-b", "--since", "2024-01-01", "--force"])

    assert result.exit_code == 0, result.output
    assert "user-a: 0 platforms synced, 0 failed (2 new of 3 fetched)" in result.output
    assert "! Etsy [fetch]: rate limited" in result.output

    user_ids, start_date, force = run_sync.await_args.args
    assert user_ids == ["user-a", "user-b"]
    assert start_date.isoformat() == "2024-01-01T00:00:00+00:00"
    assert force is True


def test_failure_exits_non_zero(runner, mocker):
    mocker.patch.object(cli_module, "run_sync", new=AsyncMock(side_effect=RuntimeError("database unavailable")))

    result = runner.invoke(cli_module.sync_sales, [])

    assert result.exit_code == 1
    assert "database unavailable" in result.output


@pytest.mark.asyncio
async def test_run_sync_defaults_to_connected_users(session_factory, mocker):
    sync_service = MagicMock()
    sync_service.sync_platform_sales = AsyncMock(return_value=SyncResult())
    mocker.patch.object(cli_module, "get_sync_service", return_value=sync_service)
    mocker.patch.object(cli_module, "async_session", session_factory)
    mocker.patch.object(cli_module, "list_users_with_connections", new=AsyncMock(return_value=["user-a"]))

    results = await cli_module.run_sync([])

    assert list(results) == ["user-a"]
    sync_service.sync_platform_sales.assert_awaited_once_with("user-a", start_date=None, force=False)
