# salesync/cli/sync_sales.py
import asyncio
import logging
from datetime import datetime, timezone

import click

from salesync.core.logging_config import configure_logging
from salesync.database import async_session
from salesync.dependencies import get_sync_service
from salesync.services.connection_repository import list_users_with_connections

logger = logging.getLogger(__name__)


async def run_sync(user_ids, start_date=None, force=False):
    sync_service = get_sync_service()

    if not user_ids:
        async with async_session() as db:
            user_ids = await list_users_with_connections(db)
        logger.info(f"Syncing {len(user_ids)} users with marketplace connections")

    results = {}
    for user_id in user_ids:
        results[user_id] = await sync_service.sync_platform_sales(user_id, start_date=start_date, force=force)
    return results


@click.command()
@click.option("--user", "user_ids", multiple=True, help="User id to sync (repeatable). Defaults to every connected user.")
@click.option("--since", type=click.DateTime(formats=["%Y-%m-%d"]), default=None, help="Only import sales on or after this date")
@click.option("--force", is_flag=True, help="Ignore the sync cooldown")
def sync_sales(user_ids, since, force):
    """Pull marketplace sales into the ledger."""
    configure_logging()
    start_date = since.replace(tzinfo=timezone.utc) if since else None

    started = datetime.now()
    try:
        results = asyncio.run(run_sync(list(user_ids), start_date, force))
    except Exception as e:
        logger.exception("Error during sales sync")
        raise click.ClickException(str(e))

    for user_id, result in results.items():
        click.echo(f"{user_id}: {result.summary} ({result.synced} new of {result.total} fetched)")
        for error in result.errors:
            click.echo(f"  ! {error.platform.display_name} [{error.kind.value}]: {error.reason}")

    logger.info(f"Sales sync finished in {datetime.now() - started}")


if __name__ == "__main__":
    sync_sales()
