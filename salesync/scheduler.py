"""
Scheduled sales sync.

Runs the sales sync for every user with at least one marketplace connection
on a fixed interval, inside the FastAPI process.
"""

import logging
from datetime import datetime
from typing import Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from salesync.core.config import get_settings
from salesync.database import async_session
from salesync.dependencies import get_sync_service
from salesync.services.connection_repository import list_users_with_connections

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler: Optional[AsyncIOScheduler] = None


async def sync_all_users_task():
    """Non-forced sync for each user; users synced recently are skipped by the cooldown."""
    logger.info("=== SCHEDULED SALES SYNC STARTING ===")

    async with async_session() as db:
        user_ids = await list_users_with_connections(db)

    sync_service = get_sync_service()
    synced = failed = 0
    for user_id in user_ids:
        try:
            result = await sync_service.sync_platform_sales(user_id)
        except Exception as e:
            failed += 1
            logger.exception(f"Scheduled sync failed for user {user_id}: {e}")
            continue
        synced += 1
        if result.errors:
            logger.warning(f"Scheduled sync for user {user_id}: {result.summary}")

    logger.info(f"Scheduled sales sync finished: {synced} users synced, {failed} failed")


def job_listener(event):
    """Listen to job events for logging"""
    if event.exception:
        logger.error(f"Job {event.job_id} crashed: {event.exception}")
    else:
        logger.info(f"Job {event.job_id} executed successfully at {datetime.now()}")


def create_scheduler() -> AsyncIOScheduler:
    """Create and configure the scheduler"""
    global scheduler

    if scheduler is not None:
        return scheduler

    settings = get_settings()
    scheduler = AsyncIOScheduler()
    scheduler.add_listener(job_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)

    if settings.SCHEDULED_SYNC_ENABLED:
        scheduler.add_job(
            sync_all_users_task,
            IntervalTrigger(minutes=settings.SCHEDULED_SYNC_INTERVAL_MINUTES),
            id="sync_all_sales",
            name="Sync Sales For All Users",
            replace_existing=True,
            max_instances=1,
            misfire_grace_time=600,
        )
        logger.info(f"Scheduled sales sync every {settings.SCHEDULED_SYNC_INTERVAL_MINUTES} minutes")
    else:
        logger.info("Scheduled sync is disabled. Set SCHEDULED_SYNC_ENABLED=true to enable")

    return scheduler


async def start_scheduler():
    global scheduler

    if scheduler is None:
        scheduler = create_scheduler()

    if not scheduler.running:
        scheduler.start()
        jobs = scheduler.get_jobs()
        logger.info(f"Scheduler started with {len(jobs)} job(s)")
        for job in jobs:
            logger.info(f"  - {job.name}: {job.trigger}")


async def stop_scheduler():
    """Stop the scheduler gracefully"""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Scheduler stopped")
    scheduler = None
