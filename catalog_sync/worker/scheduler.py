"""APScheduler job definitions."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from catalog_sync.config import settings
from catalog_sync.worker.tasks import SyncRunner, sync_runner

logger = logging.getLogger(__name__)


def setup_scheduler(runner: SyncRunner | None = None) -> AsyncIOScheduler:
    """
    Build the (not yet started) scheduler holding the profile auto-sync job.

    ``max_instances=1`` keeps this process from overlapping itself; the
    Redis run lock covers other processes.
    """
    runner = runner or sync_runner
    scheduler = AsyncIOScheduler()
    interval = max(1, int(settings.sync_interval_minutes))

    scheduler.add_job(
        runner.scheduled_sync,
        IntervalTrigger(minutes=interval),
        id="profile_sync",
        name="Auto-sync profile listings into the catalog",
        max_instances=1,
        coalesce=True,
        misfire_grace_time=600,
        replace_existing=True,
    )

    logger.info(
        "Scheduler configured: profile sync every %d minutes for %s",
        interval,
        settings.sync_profile_url,
    )
    return scheduler
