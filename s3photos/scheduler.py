"""Periodic jobs for the long-running helper."""

import logging

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from s3photos.config import SyncConfig

logger = logging.getLogger(__name__)

SYNC_JOB_ID = "photo_sync"
PURGE_JOB_ID = "cache_purge"
NOTIFICATION_JOB_ID = "notification_poll"
INITIAL_SYNC_JOB_ID = "initial_sync"


def build_scheduler(photo_sync, config: SyncConfig) -> BackgroundScheduler:
    """
    Configure (but don't start) the scheduler. A single worker thread runs
    every job, so a purge-triggered resync can never overlap a scheduled one.
    """
    scheduler = BackgroundScheduler(
        executors={"default": ThreadPoolExecutor(max_workers=1)},
        job_defaults={"coalesce": True, "max_instances": 1},
    )

    scheduler.add_job(
        photo_sync.refresh,
        IntervalTrigger(seconds=config.sync_interval_seconds),
        id=SYNC_JOB_ID,
        name="Sync photos from S3",
    )

    if config.cache_max_age_seconds > 0:
        logger.info("Setting up cache cleanup every %s days", config.cache_life_days)
        scheduler.add_job(
            photo_sync.purge,
            IntervalTrigger(seconds=config.cache_max_age_seconds),
            args=[config.cache_max_age_seconds],
            id=PURGE_JOB_ID,
            name="Purge old cache files",
        )

    if config.notification_poll_seconds > 0:
        scheduler.add_job(
            photo_sync.process_notification_files,
            IntervalTrigger(seconds=config.notification_poll_seconds),
            id=NOTIFICATION_JOB_ID,
            name="Check for upload notifications",
        )

    return scheduler


def queue_initial_sync(scheduler: BackgroundScheduler, photo_sync):
    """
    Run one refresh as soon as the scheduler starts, on the same worker.
    """
    scheduler.add_job(photo_sync.refresh, id=INITIAL_SYNC_JOB_ID, name="Initial photo sync")
