"""
APScheduler Configuration
==========================

Registers the price ingestion jobs.
"""

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from luzzia.core.config import settings, Settings
from luzzia.core.exceptions import SchedulerError
from luzzia.services.cache_manager import CacheManager
from .price_jobs import PriceIngestionJobs

logger = logging.getLogger(__name__)

MAIN_UPDATE_JOB_ID = "price_main_update"
RETRY_UPDATE_JOB_ID = "price_retry_update"
DAILY_RESET_JOB_ID = "price_daily_reset"
BACKUP_CHECK_JOB_ID = "price_backup_check"
CACHE_CLEANUP_JOB_ID = "cache_cleanup"


def _cron(job_id: str, expression: str, tz: str) -> CronTrigger:
    try:
        return CronTrigger.from_crontab(expression, timezone=tz)
    except ValueError as e:
        raise SchedulerError(job_id, f"invalid cron expression '{expression}': {e}") from e


def _backup_hours(threshold_hour: int, interval_hours: int) -> str:
    """
    Cron hour field for the backup check, one run every ``interval_hours``
    counted from ``threshold_hour`` so the threshold hour itself always fires.
    """
    interval = max(1, min(interval_hours, 24))
    start = threshold_hour % 24
    hours = {(start + k * interval) % 24 for k in range(max(1, 24 // interval))}
    return ",".join(str(h) for h in sorted(hours))


async def register_all_jobs(
    scheduler: AsyncIOScheduler,
    jobs: PriceIngestionJobs,
    cache: Optional[CacheManager] = None,
    config: Optional[Settings] = None
):
    """
    Register all APScheduler jobs.

    Args:
        scheduler: AsyncIOScheduler instance
        jobs: Ingestion handlers bound to the shared state
        cache: Cache whose expired entries are purged hourly
        config: Settings (defaults to global settings)

    Raises:
        SchedulerError: A configured cron expression is invalid
    """
    config = config or settings
    tz = config.SCHEDULER_TIMEZONE

    logger.info("📋 Registering APScheduler jobs...")

    scheduler.add_job(
        func=jobs.main_update,
        trigger=_cron(MAIN_UPDATE_JOB_ID, config.PRICE_MAIN_CRON, tz),
        id=MAIN_UPDATE_JOB_ID,
        name="Daily Price Update",
        replace_existing=True
    )
    logger.info(f"   ✅ Main price update: '{config.PRICE_MAIN_CRON}' ({tz})")

    scheduler.add_job(
        func=jobs.retry_update,
        trigger=_cron(RETRY_UPDATE_JOB_ID, config.PRICE_RETRY_CRON, tz),
        id=RETRY_UPDATE_JOB_ID,
        name="Price Update Retry",
        replace_existing=True
    )
    logger.info(f"   ✅ Retry price update: '{config.PRICE_RETRY_CRON}' ({tz})")

    scheduler.add_job(
        func=jobs.reset_daily_flags,
        trigger=_cron(DAILY_RESET_JOB_ID, config.PRICE_RESET_CRON, tz),
        id=DAILY_RESET_JOB_ID,
        name="Daily Flags Reset",
        replace_existing=True
    )
    logger.info(f"   ✅ Daily reset: '{config.PRICE_RESET_CRON}' ({tz})")

    if config.BACKUP_CHECK_ENABLED:
        backup_hours = _backup_hours(
            config.BACKUP_CHECK_THRESHOLD_HOUR, config.BACKUP_CHECK_INTERVAL_HOURS
        )
        scheduler.add_job(
            func=jobs.backup_check,
            trigger=CronTrigger(hour=backup_hours, minute=0, timezone=tz),
            id=BACKUP_CHECK_JOB_ID,
            name="Price Backup Check",
            replace_existing=True
        )
        logger.info(
            f"   ✅ Backup check: at {backup_hours}h "
            f"(acts after {config.BACKUP_CHECK_THRESHOLD_HOUR}:00)"
        )

    if cache is not None:
        scheduler.add_job(
            func=cache.cleanup_expired,
            trigger=IntervalTrigger(hours=1, timezone=tz),
            id=CACHE_CLEANUP_JOB_ID,
            name="Cache Cleanup",
            replace_existing=True
        )
        logger.info("   ✅ Cache cleanup: every hour")

    logger.info(f"✅ Registered {len(scheduler.get_jobs())} jobs")
