"""
Price Ingestion Jobs
====================

APScheduler job handlers for the daily price ingestion cycle:

- main update (default 20:15): always fetches
- retry update (default 23:15): one extra attempt if today is still missing,
  falls back to the previous day's series when it fails
- daily reset (midnight): clears the per-day retry flag
- backup check (every few hours, aligned on the threshold hour): extra fetch
  when today is still missing past the threshold hour

Every handler catches and logs its own errors so a failing day never
stops the scheduler.
"""

import logging
from enum import Enum
from typing import Any, Dict, Optional

from luzzia.core.config import settings, Settings
from luzzia.core.logging_config import log_event
from luzzia.services.ingestion_state import IngestionState
from luzzia.services.price_repository import SaveResult
from luzzia.services.price_service import PriceService

logger = logging.getLogger(__name__)


class FetchOutcome(str, Enum):
    """Result of one guarded fetch cycle."""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    # another trigger held the fetch, nothing was attempted
    SKIPPED = "skipped"


class PriceIngestionJobs:
    """Scheduled ingestion handlers sharing one ``IngestionState``."""

    def __init__(
        self,
        price_service: PriceService,
        state: IngestionState,
        config: Optional[Settings] = None
    ):
        self.price_service = price_service
        self.state = state
        self.config = config or settings

    async def _fetch_cycle(self, trigger: str) -> FetchOutcome:
        """
        One guarded fetch + save.

        Returns:
            SUCCEEDED when at least one record was saved, FAILED when the
            attempt ran and saved nothing, SKIPPED when another trigger
            was already fetching
        """
        if not self.state.try_begin_fetch(trigger):
            logger.info(f"⏭️ {trigger}: another fetch is in progress, skipped")
            return FetchOutcome.SKIPPED

        try:
            result = await self.price_service.fetch_and_save()
        except Exception as e:
            self.state.mark_failed(str(e))
            log_event(logger, "price_update_failed", level=logging.ERROR, trigger=trigger, error=str(e))
            logger.error(f"❌ {trigger}: price update failed: {e}", exc_info=True)
            return FetchOutcome.FAILED

        if result.saved == 0:
            self.state.mark_failed("no records saved")
            logger.error(f"❌ {trigger}: fetched prices but none could be saved")
            return FetchOutcome.FAILED

        self.state.mark_succeeded()
        log_event(logger, "price_update_succeeded", trigger=trigger,
                  saved=result.saved, failed=result.failed)
        logger.info(f"✅ {trigger}: saved {result.saved}/{result.requested} prices")
        return FetchOutcome.SUCCEEDED

    async def main_update(self) -> None:
        """Scheduled job: daily main price update."""
        logger.info("🔄 Running scheduled main price update")
        try:
            await self._fetch_cycle("main_update")
        except Exception as e:
            logger.error(f"❌ Main price update crashed: {e}", exc_info=True)

    async def retry_update(self) -> None:
        """Scheduled job: single retry, then fallback to the previous day."""
        logger.info("🔄 Running scheduled retry price update")
        try:
            today = self.price_service.today()

            if await self.price_service.has_data_for_date(today):
                logger.info(f"✅ Retry skipped: data for {today.date()} already present")
                return

            if self.state.is_fetching():
                logger.info("⏭️ Retry skipped: another fetch is in progress, retry kept for later")
                return

            if not self.state.claim_retry():
                logger.info("⏭️ Retry skipped: today's retry was already used")
                return

            outcome = await self._fetch_cycle("retry_update")
            if outcome == FetchOutcome.SKIPPED:
                # lost the race to another trigger after claiming
                self.state.release_retry()
                return
            if outcome == FetchOutcome.SUCCEEDED:
                return

            if await self.price_service.has_data_for_date(today):
                logger.info(f"✅ Fallback skipped: fresh data for {today.date()} arrived meanwhile")
                return

            await self.fallback_to_previous_day()

        except Exception as e:
            logger.error(f"❌ Retry price update crashed: {e}", exc_info=True)

    async def reset_daily_flags(self) -> None:
        """Scheduled job: midnight reset of per-day flags."""
        self.state.reset_daily()
        log_event(logger, "daily_flags_reset")
        logger.info("🔄 Daily ingestion flags reset")

    async def backup_check(self) -> None:
        """Scheduled job: extra fetch when today's data is late."""
        try:
            now = self.price_service.now()
            if now.hour < self.config.BACKUP_CHECK_THRESHOLD_HOUR:
                logger.debug(f"Backup check: before {self.config.BACKUP_CHECK_THRESHOLD_HOUR}:00, nothing to do")
                return

            today = self.price_service.today()
            if await self.price_service.has_data_for_date(today):
                logger.debug("Backup check: today's data present")
                return

            if self.state.is_fetching():
                logger.info("⏭️ Backup check: fetch already in progress")
                return

            logger.warning(f"⚠️ Backup check: no data for {today.date()} past threshold hour, fetching")
            await self._fetch_cycle("backup_check")

        except Exception as e:
            logger.error(f"❌ Backup check crashed: {e}", exc_info=True)

    async def fallback_to_previous_day(self) -> Optional[SaveResult]:
        """
        Copy the latest stored day onto today as fallback records.

        Returns:
            SaveResult, or None when there is no history to copy
        """
        today = self.price_service.today()
        logger.warning(f"⚠️ Falling back to previous day's prices for {today.date()}")

        try:
            series = await self.price_service.build_fallback_series(today)
            if not series:
                log_event(logger, "fallback_unavailable", level=logging.CRITICAL,
                          date=today.date().isoformat())
                logger.critical(f"🚨 No historical prices to fall back on for {today.date()}")
                return None

            result = await self.price_service.save_prices(series)
        except Exception as e:
            logger.critical(f"🚨 Fallback for {today.date()} failed: {e}", exc_info=True)
            return None

        if result.saved:
            self.state.mark_fallback_used()
        log_event(logger, "fallback_applied", level=logging.WARNING,
                  date=today.date().isoformat(), saved=result.saved, failed=result.failed)
        return result

    async def run_manual_update(self) -> Dict[str, Any]:
        """
        Forced fetch + save outside the schedule.

        Unlike the scheduled handlers, errors propagate to the caller.
        """
        logger.info("🔄 Manual price update requested")
        result = await self.price_service.fetch_and_save()
        return {
            "message": "Prices updated successfully",
            "saved": result.saved,
            "failed": result.failed,
        }

    def status(self) -> Dict[str, Any]:
        return self.state.snapshot()
