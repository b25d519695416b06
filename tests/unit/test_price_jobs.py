"""
Unit Tests for Price Ingestion Jobs
====================================

Coverage:
- ✅ Main update saves prices and marks success
- ✅ Retry is a no-op when today's data is complete
- ✅ Main + retry failure falls back to the previous day's series
- ✅ Fallback without history does not crash
- ✅ Single retry per day, daily reset
- ✅ Backup check threshold and in-flight guard
- ✅ Manual update propagates errors
- ✅ Interleaved retry and backup triggers keep the retry flag and fresh data
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest

from luzzia.core.exceptions import ExhaustedRetries, PriceAPIError, ProviderUnavailable
from luzzia.domain.pricing import RawPriceEntry
from luzzia.services.cache_manager import CacheManager
from luzzia.services.ingestion_state import IngestionPhase, IngestionState
from luzzia.services.price_service import PriceService
from luzzia.services.resilience import ResilienceService
from luzzia.tasks.price_jobs import PriceIngestionJobs

from tests.conftest import MADRID, make_day

TODAY = datetime(2025, 10, 6, tzinfo=timezone.utc)
YESTERDAY = TODAY - timedelta(days=1)


# =============================================================================
# FIXTURES
# =============================================================================

def unavailable():
    return ProviderUnavailable({"REE": PriceAPIError("REE", 503, "Service Unavailable")})


class ScriptedClient:
    """Client stand-in returning one scripted outcome per fetch."""

    def __init__(self, script):
        self.script = script

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False

    async def fetch_price_data(self):
        self.script["calls"] += 1
        outcome = self.script["outcome"]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def script():
    return {"calls": 0, "outcome": [RawPriceEntry(date=TODAY, hour=h, price=0.1) for h in range(24)]}


@pytest.fixture
def clock(madrid_now):
    return Clock(madrid_now)


@pytest.fixture
def state():
    return IngestionState()


@pytest.fixture
def price_service(fake_repository, script, clock):
    async def no_sleep(seconds):
        return None

    resilience = ResilienceService(sleep=no_sleep, rand=lambda: 0.0)
    return PriceService(
        repository=fake_repository,
        cache=CacheManager(),
        resilience=resilience,
        client_factory=lambda: ScriptedClient(script),
        now=clock
    )


@pytest.fixture
def jobs(price_service, state):
    return PriceIngestionJobs(price_service, state)


# =============================================================================
# TEST CLASS
# =============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
class TestPriceIngestionJobs:

    async def test_main_update_success(self, jobs, fake_repository, state):
        await jobs.main_update()

        assert await fake_repository.count_hours_for_date(TODAY) == 24
        assert state.phase == IngestionPhase.SUCCEEDED
        assert jobs.status()["last_trigger"] == "main_update"

    async def test_main_update_failure_is_contained(self, jobs, script, state):
        script["outcome"] = unavailable()

        await jobs.main_update()

        assert state.phase == IngestionPhase.RETRY_PENDING
        assert "REE" in state.last_error
        # max_retries=2 -> three attempts
        assert script["calls"] == 3

    async def test_retry_noop_when_today_complete(self, jobs, fake_repository, script, state):
        for record in make_day(TODAY):
            await fake_repository.upsert(record)

        await jobs.retry_update()

        assert script["calls"] == 0
        assert state.has_retried is False

    async def test_main_and_retry_failure_falls_back(self, jobs, fake_repository, script, state):
        for record in make_day(YESTERDAY, prices=[0.18] * 24):
            await fake_repository.upsert(record)
        script["outcome"] = unavailable()

        await jobs.main_update()
        await jobs.retry_update()

        today_rows = await fake_repository.find_for_date(TODAY)
        assert len(today_rows) == 24
        assert all(r.is_fallback for r in today_rows)
        assert all(r.price == 0.18 for r in today_rows)
        assert state.phase == IngestionPhase.FAILED
        assert state.fallback_used is True

    async def test_fallback_without_history(self, jobs, fake_repository, script, state):
        script["outcome"] = unavailable()

        await jobs.retry_update()

        assert fake_repository.rows == {}
        assert state.fallback_used is False

    async def test_retry_used_once_per_day(self, jobs, script, state):
        script["outcome"] = unavailable()

        await jobs.retry_update()
        calls_after_first = script["calls"]
        await jobs.retry_update()

        assert script["calls"] == calls_after_first

        await jobs.reset_daily_flags()
        await jobs.retry_update()

        assert script["calls"] > calls_after_first

    async def test_backup_check_before_threshold(self, jobs, script, clock):
        clock.now = datetime(2025, 10, 6, 15, 0, tzinfo=MADRID)

        await jobs.backup_check()

        assert script["calls"] == 0

    async def test_backup_check_fetches_when_missing(self, jobs, script, fake_repository):
        await jobs.backup_check()

        assert script["calls"] == 1
        assert await fake_repository.count_hours_for_date(TODAY) == 24

    async def test_backup_check_skips_during_fetch(self, jobs, script, state):
        state.try_begin_fetch("main_update")

        await jobs.backup_check()

        assert script["calls"] == 0

    async def test_concurrent_trigger_is_skipped(self, jobs, script, state):
        state.try_begin_fetch("backup_check")

        await jobs.main_update()

        assert script["calls"] == 0

    async def test_manual_update(self, jobs):
        result = await jobs.run_manual_update()

        assert result == {"message": "Prices updated successfully", "saved": 24, "failed": 0}

    async def test_manual_update_propagates_errors(self, jobs, script):
        script["outcome"] = unavailable()

        with pytest.raises(ExhaustedRetries):
            await jobs.run_manual_update()

    async def test_zero_saved_is_failure(self, jobs, script, fake_repository, state):
        fake_repository.fail_hours = set(range(24))

        await jobs.main_update()

        assert state.phase == IngestionPhase.RETRY_PENDING
        assert state.last_error == "no records saved"


# =============================================================================
# INTERLEAVED TRIGGERS
# =============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
class TestInterleavedTriggers:

    async def test_retry_waits_while_backup_fetches(self, jobs, fake_repository, script, state):
        for record in make_day(YESTERDAY, prices=[0.5] * 24):
            await fake_repository.upsert(record)
        state.try_begin_fetch("backup_check")

        await jobs.retry_update()

        assert await fake_repository.find_for_date(TODAY) == []
        assert script["calls"] == 0
        assert state.has_retried is False
        assert state.fallback_used is False

    async def test_retry_runs_after_backup_finishes(self, jobs, fake_repository, script, state):
        for record in make_day(YESTERDAY, prices=[0.5] * 24):
            await fake_repository.upsert(record)
        state.try_begin_fetch("backup_check")
        await jobs.retry_update()

        state.mark_failed("backup timed out")
        await jobs.retry_update()

        today_rows = await fake_repository.find_for_date(TODAY)
        assert script["calls"] == 1
        assert state.has_retried is True
        assert state.phase == IngestionPhase.SUCCEEDED
        assert len(today_rows) == 24
        assert not any(r.is_fallback for r in today_rows)

    async def test_retry_losing_the_race_keeps_its_attempt(self, jobs, fake_repository, script, state):
        for record in make_day(YESTERDAY, prices=[0.5] * 24):
            await fake_repository.upsert(record)

        with patch.object(state, "try_begin_fetch", return_value=False):
            await jobs.retry_update()

        assert script["calls"] == 0
        assert state.has_retried is False
        assert await fake_repository.find_for_date(TODAY) == []

    async def test_fresh_data_from_other_trigger_is_not_overwritten(
            self, jobs, price_service, fake_repository, state):
        for record in make_day(YESTERDAY, prices=[0.5] * 24):
            await fake_repository.upsert(record)

        async def backup_lands_then_retry_fails():
            for record in make_day(TODAY, prices=[0.2] * 24):
                await fake_repository.upsert(record)
            raise unavailable()

        with patch.object(price_service, "fetch_and_save", AsyncMock(side_effect=backup_lands_then_retry_fails)):
            await jobs.retry_update()

        today_rows = await fake_repository.find_for_date(TODAY)
        assert len(today_rows) == 24
        assert all(r.price == 0.2 and not r.is_fallback for r in today_rows)
        assert state.fallback_used is False
