"""
Unit Tests for APScheduler Service
===================================

Coverage:
- ✅ Job registration (cron + interval triggers, optional jobs)
- ✅ Backup check aligned on the threshold hour
- ✅ Status snapshot with ingestion state
- ✅ Manual trigger, pause, resume, unknown jobs
- ✅ Execution listeners update job stats
- ✅ Start / stop lifecycle
"""

from datetime import datetime, timedelta
from types import SimpleNamespace
from zoneinfo import ZoneInfo

import pytest
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from luzzia.core.config import Settings
from luzzia.core.exceptions import SchedulerError
from luzzia.services.cache_manager import CacheManager
from luzzia.services.ingestion_state import IngestionState
from luzzia.services.scheduler import SchedulerConfig, SchedulerService
from luzzia.tasks.scheduler_config import (
    BACKUP_CHECK_JOB_ID,
    CACHE_CLEANUP_JOB_ID,
    DAILY_RESET_JOB_ID,
    MAIN_UPDATE_JOB_ID,
    RETRY_UPDATE_JOB_ID,
    register_all_jobs
)


# =============================================================================
# FIXTURES
# =============================================================================

class StubJobs:
    """Ingestion handlers that only count calls."""

    def __init__(self):
        self.calls = []

    async def main_update(self):
        self.calls.append("main")

    async def retry_update(self):
        self.calls.append("retry")

    async def reset_daily_flags(self):
        self.calls.append("reset")

    async def backup_check(self):
        self.calls.append("backup")


@pytest.fixture
def ingestion_state():
    return IngestionState()


@pytest.fixture
def scheduler_service(ingestion_state):
    return SchedulerService(SchedulerConfig(timezone="Europe/Madrid"), ingestion_state=ingestion_state)


@pytest.fixture
def config():
    return Settings(
        PRICE_MAIN_CRON="15 20 * * *",
        PRICE_RETRY_CRON="15 23 * * *",
        PRICE_RESET_CRON="0 0 * * *",
        BACKUP_CHECK_ENABLED=True,
        BACKUP_CHECK_INTERVAL_HOURS=6
    )


# =============================================================================
# REGISTRATION
# =============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
class TestJobRegistration:

    async def test_registers_all_jobs(self, scheduler_service, config):
        aps = scheduler_service.scheduler

        await register_all_jobs(aps, StubJobs(), cache=CacheManager(), config=config)

        ids = {job.id for job in aps.get_jobs()}
        assert ids == {
            MAIN_UPDATE_JOB_ID,
            RETRY_UPDATE_JOB_ID,
            DAILY_RESET_JOB_ID,
            BACKUP_CHECK_JOB_ID,
            CACHE_CLEANUP_JOB_ID,
        }

        main = aps.get_job(MAIN_UPDATE_JOB_ID)
        assert isinstance(main.trigger, CronTrigger)
        assert "hour='20'" in str(main.trigger)
        assert "minute='15'" in str(main.trigger)
        assert str(main.trigger.timezone) == "Europe/Madrid"

        backup = aps.get_job(BACKUP_CHECK_JOB_ID)
        assert isinstance(backup.trigger, CronTrigger)
        assert "hour='3,9,15,21'" in str(backup.trigger)
        assert "minute='0'" in str(backup.trigger)

        cleanup = aps.get_job(CACHE_CLEANUP_JOB_ID)
        assert isinstance(cleanup.trigger, IntervalTrigger)

    @pytest.mark.parametrize("start_hour", [0, 5, 14, 20, 22])
    async def test_backup_check_fires_after_threshold(self, scheduler_service, config, start_hour):
        tz = ZoneInfo("Europe/Madrid")
        aps = scheduler_service.scheduler
        await register_all_jobs(aps, StubJobs(), config=config)
        trigger = aps.get_job(BACKUP_CHECK_JOB_ID).trigger

        now = datetime(2025, 10, 6, start_hour, 7, tzinfo=tz)
        fire_times = []
        previous = None
        while len(fire_times) < 4:
            previous = trigger.get_next_fire_time(previous, previous or now)
            fire_times.append(previous)

        # one full day of runs, including the threshold hour before midnight
        assert fire_times[-1] - fire_times[0] < timedelta(days=1)
        assert any(t.hour >= config.BACKUP_CHECK_THRESHOLD_HOUR for t in fire_times)

    async def test_backup_hours_follow_threshold(self, scheduler_service):
        config = Settings(BACKUP_CHECK_THRESHOLD_HOUR=22, BACKUP_CHECK_INTERVAL_HOURS=8)
        aps = scheduler_service.scheduler

        await register_all_jobs(aps, StubJobs(), config=config)

        assert "hour='6,14,22'" in str(aps.get_job(BACKUP_CHECK_JOB_ID).trigger)

    async def test_optional_jobs_skipped(self, scheduler_service):
        config = Settings(BACKUP_CHECK_ENABLED=False)
        aps = scheduler_service.scheduler

        await register_all_jobs(aps, StubJobs(), config=config)

        ids = {job.id for job in aps.get_jobs()}
        assert ids == {MAIN_UPDATE_JOB_ID, RETRY_UPDATE_JOB_ID, DAILY_RESET_JOB_ID}

    async def test_invalid_cron_expression(self, scheduler_service):
        config = Settings(PRICE_MAIN_CRON="every evening")

        with pytest.raises(SchedulerError) as exc_info:
            await register_all_jobs(scheduler_service.scheduler, StubJobs(), config=config)

        assert exc_info.value.details["job_id"] == MAIN_UPDATE_JOB_ID


# =============================================================================
# SCHEDULER SERVICE
# =============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
class TestSchedulerService:

    async def test_status_snapshot(self, scheduler_service, config):
        await register_all_jobs(scheduler_service.scheduler, StubJobs(), config=config)

        status = scheduler_service.get_job_status()

        assert status["status"] == "stopped"
        assert status["timezone"] == "Europe/Madrid"
        assert status["total_jobs"] == 4
        assert status["ingestion"]["state"] == "IDLE"
        assert {job["id"] for job in status["jobs"]} >= {MAIN_UPDATE_JOB_ID, RETRY_UPDATE_JOB_ID}

    async def test_trigger_pause_resume(self, scheduler_service, config):
        await register_all_jobs(scheduler_service.scheduler, StubJobs(), config=config)

        assert await scheduler_service.trigger_job_now(MAIN_UPDATE_JOB_ID) is True
        assert await scheduler_service.pause_job(RETRY_UPDATE_JOB_ID) is True
        assert await scheduler_service.resume_job(RETRY_UPDATE_JOB_ID) is True

    async def test_unknown_job(self, scheduler_service):
        assert await scheduler_service.trigger_job_now("missing") is False
        assert await scheduler_service.pause_job("missing") is False
        assert await scheduler_service.resume_job("missing") is False

    async def test_listeners_update_stats(self, scheduler_service):
        tz = ZoneInfo("Europe/Madrid")
        run_time = datetime.now(tz)

        scheduler_service._job_executed_listener(
            SimpleNamespace(job_id=MAIN_UPDATE_JOB_ID, scheduled_run_time=run_time)
        )
        scheduler_service._job_error_listener(
            SimpleNamespace(job_id=MAIN_UPDATE_JOB_ID, scheduled_run_time=run_time,
                            exception=RuntimeError("boom"))
        )
        scheduler_service._job_missed_listener(
            SimpleNamespace(job_id=MAIN_UPDATE_JOB_ID, scheduled_run_time=run_time)
        )

        stats = scheduler_service.job_stats[MAIN_UPDATE_JOB_ID]
        assert stats.run_count == 2
        assert stats.success_count == 1
        assert stats.error_count == 1
        assert stats.missed_count == 1
        assert stats.last_error == "boom"

    async def test_start_and_stop(self, scheduler_service, config):
        registered = []

        async def register(aps):
            await register_all_jobs(aps, StubJobs(), config=config)
            registered.append(True)

        await scheduler_service.start(register)
        try:
            assert scheduler_service.is_running
            assert registered == [True]
            status = scheduler_service.get_job_status()
            assert status["status"] == "running"
            assert all(job["next_run"] for job in status["jobs"])
        finally:
            await scheduler_service.stop()

        assert not scheduler_service.is_running
