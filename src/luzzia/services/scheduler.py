"""
APScheduler Service for Luzzia
==============================

Owns the AsyncIOScheduler that drives the daily price ingestion cycle.

Key Features:
- Cron and interval triggers in a fixed timezone (default Europe/Madrid)
- Per-job run / success / error statistics from scheduler events
- Manual trigger, pause and resume
- Read-only status snapshot with next fire times and ingestion state
"""

from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional
from zoneinfo import ZoneInfo

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, EVENT_JOB_MISSED
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.base import JobLookupError
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger
from pydantic import BaseModel, Field

from luzzia.core.config import settings
from luzzia.services.ingestion_state import IngestionState


class SchedulerConfig(BaseModel):
    """Configuration for the APScheduler service"""
    timezone: str = Field(default_factory=lambda: settings.SCHEDULER_TIMEZONE)
    coalesce: bool = Field(default=True)  # Combine missed runs
    max_instances: int = Field(default=1)  # Max concurrent instances per job
    misfire_grace_time: int = Field(default=300)  # seconds

    @classmethod
    def from_settings(cls) -> "SchedulerConfig":
        defaults = settings.SCHEDULER_JOB_DEFAULTS
        return cls(
            timezone=settings.SCHEDULER_TIMEZONE,
            coalesce=defaults.get("coalesce", True),
            max_instances=defaults.get("max_instances", 1),
            misfire_grace_time=defaults.get("misfire_grace_time", 300),
        )


class JobStats(BaseModel):
    """Statistics for scheduled jobs"""
    job_id: str
    last_run: Optional[datetime] = None
    run_count: int = 0
    success_count: int = 0
    error_count: int = 0
    missed_count: int = 0
    last_error: Optional[str] = None
    last_duration_seconds: Optional[float] = None


class SchedulerService:
    """
    APScheduler-based service for the price ingestion triggers.

    Jobs are added by a registration callback (see
    ``luzzia.tasks.scheduler_config.register_all_jobs``) so the service
    stays independent of the concrete handlers.
    """

    def __init__(
        self,
        config: Optional[SchedulerConfig] = None,
        ingestion_state: Optional[IngestionState] = None
    ):
        self.config = config or SchedulerConfig.from_settings()
        self.ingestion_state = ingestion_state
        self.job_stats: Dict[str, JobStats] = {}
        self.is_running = False
        self._tz = ZoneInfo(self.config.timezone)

        self.scheduler = AsyncIOScheduler(
            jobstores={'default': MemoryJobStore()},
            executors={'default': AsyncIOExecutor()},
            job_defaults={
                'coalesce': self.config.coalesce,
                'max_instances': self.config.max_instances,
                'misfire_grace_time': self.config.misfire_grace_time
            },
            timezone=self._tz
        )

        self.scheduler.add_listener(self._job_executed_listener, EVENT_JOB_EXECUTED)
        self.scheduler.add_listener(self._job_error_listener, EVENT_JOB_ERROR)
        self.scheduler.add_listener(self._job_missed_listener, EVENT_JOB_MISSED)

    def _stats_for(self, job_id: str) -> JobStats:
        if job_id not in self.job_stats:
            self.job_stats[job_id] = JobStats(job_id=job_id)
        return self.job_stats[job_id]

    def _job_executed_listener(self, event):
        """Handle successful job execution"""
        stats = self._stats_for(event.job_id)
        duration = (datetime.now(self._tz) - event.scheduled_run_time).total_seconds()

        stats.last_run = event.scheduled_run_time
        stats.run_count += 1
        stats.success_count += 1
        stats.last_duration_seconds = round(max(duration, 0.0), 3)

        logger.info(f"Job {event.job_id} completed in {stats.last_duration_seconds:.2f}s")

    def _job_error_listener(self, event):
        """Handle job execution errors"""
        stats = self._stats_for(event.job_id)
        stats.last_run = event.scheduled_run_time
        stats.run_count += 1
        stats.error_count += 1
        stats.last_error = str(event.exception)

        logger.error(f"Job {event.job_id} failed: {event.exception}")

    def _job_missed_listener(self, event):
        """Handle missed job executions"""
        self._stats_for(event.job_id).missed_count += 1
        logger.warning(f"Job {event.job_id} missed scheduled execution at {event.scheduled_run_time}")

    async def start(self, register_jobs: Optional[Callable[[AsyncIOScheduler], Awaitable[None]]] = None):
        """Register jobs and start the scheduler"""
        if self.is_running:
            logger.warning("Scheduler is already running")
            return

        logger.info(f"Starting APScheduler service (timezone={self.config.timezone})")

        if register_jobs is not None:
            await register_jobs(self.scheduler)

        self.scheduler.start()
        self.is_running = True
        logger.info(f"APScheduler service started with {len(self.scheduler.get_jobs())} jobs")

    async def stop(self):
        """Stop the scheduler"""
        if not self.is_running:
            return

        logger.info("Stopping APScheduler service")
        self.scheduler.shutdown(wait=False)
        self.is_running = False
        logger.info("APScheduler service stopped")

    def get_job_status(self) -> Dict[str, Any]:
        """
        Read-only status snapshot.

        Includes every job's next fire time and statistics, plus the
        ingestion state when one was injected.
        """
        jobs_info = []
        for job in self.scheduler.get_jobs():
            job_stats = self.job_stats.get(job.id)
            next_run = getattr(job, "next_run_time", None)

            jobs_info.append({
                "id": job.id,
                "name": job.name,
                "next_run": next_run.isoformat() if next_run else None,
                "trigger": str(job.trigger),
                "stats": job_stats.model_dump(mode="json") if job_stats else None
            })

        return {
            "status": "running" if self.is_running else "stopped",
            "timezone": self.config.timezone,
            "total_jobs": len(jobs_info),
            "jobs": jobs_info,
            "ingestion": self.ingestion_state.snapshot() if self.ingestion_state else None
        }

    async def trigger_job_now(self, job_id: str) -> bool:
        """Manually trigger a job immediately"""
        job = self.scheduler.get_job(job_id)
        if not job:
            logger.error(f"Job {job_id} not found")
            return False

        logger.info(f"Manually triggering job: {job_id}")
        job.modify(next_run_time=datetime.now(self._tz))
        return True

    async def pause_job(self, job_id: str) -> bool:
        """Pause a scheduled job"""
        try:
            self.scheduler.pause_job(job_id)
        except JobLookupError:
            logger.error(f"Job {job_id} not found")
            return False
        logger.info(f"Job {job_id} paused")
        return True

    async def resume_job(self, job_id: str) -> bool:
        """Resume a paused job"""
        try:
            self.scheduler.resume_job(job_id)
        except JobLookupError:
            logger.error(f"Job {job_id} not found")
            return False
        logger.info(f"Job {job_id} resumed")
        return True
