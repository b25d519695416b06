"""
Dependency Injection Module
============================

Lazy process-wide singletons. Every collaborator (InfluxDB, cache,
resilience executor, services, scheduler) is created here once and
injected into the components that need it.

Usage:
    from luzzia.dependencies import init_scheduler, get_price_service

    await init_scheduler()
    stats = await get_price_service().get_dashboard_stats()
"""

import logging
from typing import TYPE_CHECKING, Optional

from luzzia.core.config import settings
from luzzia.infrastructure.influxdb import InfluxDBClientWrapper, get_influxdb_client
from luzzia.services.cache_manager import CacheManager
from luzzia.services.ingestion_state import IngestionState
from luzzia.services.price_repository import PriceRepository
from luzzia.services.price_service import PriceService
from luzzia.services.resilience import ResilienceService
from luzzia.services.scheduler import SchedulerService

if TYPE_CHECKING:
    # tasks import the services above, so the runtime import stays lazy
    from luzzia.tasks.price_jobs import PriceIngestionJobs

logger = logging.getLogger(__name__)


# =================================================================
# SHARED STATE (lazy singletons)
# =================================================================

_cache_instance: Optional[CacheManager] = None
_resilience_instance: Optional[ResilienceService] = None
_ingestion_state_instance: Optional[IngestionState] = None


def get_influxdb() -> InfluxDBClientWrapper:
    """InfluxDB client wrapper (singleton from the infrastructure layer)."""
    return get_influxdb_client()


def get_cache_manager() -> CacheManager:
    global _cache_instance

    if _cache_instance is None:
        _cache_instance = CacheManager(
            default_ttl=settings.cache_ttl_dashboard_seconds,
            enabled=settings.CACHE_ENABLED
        )
        logger.info("✅ Cache manager initialized")

    return _cache_instance


def get_resilience_service() -> ResilienceService:
    global _resilience_instance

    if _resilience_instance is None:
        _resilience_instance = ResilienceService()
        logger.info("✅ Resilience service initialized")

    return _resilience_instance


def get_ingestion_state() -> IngestionState:
    global _ingestion_state_instance

    if _ingestion_state_instance is None:
        _ingestion_state_instance = IngestionState()

    return _ingestion_state_instance


# =================================================================
# SERVICES (lazy loading)
# =================================================================

_price_service_instance: Optional[PriceService] = None
_price_jobs_instance: Optional["PriceIngestionJobs"] = None


def get_price_service() -> PriceService:
    global _price_service_instance

    if _price_service_instance is None:
        _price_service_instance = PriceService(
            repository=PriceRepository(get_influxdb()),
            cache=get_cache_manager(),
            resilience=get_resilience_service()
        )
        logger.info("✅ Price service initialized")

    return _price_service_instance


def get_price_jobs() -> "PriceIngestionJobs":
    """Ingestion job handlers bound to the shared state."""
    global _price_jobs_instance

    if _price_jobs_instance is None:
        from luzzia.tasks.price_jobs import PriceIngestionJobs
        _price_jobs_instance = PriceIngestionJobs(get_price_service(), get_ingestion_state())

    return _price_jobs_instance


# =================================================================
# SCHEDULER
# =================================================================

_scheduler_instance: Optional[SchedulerService] = None


def get_scheduler() -> SchedulerService:
    global _scheduler_instance

    if _scheduler_instance is None:
        _scheduler_instance = SchedulerService(ingestion_state=get_ingestion_state())

    return _scheduler_instance


async def init_scheduler() -> SchedulerService:
    """Register every job and start the scheduler."""
    from luzzia.tasks.scheduler_config import register_all_jobs

    scheduler = get_scheduler()

    if not scheduler.is_running:
        async def register(aps):
            await register_all_jobs(aps, get_price_jobs(), cache=get_cache_manager())

        await scheduler.start(register)
        logger.info("✅ APScheduler started")

    return scheduler


async def shutdown_scheduler():
    if _scheduler_instance is not None and _scheduler_instance.is_running:
        await _scheduler_instance.stop()
        logger.info("🛑 APScheduler stopped")


async def cleanup_dependencies():
    """Stop the scheduler and release every singleton."""
    global _cache_instance, _resilience_instance, _ingestion_state_instance
    global _price_service_instance, _price_jobs_instance, _scheduler_instance

    await shutdown_scheduler()

    get_influxdb().close()

    _cache_instance = None
    _resilience_instance = None
    _ingestion_state_instance = None
    _price_service_instance = None
    _price_jobs_instance = None
    _scheduler_instance = None

    logger.info("✅ All dependencies cleaned up")
