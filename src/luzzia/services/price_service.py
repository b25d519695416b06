"""
Price Service (Application Layer)
=================================

Orchestrates the upstream client, the resilience executor, the price
repository and the cache.

Responsibilities:
- Fetch prices through retry + circuit breaker
- Persist them with upsert and bust dependent cache keys
- Serve cached reads (today / tomorrow) and derived views
- Fallback series when today has no data

Usage:
    from luzzia.dependencies import get_price_service

    service = get_price_service()
    result = await service.fetch_and_save()
    stats = await service.get_dashboard_stats()
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional
from zoneinfo import ZoneInfo

from luzzia.core.config import settings, Settings
from luzzia.core.exceptions import NoDataAvailable
from luzzia.core.logging_config import PerformanceLogger, log_event
from luzzia.domain.pricing import (
    PriceRecord,
    RawPriceEntry,
    utc_midnight,
    calculate_dashboard_stats,
    period_start,
    build_hourly_prices,
    build_recommendations,
    build_price_update
)
from luzzia.infrastructure.external_apis import PriceAPIClient
from luzzia.services.cache_manager import CacheManager, CacheKeys
from luzzia.services.price_repository import PriceRepository, SaveResult
from luzzia.services.resilience import ResilienceService

logger = logging.getLogger(__name__)

PRICE_API_RESOURCE = "price_api"


class PriceService:
    """
    Price data orchestration service.

    ``now`` returns an aware datetime in the scheduler timezone; the local
    calendar day it falls on is "today", stored as that date at UTC midnight.
    """

    def __init__(
        self,
        repository: PriceRepository,
        cache: CacheManager,
        resilience: ResilienceService,
        client_factory: Callable[[], PriceAPIClient] = PriceAPIClient,
        config: Optional[Settings] = None,
        now: Optional[Callable[[], datetime]] = None
    ):
        self.repository = repository
        self.cache = cache
        self.resilience = resilience
        self.client_factory = client_factory
        self.config = config or settings
        self._tz = ZoneInfo(self.config.SCHEDULER_TIMEZONE)
        self._now = now or (lambda: datetime.now(self._tz))

    # =================================================================
    # CLOCK HELPERS
    # =================================================================

    def now(self) -> datetime:
        return self._now()

    def today(self) -> datetime:
        """Local calendar day as UTC midnight."""
        return utc_midnight(self.now().astimezone(self._tz))

    def current_hour(self) -> int:
        return self.now().astimezone(self._tz).hour

    # =================================================================
    # INGESTION
    # =================================================================

    async def fetch_from_external_api(self) -> List[RawPriceEntry]:
        """
        Fetch normalized prices through retry + circuit breaker.

        Raises:
            ExhaustedRetries / NonRetryable / CircuitOpen
        """
        log_event(logger, "price_fetch_started")

        async def operation() -> List[RawPriceEntry]:
            async with self.client_factory() as client:
                return await client.fetch_price_data()

        with PerformanceLogger("external_api_fetch", __name__):
            entries = await self.resilience.execute_with_retry(
                operation, resource=PRICE_API_RESOURCE
            )

        log_event(logger, "price_fetch_completed", count=len(entries))
        return entries

    async def save_prices(self, records: Iterable[Any]) -> SaveResult:
        """
        Upsert a batch and invalidate price-dependent cache keys.

        Invalidation happens whenever at least one record was written.
        """
        result = await self.repository.save_prices(records)

        if result.saved > 0:
            self.cache.invalidate(CacheKeys.PRICE_DEPENDENT)

        return result

    async def fetch_and_save(self) -> SaveResult:
        entries = await self.fetch_from_external_api()
        return await self.save_prices(entries)

    async def has_data_for_date(self, day: datetime) -> bool:
        """True when the day has at least ``COMPLETE_DAY_MIN_HOURS`` stored hours."""
        hours = await self.repository.count_hours_for_date(day)
        return hours >= self.config.COMPLETE_DAY_MIN_HOURS

    async def build_fallback_series(self, day: datetime) -> List[PriceRecord]:
        """
        Most recent stored day before ``day``, re-dated to ``day``.

        Every returned record is marked ``is_fallback``. Empty when no
        history exists within ``FALLBACK_LOOKBACK_DAYS``.
        """
        source = await self.repository.find_latest_day_before(
            day, lookback_days=self.config.FALLBACK_LOOKBACK_DAYS
        )
        if not source:
            return []

        target = utc_midnight(day)
        log_event(
            logger,
            "fallback_series_built",
            source_date=source[0].date.date().isoformat(),
            target_date=target.date().isoformat(),
            records=len(source)
        )
        return [
            PriceRecord(date=target, hour=r.hour, price=r.price, is_fallback=True)
            for r in source
        ]

    # =================================================================
    # READS
    # =================================================================

    async def get_today_prices(self) -> List[PriceRecord]:
        cached = self.cache.get(CacheKeys.TODAY_PRICES)
        if cached is not None:
            return cached

        prices = await self.repository.find_for_date(self.today())
        if not prices:
            log_event(logger, "no_prices_found_for_today", date=self.today().date().isoformat())

        self.cache.set(CacheKeys.TODAY_PRICES, prices, self.config.cache_ttl_today_seconds)
        return prices

    async def get_tomorrow_prices(self) -> List[PriceRecord]:
        cached = self.cache.get(CacheKeys.TOMORROW_PRICES)
        if cached is not None:
            return cached

        prices = await self.repository.find_for_date(self.today() + timedelta(days=1))

        # Tomorrow is published late in the day; don't pin an empty answer
        if prices:
            self.cache.set(CacheKeys.TOMORROW_PRICES, prices, self.config.cache_ttl_tomorrow_seconds)
        return prices

    async def get_price_history(self, days: int = 7) -> List[PriceRecord]:
        """Records since ``today - days``, newest day first, hours ascending."""
        start = self.today() - timedelta(days=days)
        records = await self.repository.find_by_date_range(start, self.today() + timedelta(days=2))
        return sorted(records, key=lambda r: (-r.date.timestamp(), r.hour))

    async def get_price_stats(self, days: int = 30) -> List[Dict[str, Any]]:
        return await self.repository.aggregate_daily_stats(self.today() - timedelta(days=days))

    async def get_dashboard_stats(self) -> Dict[str, Any]:
        """
        Dashboard figures for today, cached ``CACHE_TTL_DASHBOARD_HOURS``.

        Raises:
            NoDataAvailable: Neither today nor any recent day has prices
        """
        cached = self.cache.get(CacheKeys.DASHBOARD_STATS)
        if cached is not None:
            return cached

        log_event(logger, "dashboard_stats_requested")
        records = await self.get_today_prices()

        if not records:
            log_event(logger, "using_fallback_data_for_dashboard", level=logging.WARNING)
            # Surrogate series keeps its original dates, unlike the stored fallback
            latest = await self.repository.find_latest_day_before(
                self.today() + timedelta(days=1),
                lookback_days=self.config.FALLBACK_LOOKBACK_DAYS
            )
            records = [r.model_copy(update={"is_fallback": True}) for r in latest[:24]]

        if not records:
            raise NoDataAvailable("no prices for today and no recent history")

        stats = calculate_dashboard_stats(
            records,
            current_hour=self.current_hour(),
            fixed_tariff=self.config.FIXED_TARIFF_EUR_KWH,
            now=self.now().astimezone(timezone.utc)
        )
        self.cache.set(CacheKeys.DASHBOARD_STATS, stats, self.config.cache_ttl_dashboard_seconds)

        log_event(
            logger,
            "dashboard_stats_completed",
            current_price=stats["current_price"],
            price_change_percentage=stats["price_change_percentage"],
            is_fallback=stats["is_fallback"]
        )
        return stats

    async def get_hourly_prices(self, period: str = "today") -> Dict[str, Any]:
        """
        Leveled hourly series for ``today`` / ``week`` / ``month``.

        Raises:
            ValueError: Unknown period
        """
        start = period_start(period, self.today())
        records = await self.repository.find_by_date_range(start, self.today() + timedelta(days=1))
        return build_hourly_prices(records)

    async def get_recommendations(self) -> Dict[str, Any]:
        records = await self.get_today_prices()
        return build_recommendations(records, current_hour=self.current_hour())

    async def get_latest_price_update(self) -> Dict[str, Any]:
        """
        Current price and absolute level, polled by the push transport.

        Raises:
            NoDataAvailable: No price data at all
        """
        stats = await self.get_dashboard_stats()
        return build_price_update(stats, self.config.PRICE_LEVEL_THRESHOLDS)
