"""
Price Repository
================

Durable price store on InfluxDB, keyed by (date, hour).

Each record is one point in ``PRICE_MEASUREMENT`` at the UTC instant
``date + hour`` with fields ``price_eur_kwh``, ``is_fallback`` and
``written_at``. No tag varies between writes, so writing the same
(date, hour) again replaces the fields of the existing point: upsert
without duplicates, last write wins.

Usage:
    from luzzia.services.price_repository import PriceRepository
    from luzzia.dependencies import get_influxdb_client

    repository = PriceRepository(get_influxdb_client())
    result = await repository.save_prices(records)
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Union

from influxdb_client import Point, WritePrecision
from pydantic import ValidationError

from luzzia.core.config import settings
from luzzia.core.exceptions import LuzziaException
from luzzia.core.logging_config import PerformanceLogger, log_event
from luzzia.domain.pricing.models import PriceRecord, RawPriceEntry, utc_midnight
from luzzia.infrastructure.influxdb import (
    InfluxDBClientWrapper,
    PRICE_FIELD,
    FALLBACK_FIELD,
    WRITTEN_AT_FIELD,
    get_prices_in_range_query,
    get_hour_count_query,
    get_latest_point_query,
    get_daily_stats_query
)

logger = logging.getLogger(__name__)

RecordInput = Union[PriceRecord, RawPriceEntry, Dict[str, Any]]


@dataclass(frozen=True)
class SaveResult:
    """Outcome of a batch save. ``saved < requested`` is a partial failure."""

    requested: int
    saved: int
    failed: int

    @property
    def partial(self) -> bool:
        return 0 < self.saved < self.requested


class PriceRepository:
    """InfluxDB-backed store of hourly price records."""

    def __init__(
        self,
        influxdb_client: InfluxDBClientWrapper,
        bucket: Optional[str] = None,
        measurement: Optional[str] = None
    ):
        self.influxdb = influxdb_client
        self.bucket = bucket or settings.INFLUXDB_BUCKET
        self.measurement = measurement or settings.PRICE_MEASUREMENT

    # =================================================================
    # WRITES
    # =================================================================

    def _to_point(self, record: PriceRecord) -> Point:
        return Point(self.measurement) \
            .field(PRICE_FIELD, float(record.price)) \
            .field(FALLBACK_FIELD, bool(record.is_fallback)) \
            .field(WRITTEN_AT_FIELD, record.timestamp.isoformat()) \
            .time(record.starts_at, WritePrecision.S)

    @staticmethod
    def _coerce(item: RecordInput) -> PriceRecord:
        if isinstance(item, PriceRecord):
            return item
        if isinstance(item, RawPriceEntry):
            return PriceRecord.from_entry(item)
        return PriceRecord.model_validate(item)

    async def upsert(self, record: PriceRecord) -> PriceRecord:
        """
        Insert or replace the price for ``(record.date, record.hour)``.

        The stored copy gets ``timestamp`` set to the write instant.

        Raises:
            InfluxDBWriteError: Point could not be written
        """
        stored = record.model_copy(update={"timestamp": datetime.now(timezone.utc)})
        self.influxdb.write_points([self._to_point(stored)], bucket=self.bucket)
        return stored

    async def save_prices(self, records: Iterable[RecordInput]) -> SaveResult:
        """
        Upsert every record independently.

        A record that fails validation or writing is logged and skipped;
        the rest of the batch is still written.
        """
        items = list(records)
        saved = 0

        dates = sorted({
            r.date.date().isoformat() for r in items if isinstance(r, (PriceRecord, RawPriceEntry))
        })
        log_event(logger, "save_started", count=len(items), dates=dates)

        with PerformanceLogger("save_prices", __name__):
            for item in items:
                try:
                    await self.upsert(self._coerce(item))
                    saved += 1
                except ValidationError as e:
                    logger.error(f"❌ Invalid price record skipped: {item!r} ({e.error_count()} errors)")
                except LuzziaException as e:
                    key = getattr(item, "key", None)
                    logger.error(f"❌ Error saving price {key}: {e}")

        result = SaveResult(requested=len(items), saved=saved, failed=len(items) - saved)
        level = logging.WARNING if result.failed else logging.INFO
        log_event(logger, "save_completed", level=level, requested=result.requested,
                  saved=result.saved, failed=result.failed)
        return result

    # =================================================================
    # READS
    # =================================================================

    def _rows_to_records(self, rows: List[Dict[str, Any]]) -> List[PriceRecord]:
        records = []
        for row in rows:
            point_time: datetime = row["_time"]
            if point_time.tzinfo is None:
                point_time = point_time.replace(tzinfo=timezone.utc)
            point_time = point_time.astimezone(timezone.utc)

            written_at = row.get(WRITTEN_AT_FIELD)
            records.append(PriceRecord(
                date=utc_midnight(point_time),
                hour=point_time.hour,
                price=row[PRICE_FIELD],
                is_fallback=bool(row.get(FALLBACK_FIELD, False)),
                timestamp=datetime.fromisoformat(written_at) if written_at else None
            ))

        records.sort(key=lambda r: (r.date, r.hour))
        return records

    async def find_by_date_range(self, start: datetime, end: datetime) -> List[PriceRecord]:
        """
        Records with ``start_day <= date < end_day``.

        Both bounds are normalized to UTC midnight first. Sorted by date,
        then hour.
        """
        query = get_prices_in_range_query(
            self.bucket, self.measurement, utc_midnight(start), utc_midnight(end)
        )
        return self._rows_to_records(self.influxdb.query(query))

    async def find_for_date(self, day: datetime) -> List[PriceRecord]:
        """One day's records, sorted by hour ascending."""
        start = utc_midnight(day)
        return await self.find_by_date_range(start, start + timedelta(days=1))

    async def count_hours_for_date(self, day: datetime) -> int:
        """Number of distinct hours stored for a day."""
        start = utc_midnight(day)
        query = get_hour_count_query(
            self.bucket, self.measurement, start, start + timedelta(days=1)
        )
        return int(sum(row.get("_value") or 0 for row in self.influxdb.query(query)))

    async def find_latest_day_before(
        self,
        before: datetime,
        lookback_days: int = 7
    ) -> List[PriceRecord]:
        """
        Records of the most recent stored day strictly before ``before``.

        Only the last ``lookback_days`` days are searched. Returns an empty
        list when nothing is found.
        """
        stop = utc_midnight(before)
        query = get_latest_point_query(
            self.bucket, self.measurement, stop - timedelta(days=lookback_days), stop
        )
        rows = self.influxdb.query(query)
        if not rows:
            return []

        return await self.find_for_date(rows[0]["_time"])

    async def aggregate_daily_stats(
        self,
        since: datetime,
        until: Optional[datetime] = None
    ) -> List[Dict[str, Any]]:
        """
        Average / min / max price per calendar day, newest day first.

        Returns:
            ``[{"day": "2025-10-06", "avg": 0.12, "min": 0.08, "max": 0.19}, ...]``
        """
        start = utc_midnight(since)
        stop = utc_midnight(until) if until else utc_midnight(datetime.now(timezone.utc)) + timedelta(days=2)
        rows = self.influxdb.query(get_daily_stats_query(self.bucket, self.measurement, start, stop))

        keys = {"mean": "avg", "min": "min", "max": "max"}
        days: Dict[str, Dict[str, Any]] = {}
        for row in rows:
            stat = keys.get(row.get("result"))
            if stat is None:
                continue
            day = row["_time"].astimezone(timezone.utc).date().isoformat()
            days.setdefault(day, {"day": day})[stat] = row["_value"]

        return sorted(days.values(), key=lambda d: d["day"], reverse=True)
