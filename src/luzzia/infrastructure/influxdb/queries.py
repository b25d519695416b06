"""
InfluxDB Flux Query Templates
==============================

Reusable Flux query builders for the price store.

Storage layout: one point per (date, hour) in ``PRICE_MEASUREMENT`` with
no varying tags. The point time is the UTC instant ``date + hour`` so a
second write for the same (date, hour) overwrites the fields in place.

Usage:
    from luzzia.infrastructure.influxdb.queries import QueryBuilder

    query = QueryBuilder("electricity_prices") \
        .range("2025-10-06T00:00:00Z", "2025-10-07T00:00:00Z") \
        .filter_measurement("electricity_prices") \
        .pivot_fields() \
        .sort_asc() \
        .build()
"""

from typing import Optional
from datetime import datetime, timezone

PRICE_FIELD = "price_eur_kwh"
FALLBACK_FIELD = "is_fallback"
WRITTEN_AT_FIELD = "written_at"


def to_flux_time(value: datetime) -> str:
    """Render a datetime as a Flux RFC3339 UTC literal."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class QueryBuilder:
    """
    Fluent interface for building Flux queries.

    Example:
        >>> query = QueryBuilder("electricity_prices") \
        ...     .range("-1d") \
        ...     .filter_measurement("electricity_prices") \
        ...     .filter_field("price_eur_kwh") \
        ...     .build()
    """

    def __init__(self, bucket: str):
        self.bucket = bucket
        self._range = None
        self._filters = []
        self._transforms = []
        self._limit = None
        self._sort = None

    def range(self, start: str, stop: Optional[str] = None) -> "QueryBuilder":
        """
        Add range filter.

        Args:
            start: Start time (e.g., "-1h", "2025-10-01T00:00:00Z")
            stop: Optional stop time (exclusive)
        """
        if stop:
            self._range = f'range(start: {start}, stop: {stop})'
        else:
            self._range = f'range(start: {start})'
        return self

    def filter_measurement(self, measurement: str) -> "QueryBuilder":
        self._filters.append(f'filter(fn: (r) => r["_measurement"] == "{measurement}")')
        return self

    def filter_field(self, field: str) -> "QueryBuilder":
        self._filters.append(f'filter(fn: (r) => r["_field"] == "{field}")')
        return self

    def pivot_fields(self) -> "QueryBuilder":
        """Turn one row per field into one row per point."""
        self._transforms.append(
            'pivot(rowKey: ["_time"], columnKey: ["_field"], valueColumn: "_value")'
        )
        return self

    def aggregate_window(self, every: str, fn: str) -> "QueryBuilder":
        self._transforms.append(
            f'aggregateWindow(every: {every}, fn: {fn}, createEmpty: false, timeSrc: "_start")'
        )
        return self

    def aggregate_count(self) -> "QueryBuilder":
        self._transforms.append('count()')
        return self

    def limit(self, n: int) -> "QueryBuilder":
        self._limit = f'limit(n: {n})'
        return self

    def sort_desc(self) -> "QueryBuilder":
        self._sort = 'sort(columns: ["_time"], desc: true)'
        return self

    def sort_asc(self) -> "QueryBuilder":
        self._sort = 'sort(columns: ["_time"], desc: false)'
        return self

    def build(self) -> str:
        """Build final Flux query."""
        parts = [f'from(bucket: "{self.bucket}")']

        if self._range:
            parts.append(self._range)

        parts.extend(self._filters)
        parts.extend(self._transforms)

        if self._sort:
            parts.append(self._sort)

        if self._limit:
            parts.append(self._limit)

        return '\n  |> '.join(parts)


# =================================================================
# PRE-BUILT PRICE QUERIES
# =================================================================

def get_prices_in_range_query(
    bucket: str,
    measurement: str,
    start: datetime,
    stop: datetime
) -> str:
    """All price points in [start, stop), one row per (date, hour)."""
    return QueryBuilder(bucket) \
        .range(to_flux_time(start), to_flux_time(stop)) \
        .filter_measurement(measurement) \
        .pivot_fields() \
        .sort_asc() \
        .build()


def get_hour_count_query(
    bucket: str,
    measurement: str,
    start: datetime,
    stop: datetime
) -> str:
    """Number of stored hours in [start, stop)."""
    return QueryBuilder(bucket) \
        .range(to_flux_time(start), to_flux_time(stop)) \
        .filter_measurement(measurement) \
        .filter_field(PRICE_FIELD) \
        .aggregate_count() \
        .build()


def get_latest_point_query(
    bucket: str,
    measurement: str,
    start: datetime,
    stop: datetime
) -> str:
    """Most recent price point in [start, stop)."""
    return QueryBuilder(bucket) \
        .range(to_flux_time(start), to_flux_time(stop)) \
        .filter_measurement(measurement) \
        .filter_field(PRICE_FIELD) \
        .sort_desc() \
        .limit(1) \
        .build()


def get_daily_stats_query(
    bucket: str,
    measurement: str,
    start: datetime,
    stop: datetime
) -> str:
    """
    Daily mean / min / max of the price field.

    Each yielded table is named after its aggregate so the caller can
    regroup rows by ``result`` and window start.
    """
    blocks = []
    for fn in ("mean", "min", "max"):
        query = QueryBuilder(bucket) \
            .range(to_flux_time(start), to_flux_time(stop)) \
            .filter_measurement(measurement) \
            .filter_field(PRICE_FIELD) \
            .aggregate_window("1d", fn) \
            .build()
        blocks.append(query + f'\n  |> yield(name: "{fn}")')

    return "\n\n".join(blocks)
