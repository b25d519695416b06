"""
InfluxDB Infrastructure Module
===============================

Provides InfluxDB client and query utilities.
"""

from .client import (
    InfluxDBClientWrapper,
    get_influxdb_client
)

from .queries import (
    QueryBuilder,
    PRICE_FIELD,
    FALLBACK_FIELD,
    WRITTEN_AT_FIELD,
    to_flux_time,
    get_prices_in_range_query,
    get_hour_count_query,
    get_latest_point_query,
    get_daily_stats_query
)

__all__ = [
    "InfluxDBClientWrapper",
    "get_influxdb_client",
    "QueryBuilder",
    "PRICE_FIELD",
    "FALLBACK_FIELD",
    "WRITTEN_AT_FIELD",
    "to_flux_time",
    "get_prices_in_range_query",
    "get_hour_count_query",
    "get_latest_point_query",
    "get_daily_stats_query",
]
