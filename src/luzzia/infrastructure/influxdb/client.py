"""
InfluxDB Client Module
======================

InfluxDB client wrapper used as the durable price store backend:
- Lazy connection management
- Flux queries returning plain dictionaries
- Synchronous point writes
- Retries on transient InfluxDB errors (tenacity)

Usage:
    from luzzia.infrastructure.influxdb.client import get_influxdb_client

    client = get_influxdb_client()
    rows = client.query('from(bucket:"electricity_prices") |> range(start: -1d)')
"""

from typing import List, Dict, Any, Optional
import logging

from influxdb_client import InfluxDBClient, Point
from influxdb_client.client.write_api import SYNCHRONOUS
from influxdb_client.client.exceptions import InfluxDBError
from influxdb_client.rest import ApiException
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log
)

from luzzia.core.config import settings
from luzzia.core.exceptions import (
    InfluxDBConnectionError,
    InfluxDBQueryError,
    InfluxDBWriteError
)

logger = logging.getLogger(__name__)

# Errors raised by influxdb-client for server side / HTTP failures
_INFLUX_ERRORS = (InfluxDBError, ApiException)

_store_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=5),
    retry=retry_if_exception_type(_INFLUX_ERRORS),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True
)


class InfluxDBClientWrapper:
    """
    Wrapper for InfluxDB client.

    Provides:
    - Connection management
    - Automatic retries
    - Query and write API access
    - Health checks
    """

    def __init__(
        self,
        url: Optional[str] = None,
        token: Optional[str] = None,
        org: Optional[str] = None,
        bucket: Optional[str] = None
    ):
        """
        Args:
            url: InfluxDB URL (defaults to settings.INFLUXDB_URL)
            token: Authentication token (defaults to settings.INFLUXDB_TOKEN)
            org: Organization name (defaults to settings.INFLUXDB_ORG)
            bucket: Default bucket name (defaults to settings.INFLUXDB_BUCKET)
        """
        self.url = url or settings.INFLUXDB_URL
        self.token = token or settings.INFLUXDB_TOKEN
        self.org = org or settings.INFLUXDB_ORG
        self.bucket = bucket or settings.INFLUXDB_BUCKET

        self._client: Optional[InfluxDBClient] = None
        self._write_api = None
        self._query_api = None

    @property
    def client(self) -> InfluxDBClient:
        """Get or create InfluxDB client instance (lazy loading)."""
        if self._client is None:
            try:
                self._client = InfluxDBClient(
                    url=self.url,
                    token=self.token,
                    org=self.org,
                    timeout=settings.INFLUXDB_TIMEOUT,
                    verify_ssl=settings.INFLUXDB_VERIFY_SSL,
                    enable_gzip=settings.INFLUXDB_ENABLE_GZIP
                )
                logger.info(f"✅ InfluxDB client connected: {self.url}")
            except (ValueError, OSError) as e:
                logger.error(f"❌ Failed to create InfluxDB client: {e}")
                raise InfluxDBConnectionError(self.url, str(e)) from e

        return self._client

    def query_api(self):
        if self._query_api is None:
            self._query_api = self.client.query_api()
        return self._query_api

    def write_api(self):
        # SYNCHRONOUS so a failed point surfaces at the call site
        if self._write_api is None:
            self._write_api = self.client.write_api(write_options=SYNCHRONOUS)
        return self._write_api

    def health_check(self) -> Dict[str, Any]:
        """
        Check InfluxDB health status.

        Raises:
            InfluxDBConnectionError: If health check fails
        """
        try:
            health = self.client.health()
            return {
                "status": health.status,
                "message": health.message,
                "version": health.version,
                "url": self.url
            }
        except (*_INFLUX_ERRORS, OSError) as e:
            logger.error(f"❌ InfluxDB health check failed: {e}")
            raise InfluxDBConnectionError(self.url, str(e)) from e

    def query(self, flux_query: str) -> List[Dict[str, Any]]:
        """
        Execute Flux query and return results.

        Every record is flattened into a dictionary holding ``time``,
        ``value``, ``field``, ``measurement`` plus all raw record columns
        (pivoted fields, ``result`` name for multi-yield queries...).

        Raises:
            InfluxDBQueryError: If query fails after retries
        """
        try:
            tables = self._run_query(flux_query)
        except (*_INFLUX_ERRORS, OSError) as e:
            logger.error(f"❌ Query failed: {e}")
            raise InfluxDBQueryError(flux_query, str(e)) from e

        results = []
        for table in tables:
            for record in table.records:
                values = record.values
                results.append({
                    "time": values.get("_time"),
                    "value": values.get("_value"),
                    "field": values.get("_field"),
                    "measurement": values.get("_measurement"),
                    **values
                })

        logger.debug(f"📊 Query returned {len(results)} records")
        return results

    @_store_retry
    def _run_query(self, flux_query: str):
        return self.query_api().query(flux_query, org=self.org)

    def write_points(
        self,
        points: List[Point],
        bucket: Optional[str] = None
    ) -> int:
        """
        Write points to InfluxDB.

        Returns:
            Number of points written

        Raises:
            InfluxDBWriteError: If write fails after retries
        """
        target_bucket = bucket or self.bucket

        try:
            self._run_write(points, target_bucket)
        except (*_INFLUX_ERRORS, OSError) as e:
            logger.error(f"❌ Write failed: {e}")
            raise InfluxDBWriteError(target_bucket, str(e)) from e

        logger.debug(f"✅ Wrote {len(points)} points to {target_bucket}")
        return len(points)

    @_store_retry
    def _run_write(self, points: List[Point], bucket: str) -> None:
        self.write_api().write(bucket=bucket, org=self.org, record=points)

    def close(self):
        """Close InfluxDB client connection."""
        if self._client:
            if self._write_api is not None:
                self._write_api.close()
            self._client.close()
            logger.info("🔒 InfluxDB client closed")
            self._client = None
            self._write_api = None
            self._query_api = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


# Global client instance (singleton)
_influxdb_client_instance: Optional[InfluxDBClientWrapper] = None


def get_influxdb_client() -> InfluxDBClientWrapper:
    """Get global InfluxDB client instance (singleton)."""
    global _influxdb_client_instance

    if _influxdb_client_instance is None:
        _influxdb_client_instance = InfluxDBClientWrapper()
        logger.info("🔧 InfluxDB client wrapper initialized")

    return _influxdb_client_instance
