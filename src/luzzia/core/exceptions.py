"""
Custom Exceptions Module
=========================

Domain-specific exceptions for the Luzzia price ingestion service.

Exception Hierarchy:
    LuzziaException (base)
    ├── DataIngestionError
    │   ├── ProviderUnavailable
    │   └── InvalidProviderFormat
    ├── ExternalAPIError
    │   └── PriceAPIError
    ├── ResilienceError
    │   ├── NonRetryable
    │   ├── ExhaustedRetries
    │   └── CircuitOpen
    ├── NoDataAvailable
    ├── InfluxDBError
    │   ├── InfluxDBConnectionError
    │   ├── InfluxDBQueryError
    │   └── InfluxDBWriteError
    └── SchedulerError

Usage:
    from luzzia.core.exceptions import PriceAPIError, ProviderUnavailable

    try:
        entries = await client.fetch_price_data()
    except ProviderUnavailable as e:
        logger.error(f"All providers failed: {e.details}")
"""

from typing import Optional, Dict, Any


# =================================================================
# BASE EXCEPTION
# =================================================================

class LuzziaException(Exception):
    """
    Base exception for all Luzzia errors.

    All custom exceptions should inherit from this class.
    """

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None
    ):
        self.message = message
        self.details = details or {}
        self.error_code = error_code or self.__class__.__name__
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logs and status payloads."""
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details
        }


# =================================================================
# DATA INGESTION EXCEPTIONS
# =================================================================

class DataIngestionError(LuzziaException):
    """Base exception for data ingestion errors."""
    pass


class ProviderUnavailable(DataIngestionError):
    """Every configured upstream price provider failed."""

    def __init__(self, errors: Dict[str, Exception]):
        self.errors = errors
        summary = "; ".join(f"{name}: {err}" for name, err in errors.items())
        super().__init__(
            message=f"All price providers failed ({summary or 'no providers configured'})",
            details={"providers": {name: str(err) for name, err in errors.items()}}
        )


class InvalidProviderFormat(DataIngestionError):
    """Provider payload is malformed at the top level."""

    def __init__(self, provider: str, reason: str):
        self.provider = provider
        super().__init__(
            message=f"Invalid payload from provider '{provider}': {reason}",
            details={"provider": provider, "reason": reason}
        )


# =================================================================
# EXTERNAL API EXCEPTIONS
# =================================================================

class ExternalAPIError(LuzziaException):
    """Base exception for external API errors."""
    pass


class PriceAPIError(ExternalAPIError):
    """Upstream price API request failed (status_code 0 means transport failure)."""

    def __init__(self, provider: str, status_code: int, reason: str):
        self.provider = provider
        self.status_code = status_code
        super().__init__(
            message=f"Price API '{provider}' error {status_code}: {reason}",
            details={"provider": provider, "status_code": status_code, "reason": reason}
        )


# =================================================================
# RESILIENCE EXCEPTIONS
# =================================================================

class ResilienceError(LuzziaException):
    """Base exception for retry / circuit breaker outcomes."""
    pass


class NonRetryable(ResilienceError):
    """Operation failed with an error the retry predicate does not accept."""

    def __init__(self, cause: BaseException):
        self.cause = cause
        super().__init__(
            message=f"Non-retryable error: {cause}",
            details={"cause": type(cause).__name__}
        )


class ExhaustedRetries(ResilienceError):
    """Retry budget consumed without a successful attempt."""

    def __init__(self, attempts: int, cause: Optional[BaseException] = None):
        self.attempts = attempts
        self.cause = cause
        super().__init__(
            message=f"Operation failed after {attempts} attempts: {cause}",
            details={"attempts": attempts, "cause": type(cause).__name__ if cause else None}
        )


class CircuitOpen(ResilienceError):
    """Circuit breaker is open, call rejected without being attempted."""

    def __init__(self, resource: str, retry_after: float):
        self.resource = resource
        self.retry_after = retry_after
        super().__init__(
            message=f"Circuit breaker for '{resource}' is OPEN (retry in {retry_after:.1f}s)",
            details={"resource": resource, "retry_after_seconds": round(retry_after, 1)}
        )


# =================================================================
# DERIVED VIEW EXCEPTIONS
# =================================================================

class NoDataAvailable(LuzziaException):
    """No price records available for a computation that needs them."""

    def __init__(self, reason: str):
        super().__init__(
            message=f"No price data available: {reason}",
            details={"reason": reason}
        )


# =================================================================
# INFLUXDB EXCEPTIONS
# =================================================================

class InfluxDBError(LuzziaException):
    """Base exception for InfluxDB errors."""
    pass


class InfluxDBConnectionError(InfluxDBError):
    """InfluxDB connection failed."""

    def __init__(self, url: str, reason: str):
        super().__init__(
            message=f"Failed to connect to InfluxDB at {url}: {reason}",
            details={"url": url, "reason": reason}
        )


class InfluxDBQueryError(InfluxDBError):
    """InfluxDB query failed."""

    def __init__(self, query: str, reason: str):
        super().__init__(
            message=f"InfluxDB query failed: {reason}",
            details={"query": query[:200], "reason": reason}
        )


class InfluxDBWriteError(InfluxDBError):
    """InfluxDB write failed."""

    def __init__(self, measurement: str, reason: str):
        super().__init__(
            message=f"Failed to write to InfluxDB measurement '{measurement}': {reason}",
            details={"measurement": measurement, "reason": reason}
        )


# =================================================================
# SCHEDULER EXCEPTIONS
# =================================================================

class SchedulerError(LuzziaException):
    """APScheduler job error."""

    def __init__(self, job_id: str, reason: str):
        super().__init__(
            message=f"Scheduler job '{job_id}' failed: {reason}",
            details={"job_id": job_id, "reason": reason}
        )
