"""
Resilience Service
==================

Retry with exponential backoff plus a per-resource circuit breaker for
any fallible async operation.

Retry policy (tenacity ``AsyncRetrying``):
- ``max_retries`` retries after the first attempt
- delay before retry k: ``min(base * multiplier^(k-1) + jitter, max_delay)``
  with ``jitter`` uniform in ``[0, jitter_seconds)``
- errors rejected by the retry predicate surface at once as ``NonRetryable``
- ``CircuitOpen`` is never retried and propagates unchanged
- an exhausted budget raises ``ExhaustedRetries``

Circuit breaker (one state machine per logical resource):
    CLOSED --failures >= threshold--> OPEN
    OPEN --recovery timeout elapsed--> HALF_OPEN
    HALF_OPEN --success_threshold successes--> CLOSED
    HALF_OPEN --any failure--> OPEN

Usage:
    resilience = ResilienceService()
    entries = await resilience.execute_with_retry(
        client.fetch_price_data, resource="price_api"
    )
"""

import asyncio
import logging
import random
import socket
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    stop_after_attempt
)

from luzzia.core.config import settings, Settings
from luzzia.core.exceptions import (
    CircuitOpen,
    ExhaustedRetries,
    NonRetryable,
    PriceAPIError,
    ProviderUnavailable
)
from luzzia.core.logging_config import log_event

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})
RETRYABLE_MESSAGES = ("timeout", "network")

# Transport level failures: connection refused/reset, DNS, timeouts
_TRANSIENT_ERRORS = (
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
    ConnectionError,
    socket.gaierror,
    TimeoutError,
    asyncio.TimeoutError,
)


# =================================================================
# RETRY PREDICATE & BACKOFF
# =================================================================

def is_retryable_error(error: BaseException) -> bool:
    """Default retry predicate."""
    if isinstance(error, CircuitOpen):
        return False

    if isinstance(error, ProviderUnavailable):
        return any(is_retryable_error(e) for e in error.errors.values())

    if isinstance(error, _TRANSIENT_ERRORS):
        return True

    if isinstance(error, PriceAPIError):
        if error.status_code == 0:
            # Transport failure, decided by the underlying httpx error
            return error.__cause__ is None or is_retryable_error(error.__cause__)
        return error.status_code in RETRYABLE_STATUS_CODES

    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code in RETRYABLE_STATUS_CODES

    message = str(error).lower()
    return any(token in message for token in RETRYABLE_MESSAGES)


@dataclass
class RetryOptions:
    """Retry envelope parameters (seconds)."""

    max_retries: int = 2
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0
    jitter: float = 1.0
    retry_condition: Callable[[BaseException], bool] = is_retryable_error

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "RetryOptions":
        config = config or settings
        return cls(
            max_retries=config.MAX_RETRIES,
            base_delay=config.RETRY_BASE_DELAY_SECONDS,
            max_delay=config.RETRY_MAX_DELAY_SECONDS,
            backoff_multiplier=config.RETRY_BACKOFF_MULTIPLIER,
            jitter=config.RETRY_JITTER_SECONDS,
        )


def backoff_delay(
    attempt: int,
    options: RetryOptions,
    rand: Callable[[], float] = random.random
) -> float:
    """Delay in seconds before retry number ``attempt`` (1-based)."""
    exponential = options.base_delay * options.backoff_multiplier ** (attempt - 1)
    return min(exponential + rand() * options.jitter, options.max_delay)


# =================================================================
# CIRCUIT BREAKER
# =================================================================

class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreaker:
    """
    Circuit breaker state machine for one resource.

    All transitions happen under a single lock. While HALF_OPEN only one
    probe call is in flight at a time; concurrent callers are rejected.
    """

    def __init__(
        self,
        resource: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        success_threshold: int = 2,
        clock: Callable[[], float] = time.monotonic
    ):
        self.resource = resource
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.success_threshold = success_threshold
        self._clock = clock
        self._lock = threading.Lock()

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self._last_failure_clock: Optional[float] = None
        self.last_failure_time: Optional[datetime] = None
        self._probe_in_flight = False

    def _transition(self, new_state: CircuitState) -> None:
        old_state = self.state
        self.state = new_state
        level = logging.ERROR if new_state == CircuitState.OPEN else logging.INFO
        log_event(
            logger,
            "circuit_transition",
            level=level,
            resource=self.resource,
            from_state=old_state.value,
            to_state=new_state.value,
            failure_count=self.failure_count
        )

    def before_call(self) -> None:
        """
        Admit or reject a call.

        Raises:
            CircuitOpen: Breaker is open, or a half-open probe is already running
        """
        with self._lock:
            if self.state == CircuitState.OPEN:
                elapsed = self._clock() - (self._last_failure_clock or 0.0)
                if elapsed < self.recovery_timeout:
                    raise CircuitOpen(self.resource, self.recovery_timeout - elapsed)
                self._transition(CircuitState.HALF_OPEN)
                logger.info(f"🔄 Circuit breaker '{self.resource}' moving to HALF_OPEN")

            if self.state == CircuitState.HALF_OPEN:
                if self._probe_in_flight:
                    raise CircuitOpen(self.resource, 0.0)
                self._probe_in_flight = True

    def record_success(self) -> None:
        with self._lock:
            self._probe_in_flight = False
            if self.state == CircuitState.HALF_OPEN:
                self.success_count += 1
                if self.success_count >= self.success_threshold:
                    self.failure_count = 0
                    self.success_count = 0
                    self._transition(CircuitState.CLOSED)
                    logger.info(f"✅ Circuit breaker '{self.resource}' CLOSED, normal operation resumed")
            else:
                self.failure_count = 0

    def record_failure(self) -> None:
        with self._lock:
            self._probe_in_flight = False
            self.failure_count += 1
            self.success_count = 0
            self._last_failure_clock = self._clock()
            self.last_failure_time = datetime.now(timezone.utc)

            if self.state == CircuitState.HALF_OPEN or (
                self.state == CircuitState.CLOSED
                and self.failure_count >= self.failure_threshold
            ):
                self._transition(CircuitState.OPEN)
                logger.error(
                    f"🚨 Circuit breaker '{self.resource}' OPEN, "
                    f"{self.failure_count} failures detected"
                )

    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        self.before_call()
        try:
            result = await operation()
        except Exception:
            self.record_failure()
            raise
        except BaseException:
            # Cancelled: neither a success nor a failure
            with self._lock:
                self._probe_in_flight = False
            raise
        self.record_success()
        return result

    def status(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "resource": self.resource,
                "state": self.state.value,
                "failure_count": self.failure_count,
                "success_count": self.success_count,
                "last_failure_time": (
                    self.last_failure_time.isoformat() if self.last_failure_time else None
                ),
            }


# =================================================================
# RESILIENCE SERVICE
# =================================================================

class ResilienceService:
    """
    Retry + circuit breaker executor.

    Owns one ``CircuitBreaker`` per resource name; the instance is meant
    to be a process-wide singleton (see ``luzzia.dependencies``).
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rand: Callable[[], float] = random.random,
        clock: Callable[[], float] = time.monotonic
    ):
        self.config = config or settings
        self._sleep = sleep
        self._rand = rand
        self._clock = clock
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._breakers_lock = threading.Lock()

    def get_circuit_breaker(self, resource: str) -> CircuitBreaker:
        with self._breakers_lock:
            breaker = self._breakers.get(resource)
            if breaker is None:
                breaker = CircuitBreaker(
                    resource,
                    failure_threshold=self.config.CIRCUIT_FAILURE_THRESHOLD,
                    recovery_timeout=self.config.CIRCUIT_RECOVERY_TIMEOUT_SECONDS,
                    success_threshold=self.config.CIRCUIT_SUCCESS_THRESHOLD,
                    clock=self._clock
                )
                self._breakers[resource] = breaker
            return breaker

    async def execute_with_circuit_breaker(
        self,
        operation: Callable[[], Awaitable[T]],
        resource: str = "default"
    ) -> T:
        """
        Run ``operation`` once through the resource's circuit breaker.

        Raises:
            CircuitOpen: Call rejected without running ``operation``
        """
        return await self.get_circuit_breaker(resource).call(operation)

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        options: Optional[RetryOptions] = None,
        resource: str = "default"
    ) -> T:
        """
        Run ``operation`` with retries, every attempt going through the breaker.

        Raises:
            NonRetryable: First error not accepted by the retry predicate
            CircuitOpen: Breaker rejected an attempt
            ExhaustedRetries: All attempts failed with retryable errors
        """
        options = options or RetryOptions.from_settings(self.config)

        def wait(retry_state: RetryCallState) -> float:
            return backoff_delay(retry_state.attempt_number, options, self._rand)

        def log_retry(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception()
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            logger.warning(
                f"⚠️ Attempt {retry_state.attempt_number} failed: {error}. "
                f"Retry {retry_state.attempt_number}/{options.max_retries} in {delay:.2f}s",
                extra={"extra_data": {
                    "event": "retry_scheduled",
                    "resource": resource,
                    "attempt": retry_state.attempt_number,
                    "delay_seconds": round(delay, 3),
                }}
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(options.max_retries + 1),
            wait=wait,
            retry=retry_if_exception(options.retry_condition),
            before_sleep=log_retry,
            sleep=self._sleep
        )

        try:
            async for attempt in retrying:
                with attempt:
                    result = await self.execute_with_circuit_breaker(operation, resource)
        except RetryError as e:
            cause = e.last_attempt.exception()
            attempts = e.last_attempt.attempt_number
            log_event(
                logger,
                "retries_exhausted",
                level=logging.ERROR,
                resource=resource,
                attempts=attempts,
                error=str(cause)
            )
            raise ExhaustedRetries(attempts, cause) from cause
        except CircuitOpen:
            raise
        except Exception as e:
            logger.error(f"❌ Non-retryable error on '{resource}': {e}")
            raise NonRetryable(e) from e

        if attempt.retry_state.attempt_number > 1:
            logger.info(
                f"✅ Operation on '{resource}' succeeded after "
                f"{attempt.retry_state.attempt_number - 1} retries"
            )
        return result

    def get_circuit_breaker_status(self, resource: str = "default") -> Dict[str, Any]:
        """Read-only breaker snapshot for monitoring."""
        return self.get_circuit_breaker(resource).status()
