"""
Ingestion state
===============

Per-day state of the scheduled price ingestion, shared by every trigger:

    IDLE -> FETCHING -> SUCCEEDED
                     -> FAILED -> RETRY_PENDING -> FETCHING (once)

Owned by ``PriceIngestionJobs`` and injected at startup. All mutations
take the same lock because different triggers may run close together.
"""

import threading
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional


class IngestionPhase(str, Enum):
    IDLE = "IDLE"
    FETCHING = "FETCHING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    RETRY_PENDING = "RETRY_PENDING"


class IngestionState:
    """Mutable ingestion state for the current day."""

    def __init__(self, clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)):
        self._lock = threading.Lock()
        self._clock = clock

        self.phase = IngestionPhase.IDLE
        self.has_retried = False
        self.fallback_used = False
        self.last_execution: Optional[datetime] = None
        self.last_success: Optional[datetime] = None
        self.last_error: Optional[str] = None
        self.last_trigger: Optional[str] = None

    def try_begin_fetch(self, trigger: str) -> bool:
        """
        Enter FETCHING unless a fetch is already running.

        Returns:
            False when another trigger holds the fetch
        """
        with self._lock:
            if self.phase == IngestionPhase.FETCHING:
                return False
            self.phase = IngestionPhase.FETCHING
            self.last_execution = self._clock()
            self.last_trigger = trigger
            return True

    def claim_retry(self) -> bool:
        """Use today's single retry. False if it was already used."""
        with self._lock:
            if self.has_retried:
                return False
            self.has_retried = True
            return True

    def release_retry(self) -> None:
        """Give back a claimed retry that never got to fetch."""
        with self._lock:
            self.has_retried = False

    def mark_succeeded(self) -> None:
        with self._lock:
            self.phase = IngestionPhase.SUCCEEDED
            self.last_success = self._clock()
            self.last_error = None

    def mark_failed(self, error: str) -> None:
        """FAILED, or RETRY_PENDING while today's retry is still unused."""
        with self._lock:
            self.phase = IngestionPhase.FAILED if self.has_retried else IngestionPhase.RETRY_PENDING
            self.last_error = error

    def mark_fallback_used(self) -> None:
        with self._lock:
            self.fallback_used = True

    def is_fetching(self) -> bool:
        with self._lock:
            return self.phase == IngestionPhase.FETCHING

    def reset_daily(self) -> None:
        """Start a fresh day. An in-flight fetch keeps its FETCHING phase."""
        with self._lock:
            self.has_retried = False
            self.fallback_used = False
            if self.phase != IngestionPhase.FETCHING:
                self.phase = IngestionPhase.IDLE

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "state": self.phase.value,
                "has_retried_today": self.has_retried,
                "fallback_used_today": self.fallback_used,
                "last_execution": self.last_execution.isoformat() if self.last_execution else None,
                "last_success": self.last_success.isoformat() if self.last_success else None,
                "last_error": self.last_error,
                "last_trigger": self.last_trigger,
            }
