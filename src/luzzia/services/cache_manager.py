"""In-memory TTL cache for derived price views."""

import logging
import threading
import time
from typing import Any, Callable, Dict, Iterable, Optional

logger = logging.getLogger(__name__)


class CacheKeys:
    """Fixed set of cache keys used by the price service."""

    TODAY_PRICES = "today_prices"
    TOMORROW_PRICES = "tomorrow_prices"
    DASHBOARD_STATS = "dashboard_stats"

    # Keys busted after every successful price write
    PRICE_DEPENDENT = (TODAY_PRICES, TOMORROW_PRICES, DASHBOARD_STATS)


class CacheManager:
    """In-memory cache manager with TTL support."""

    def __init__(
        self,
        default_ttl: int = 300,
        enabled: bool = True,
        clock: Callable[[], float] = time.time
    ):
        """
        Args:
            default_ttl: Default time-to-live in seconds
            enabled: When False every ``get`` misses and ``set`` is a no-op
            clock: Time source in seconds
        """
        self._cache: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self.default_ttl = default_ttl
        self.enabled = enabled
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def get(self, key: str) -> Optional[Any]:
        """
        Get value from cache.

        Returns:
            Cached value or None if not found/expired
        """
        with self._lock:
            entry = self._cache.get(key)
            if entry is not None:
                if entry['expires_at'] > self._clock():
                    self.hits += 1
                    logger.debug(f"Cache hit for key: {key}")
                    return entry['value']

                del self._cache[key]
                self.evictions += 1
                logger.debug(f"Cache expired for key: {key}")

            self.misses += 1
            logger.debug(f"Cache miss for key: {key}")
            return None

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        """Set value in cache (``ttl`` in seconds, default if None)."""
        if not self.enabled:
            return

        if ttl is None:
            ttl = self.default_ttl

        now = self._clock()
        with self._lock:
            self._cache[key] = {
                'value': value,
                'expires_at': now + ttl,
                'created_at': now
            }
        logger.debug(f"Cached key: {key} with TTL: {ttl}s")

    def delete(self, key: str) -> bool:
        """Delete a key. Returns True if it was present."""
        with self._lock:
            if key in self._cache:
                del self._cache[key]
                logger.debug(f"Deleted cache key: {key}")
                return True
            return False

    def invalidate(self, keys: Iterable[str]) -> int:
        """
        Delete several keys at once.

        Returns:
            Number of keys that were present
        """
        keys = list(keys)
        with self._lock:
            removed = [key for key in keys if self._cache.pop(key, None) is not None]
            self.evictions += len(removed)

        logger.info(f"🧹 Cache invalidated: {keys} ({len(removed)} present)")
        return len(removed)

    def clear(self) -> None:
        with self._lock:
            count = len(self._cache)
            self._cache.clear()
            self.evictions += count
        logger.info(f"Cleared {count} cache entries")

    def cleanup_expired(self) -> int:
        """
        Remove expired entries.

        Returns:
            Number of entries removed
        """
        current_time = self._clock()
        with self._lock:
            expired_keys = [
                key for key, entry in self._cache.items()
                if entry['expires_at'] <= current_time
            ]
            for key in expired_keys:
                del self._cache[key]
            self.evictions += len(expired_keys)

        if expired_keys:
            logger.debug(f"Cleaned up {len(expired_keys)} expired cache entries")

        return len(expired_keys)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            total_requests = self.hits + self.misses
            hit_rate = (self.hits / total_requests * 100) if total_requests > 0 else 0

            return {
                'enabled': self.enabled,
                'entries': len(self._cache),
                'hits': self.hits,
                'misses': self.misses,
                'evictions': self.evictions,
                'hit_rate': round(hit_rate, 2),
                'total_requests': total_requests
            }
