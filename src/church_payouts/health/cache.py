"""Rate-limit aware cache for third-party health verdicts."""

import threading
import time
from typing import Callable, Dict, Optional, Protocol, Tuple

from pydantic import BaseModel

# Normal lifetime of a health verdict
CACHE_TTL_SECONDS = 4 * 60
# Storage lifetime of a verdict after the upstream rate limited us
RATE_LIMIT_CACHE_TTL_SECONDS = 15 * 60


class HealthCacheEntry(BaseModel):
    """A cached health verdict.

    ``timestamp`` and ``original_ttl`` are fixed when the verdict is fetched;
    validity is always judged against them, never against an extended
    storage lifetime.
    """
    status: str  # healthy|unhealthy
    timestamp: float
    response_time_ms: int
    error: Optional[str] = None
    rate_limited: bool = False
    original_ttl: int = CACHE_TTL_SECONDS

    def age(self, now: float) -> float:
        return now - self.timestamp

    def is_valid(self, now: float) -> bool:
        return self.age(now) < self.original_ttl


class CacheBackend(Protocol):
    """Key/value storage with per-key expiry."""

    def get(self, key: str) -> Optional[HealthCacheEntry]:
        ...

    def set(self, key: str, entry: HealthCacheEntry, ttl_seconds: int) -> None:
        ...


class InMemoryCacheBackend:
    """Process-local backend. Entries vanish after their storage TTL."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._entries: Dict[str, Tuple[HealthCacheEntry, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[HealthCacheEntry]:
        with self._lock:
            item = self._entries.get(key)
            if item is None:
                return None
            entry, expires_at = item
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return entry

    def set(self, key: str, entry: HealthCacheEntry, ttl_seconds: int) -> None:
        with self._lock:
            self._entries[key] = (entry, self._clock() + ttl_seconds)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class HealthCheckCache:
    """Health verdict cache for one service."""

    def __init__(
        self,
        backend: CacheBackend,
        service: str,
        clock: Callable[[], float] = time.time,
    ):
        self.backend = backend
        self.key = f"health:{service}"
        self._clock = clock

    def now(self) -> float:
        return self._clock()

    def get_fresh(self) -> Optional[HealthCacheEntry]:
        """Return the cached verdict if it is still within its original TTL."""
        entry = self.backend.get(self.key)
        if entry is not None and entry.is_valid(self.now()):
            return entry
        return None

    def get_last(self) -> Optional[HealthCacheEntry]:
        """Return whatever verdict is stored, valid or not."""
        return self.backend.get(self.key)

    def store(self, status: str, response_time_ms: int, error: Optional[str] = None) -> HealthCacheEntry:
        entry = HealthCacheEntry(
            status=status,
            timestamp=self.now(),
            response_time_ms=response_time_ms,
            error=error,
            original_ttl=CACHE_TTL_SECONDS,
        )
        self.backend.set(self.key, entry, CACHE_TTL_SECONDS)
        return entry

    def use_during_rate_limit(self) -> Optional[HealthCacheEntry]:
        """Fall back to the cached verdict while the upstream is rate limiting.

        A verdict younger than its original TTL is marked rate limited and kept
        in storage for the longer rate-limit window. Its timestamp and original
        TTL are left untouched, so repeated rate limits cannot stretch its
        validity.

        Returns:
            The rate-limited entry, or None if no valid verdict is cached.
        """
        entry = self.backend.get(self.key)
        if entry is None or not entry.is_valid(self.now()):
            return None
        limited = entry.model_copy(update={"rate_limited": True})
        self.backend.set(self.key, limited, RATE_LIMIT_CACHE_TTL_SECONDS)
        return limited
