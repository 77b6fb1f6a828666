"""
Proof-of-Work Fetch - TTL Caches

In-memory key/value cache with lazy expiry, used twice by the fetcher:
    - response cache:  request URL      -> parsed JSON
    - blocked cache:   caller identity  -> BlockedPayload

Entries are evicted on lookup once now - stored_at >= ttl. The clock is
injectable so tests can move time without sleeping.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from threading import Lock
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TTL_SECONDS = 60.0


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """A cached value and the clock reading when it was stored."""

    key: str
    value: T
    stored_at: float

    def is_fresh(self, now: float, ttl_seconds: float) -> bool:
        return now - self.stored_at < ttl_seconds


class TTLCache(Generic[T]):
    """
    Per-key atomic cache with a single TTL policy.

    Last write wins; a lookup that finds an expired entry removes it
    under the same lock, so a concurrent store is never lost.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        name: str = "cache",
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.name = name
        self._clock = clock
        self._entries: dict[str, CacheEntry[T]] = {}
        self._lock = Lock()

    def lookup(self, key: str) -> CacheEntry[T] | None:
        """Return the fresh entry for key, or None (evicting a stale one)."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_fresh(self._clock(), self.ttl_seconds):
                logger.debug(f"{self.name} HIT for {key}")
                return entry
            del self._entries[key]
            logger.debug(f"{self.name} EXPIRED for {key}")
            return None

    def store(self, key: str, value: T) -> CacheEntry[T]:
        """Insert or replace the entry for key."""
        entry = CacheEntry(key=key, value=value, stored_at=self._clock())
        with self._lock:
            self._entries[key] = entry
        logger.debug(f"{self.name} STORE for {key} (TTL: {self.ttl_seconds}s)")
        return entry

    def invalidate(self, key: str) -> bool:
        """Remove key; True if it was present."""
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> int:
        """Remove everything; returns the number of entries dropped."""
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        logger.info(f"Cleared {count} entries from {self.name}")
        return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.lookup(key) is not None
