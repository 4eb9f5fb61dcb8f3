"""
In-memory TTL cache shared by the retrieval engines.

Entries are replaced wholesale, never mutated. Expiry is lazy (checked
on read), and when the size cap is reached the oldest insertion is
evicted before a new key is stored. Concurrent writers for the same key
are tolerated: the last writer wins.
"""

import logging
import time
from collections.abc import Callable, Hashable
from dataclasses import dataclass
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    """A cached value and the time it was stored."""

    value: V
    timestamp: float


class TTLCache(Generic[K, V]):
    """
    Size-bounded cache with time-based expiry.

    Args:
        max_size: Maximum number of entries before the oldest is evicted
        ttl_seconds: Entry lifetime; expired entries are dropped on lookup
        name: Label used in log lines
        clock: Time source (seconds), injectable for tests
    """

    def __init__(
        self,
        max_size: int,
        ttl_seconds: float,
        name: str = "cache",
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self.name = name
        self._clock = clock
        self._entries: dict[K, CacheEntry[V]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get(self, key: K) -> V | None:
        """Return the cached value, or None if missing or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None

        if self._clock() - entry.timestamp > self.ttl_seconds:
            # Another request may have already dropped it
            self._entries.pop(key, None)
            return None

        return entry.value

    def set(self, key: K, value: V) -> None:
        """Store a value, evicting the oldest entry if the cache is full."""
        if key not in self._entries:
            self.evict_if_full()
        self._entries[key] = CacheEntry(value=value, timestamp=self._clock())

    def evict_if_full(self) -> None:
        """Drop the oldest inserted entry while the cache is at capacity."""
        while len(self._entries) >= self.max_size:
            try:
                oldest = next(iter(self._entries))
            except StopIteration:
                break
            self._entries.pop(oldest, None)
            logger.debug(f"Evicted oldest entry from {self.name}")

    def clear(self) -> None:
        """Remove every entry."""
        self._entries.clear()
        logger.info(f"Cleared {self.name}")
