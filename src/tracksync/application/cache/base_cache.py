"""Base cache interface and in-memory implementation."""

import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

K = TypeVar("K")  # Key type
V = TypeVar("V")  # Value type


@dataclass
class CacheEntry(Generic[V]):
    """Cache entry with value and metadata."""

    value: V
    created_at: float
    ttl_seconds: float

    def is_expired(self, now: float) -> bool:
        """Check if cache entry is expired at the given time."""
        return now > (self.created_at + self.ttl_seconds)

    def age(self, now: float) -> float:
        """Seconds since the entry was stored."""
        return max(0.0, now - self.created_at)


class BaseCache(ABC, Generic[K, V]):
    """Base cache interface for all cache implementations."""

    @abstractmethod
    async def get(self, key: K) -> V | None:
        """Get value from cache.

        Args:
            key: Cache key

        Returns:
            Cached value if found and not expired, None otherwise
        """
        pass

    @abstractmethod
    async def get_stale(self, key: K) -> V | None:
        """Get value from cache even if it has expired.

        Args:
            key: Cache key

        Returns:
            Last stored value, or None if the key was never stored or was deleted
        """
        pass

    @abstractmethod
    async def set(self, key: K, value: V, ttl_seconds: float = 3600) -> None:
        """Set value in cache.

        Args:
            key: Cache key
            value: Value to cache
            ttl_seconds: Time to live in seconds
        """
        pass

    @abstractmethod
    async def delete(self, key: K) -> bool:
        """Delete value from cache.

        Args:
            key: Cache key

        Returns:
            True if deleted, False if not found
        """
        pass

    @abstractmethod
    async def clear(self) -> None:
        """Clear all entries from cache."""
        pass


class InMemoryCache(BaseCache[K, V]):
    """In-memory cache implementation using dictionary.

    One per process; nothing is shared across workers or survives a restart.
    """

    # Listen up future me, unlike a plain TTL cache we DON'T evict on read. An expired entry is
    # still the best thing we have when the platform answers 429, so get() hides it and
    # get_stale() hands it out. What keeps a long-running process from growing forever is
    # max_entries: once set() pushes the cache over it, expired entries go first (oldest first),
    # then the least recently written live ones. No lock needed: no method awaits halfway
    # through, so asyncio can't interleave two of them.
    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        max_entries: int | None = None,
    ) -> None:
        """Initialize in-memory cache.

        Args:
            clock: Time source in seconds (monotonic by default, injectable for tests)
            max_entries: Size cap enforced on set(); None means unbounded
        """
        if max_entries is not None and max_entries < 1:
            raise ValueError(f"max_entries must be at least 1, got {max_entries}")
        self._cache: dict[K, CacheEntry[V]] = {}
        self._clock = clock
        self._max_entries = max_entries

    async def get(self, key: K) -> V | None:
        """Get value from cache."""
        entry = self._cache.get(key)
        if entry is None or entry.is_expired(self._clock()):
            return None
        return entry.value

    async def get_stale(self, key: K) -> V | None:
        """Get value from cache, ignoring expiry."""
        entry = self._cache.get(key)
        return entry.value if entry is not None else None

    async def set(self, key: K, value: V, ttl_seconds: float = 3600) -> None:
        """Set value in cache (always overwrites, evicting if over max_entries)."""
        # Re-insert so dict order stays "least recently written first"
        self._cache.pop(key, None)
        self._cache[key] = CacheEntry(
            value=value,
            created_at=self._clock(),
            ttl_seconds=ttl_seconds,
        )
        if self._max_entries is not None and len(self._cache) > self._max_entries:
            self._evict(len(self._cache) - self._max_entries)

    def _evict(self, count: int) -> None:
        now = self._clock()
        expired = [key for key, entry in self._cache.items() if entry.is_expired(now)]
        for key in expired[:count]:
            del self._cache[key]
        count -= min(count, len(expired))
        for key in list(self._cache)[:count]:
            del self._cache[key]

    async def delete(self, key: K) -> bool:
        """Delete value from cache."""
        return self._cache.pop(key, None) is not None

    async def clear(self) -> None:
        """Clear all entries from cache."""
        self._cache.clear()

    async def cleanup_expired(self) -> int:
        """Remove expired entries from cache.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        expired_keys = [key for key, entry in self._cache.items() if entry.is_expired(now)]
        for key in expired_keys:
            del self._cache[key]
        return len(expired_keys)

    def get_stats(self) -> dict[str, Any]:
        """Get cache statistics.

        Returns:
            Dictionary with cache statistics
        """
        now = self._clock()
        total_entries = len(self._cache)
        expired_entries = sum(1 for entry in self._cache.values() if entry.is_expired(now))

        return {
            "total_entries": total_entries,
            "active_entries": total_entries - expired_entries,
            "expired_entries": expired_entries,
        }
