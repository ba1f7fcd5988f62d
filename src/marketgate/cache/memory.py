"""In-memory TTL cache backend implementation."""

import asyncio
import fnmatch
import logging
import time
from typing import Any, Awaitable, Callable

from marketgate.cache.base import CacheBackend, CacheEntry

logger = logging.getLogger(__name__)


class InMemoryCache(CacheBackend):
    """
    In-memory cache backend with per-entry expiry.

    Expiry is checked on every read; expired entries read as absent and
    are dropped lazily. Nothing sweeps the store in the background, so an
    unbounded cache (``max_size=None``, the default) grows with the set
    of distinct keys written.

    Limitations:
    - Not shared across instances
    - Lost on restart
    """

    def __init__(
        self,
        default_ttl_seconds: float = 60,
        max_size: int | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize in-memory cache.

        Args:
            default_ttl_seconds: Default TTL for cache entries
            max_size: Maximum number of entries (None = unlimited)
            clock: Callable returning the current time in seconds
        """
        self._store: dict[str, CacheEntry] = {}
        self._pending: dict[str, asyncio.Future] = {}
        self._default_ttl = default_ttl_seconds
        self._max_size = max_size
        self._clock = clock
        self._lock = asyncio.Lock()

    @property
    def name(self) -> str:
        return "memory"

    async def get(self, key: str) -> Any | None:
        """Get a value from the cache."""
        async with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None

            if entry.is_expired(self._clock()):
                del self._store[key]
                return None

            return entry.value

    async def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: float | None = None,
    ) -> bool:
        """Set a value in the cache."""
        ttl = ttl_seconds if ttl_seconds is not None else self._default_ttl

        async with self._lock:
            now = self._clock()
            if self._max_size and key not in self._store and len(self._store) >= self._max_size:
                self._evict_oldest_unlocked()

            self._store[key] = CacheEntry(
                key=key,
                value=value,
                created_at=now,
                expires_at=now + ttl,
            )
            return True

    async def delete(self, key: str) -> bool:
        """Delete a value from the cache."""
        async with self._lock:
            return self._store.pop(key, None) is not None

    async def clear(self, pattern: str | None = None) -> int:
        """Clear cache entries matching pattern."""
        async with self._lock:
            if pattern is None:
                count = len(self._store)
                self._store.clear()
                return count

            keys_to_delete = [k for k in self._store if fnmatch.fnmatch(k, pattern)]
            for key in keys_to_delete:
                del self._store[key]
            return len(keys_to_delete)

    async def get_or_fetch(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[Any]],
        ttl_seconds: float | None = None,
    ) -> Any:
        """
        Get a value, or fetch and cache it if missing.

        Concurrent callers missing on the same key share one in-flight
        fetch. A failed fetch is not cached; its exception reaches every
        waiter.

        Args:
            key: Cache key
            fetcher: Zero-argument coroutine function producing the value
            ttl_seconds: TTL if value needs to be fetched

        Returns:
            Cached or fetched value
        """
        value = await self.get(key)
        if value is not None:
            return value

        pending = self._pending.get(key)
        if pending is not None:
            logger.debug(f"Deduplicating fetch for {key}")
            return await asyncio.shield(pending)

        task = asyncio.ensure_future(fetcher())
        self._pending[key] = task
        try:
            value = await asyncio.shield(task)
        finally:
            self._pending.pop(key, None)

        await self.set(key, value, ttl_seconds)
        return value

    def _evict_oldest_unlocked(self) -> None:
        """Evict oldest entry without acquiring lock (caller must hold lock)."""
        if not self._store:
            return

        oldest_key = min(self._store, key=lambda k: self._store[k].created_at)
        del self._store[oldest_key]

    async def cleanup_expired(self) -> int:
        """Remove all expired entries. Never scheduled automatically."""
        async with self._lock:
            now = self._clock()
            expired_keys = [k for k, v in self._store.items() if v.is_expired(now)]
            for key in expired_keys:
                del self._store[key]

        if expired_keys:
            logger.debug(f"Cleaned up {len(expired_keys)} expired cache entries")

        return len(expired_keys)

    async def close(self) -> None:
        """Drop all entries and cancel in-flight fetches."""
        for future in self._pending.values():
            future.cancel()
        self._pending.clear()
        self._store.clear()

    async def health_check(self) -> dict[str, Any]:
        """Return health status with cache statistics."""
        async with self._lock:
            now = self._clock()
            total_entries = len(self._store)
            expired_entries = sum(1 for v in self._store.values() if v.is_expired(now))

        return {
            "backend": self.name,
            "total_entries": total_entries,
            "expired_entries": expired_entries,
            "pending_fetches": len(self._pending),
            "max_size": self._max_size,
        }

    def size(self) -> int:
        """Get current number of stored entries, including lazily-expired ones."""
        return len(self._store)
