"""Abstract base class for cache backends."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass
class CacheEntry:
    """
    A cached value with its expiry.

    Attributes:
        key: Cache key
        value: Cached data
        created_at: Clock time when the entry was written
        expires_at: Clock time from which the entry reads as absent (None = no expiry)
    """

    key: str
    value: Any
    created_at: float
    expires_at: float | None = None

    def is_expired(self, now: float) -> bool:
        """Check if the entry is expired at ``now``."""
        if self.expires_at is None:
            return False
        return now >= self.expires_at


class CacheBackend(ABC):
    """
    Abstract base class for cache backends.

    Implementations must never raise from get/set: a broken cache
    degrades to misses.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """
        Unique identifier for this backend.

        Returns:
            Backend name (e.g., 'memory')
        """
        ...

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """
        Get a value from the cache.

        Args:
            key: Cache key

        Returns:
            Cached value, or None if not found/expired
        """
        ...

    @abstractmethod
    async def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: float | None = None,
    ) -> bool:
        """
        Set a value in the cache, replacing value and expiry together.

        Args:
            key: Cache key
            value: Value to cache
            ttl_seconds: Time-to-live in seconds (None = use default)

        Returns:
            True if successful, False otherwise
        """
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """
        Delete a value from the cache.

        Args:
            key: Cache key

        Returns:
            True if deleted, False if not found
        """
        ...

    @abstractmethod
    async def clear(self, pattern: str | None = None) -> int:
        """
        Clear cache entries.

        Args:
            pattern: Optional pattern to match keys (e.g., "quote:*")
                    None = clear all entries

        Returns:
            Number of entries cleared
        """
        ...

    async def close(self) -> None:
        """Release backend resources."""
        return None

    async def health_check(self) -> dict[str, Any]:
        """
        Perform a health check on the cache backend.

        Returns:
            Dict with health status info
        """
        return {"backend": self.name}
