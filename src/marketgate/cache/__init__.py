"""
Cache module.

Provides the short-TTL response cache used to absorb request bursts in
front of rate-limited upstream providers.
"""

from marketgate.cache.base import CacheBackend, CacheEntry
from marketgate.cache.memory import InMemoryCache

__all__ = [
    "CacheBackend",
    "CacheEntry",
    "InMemoryCache",
]
