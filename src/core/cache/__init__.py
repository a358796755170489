"""
Cache tiers for Waypoint.

- **memory_cache.py**: tier 1, process-local TTL entries
- **local_store.py**: tier 2, durable Redis-backed snapshots
- **keys.py**: versioned key templates shared by both tiers
"""

from src.core.cache.keys import (
    content_key,
    content_prefix,
    fallback_base_key,
    fallback_key,
    progress_key,
    user_prefix,
)
from src.core.cache.local_store import LocalDurableCache, RedisLocalCache
from src.core.cache.memory_cache import CacheEntry, MemoryCache

__all__ = [
    "CacheEntry",
    "MemoryCache",
    "LocalDurableCache",
    "RedisLocalCache",
    "content_key",
    "content_prefix",
    "fallback_base_key",
    "fallback_key",
    "progress_key",
    "user_prefix",
]
