"""
Tier-2 durable local cache (Waypoint).

Purpose
-------
Survive process restarts: the last merged progression snapshot and the
schema-drift fallback fields are kept in Redis so a user who comes back
offline still sees their progress.

Responsibilities
----------------
- ``get`` / ``set(ttl)`` / ``delete`` / ``list_keys_with_prefix``
- JSON serialization of an envelope ``{"value", "written_at", "ttl"}``
- Translate ``redis`` failures into ``CacheError`` so the reconciler can
  degrade without knowing about Redis

Non-Responsibilities
--------------------
- Freshness decisions (the reconciler reads ``CacheEntry.is_fresh``)
- Retry logic (a failed tier-2 call is treated as a miss)

Architecture Notes
------------------
- Entries are stored WITHOUT a Redis expiry: a stale snapshot is still the
  best answer when the remote store is unreachable. ``ttl`` inside the
  envelope only governs freshness.
- Wall-clock timestamps (``time.time``) because entries outlive the process
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Callable, List, Optional, Protocol, runtime_checkable

from redis.asyncio import Redis as AsyncRedis
from redis.exceptions import RedisError

from src.core.cache.memory_cache import CacheEntry
from src.core.config import Config
from src.core.exceptions import CacheError
from src.core.logging.logger import get_logger

logger = get_logger(__name__)


@runtime_checkable
class LocalDurableCache(Protocol):
    """Tier-2 storage contract."""

    async def get(self, key: str) -> Optional[CacheEntry[Any]]: ...

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None: ...

    async def delete(self, key: str) -> bool: ...

    async def list_keys_with_prefix(self, prefix: str) -> List[str]: ...


class RedisLocalCache:
    """
    ``LocalDurableCache`` backed by ``redis.asyncio``.

    Example
    -------
    >>> cache = await RedisLocalCache.connect("redis://localhost:6379/0")
    >>> await cache.set("waypoint:v1:progress:u1", {"experience": 40}, ttl=300)
    >>> entry = await cache.get("waypoint:v1:progress:u1")
    """

    def __init__(
        self,
        client: AsyncRedis,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._clock = clock

    # ═══════════════════════════════════════════════════════════════════════
    # LIFECYCLE
    # ═══════════════════════════════════════════════════════════════════════

    @classmethod
    async def connect(cls, url: Optional[str] = None) -> "RedisLocalCache":
        """
        Create a client and verify it with PING.

        Raises
        ------
        CacheError
            If Redis is unreachable
        """
        url = url or Config.REDIS_URL
        start_time = time.monotonic()
        client: AsyncRedis = AsyncRedis.from_url(
            url,
            password=Config.REDIS_PASSWORD,
            socket_timeout=Config.REDIS_SOCKET_TIMEOUT,
            max_connections=Config.REDIS_MAX_CONNECTIONS,
            decode_responses=True,
            retry_on_timeout=False,  # RemoteResilience owns retries
        )
        try:
            await client.ping()  # type: ignore[misc]
        except (RedisError, OSError) as exc:
            await client.aclose()
            logger.error(
                "Failed to connect local durable cache",
                extra={
                    "url_scheme": url.split("://")[0] if "://" in url else "unknown",
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )
            raise CacheError("connect", original_error=exc) from exc

        logger.info(
            "Local durable cache connected",
            extra={"connect_time_ms": round((time.monotonic() - start_time) * 1000, 2)},
        )
        return cls(client)

    async def close(self) -> None:
        await self._client.aclose()

    # ═══════════════════════════════════════════════════════════════════════
    # KEY-VALUE OPERATIONS
    # ═══════════════════════════════════════════════════════════════════════

    async def get(self, key: str) -> Optional[CacheEntry[Any]]:
        try:
            raw = await self._client.get(key)
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            raise CacheError("get", key, exc) from exc

        if raw is None:
            return None
        try:
            return CacheEntry.from_dict(json.loads(raw))
        except (json.JSONDecodeError, TypeError, ValueError, AttributeError) as exc:
            logger.warning(
                "Discarding unreadable local cache entry",
                extra={"key": key, "error": str(exc), "error_type": type(exc).__name__},
            )
            await self.delete(key)
            return None

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        entry = CacheEntry(value=value, written_at=self._clock(), ttl=ttl)
        payload = json.dumps(entry.to_dict(), separators=(",", ":"), ensure_ascii=False)
        try:
            await self._client.set(key, payload)
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            raise CacheError("set", key, exc) from exc

        logger.debug("Local cache SET", extra={"key": key, "ttl_seconds": ttl})

    async def delete(self, key: str) -> bool:
        try:
            return bool(await self._client.delete(key))
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            raise CacheError("delete", key, exc) from exc

    async def list_keys_with_prefix(self, prefix: str) -> List[str]:
        try:
            return [key async for key in self._client.scan_iter(match=f"{prefix}*")]
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            raise CacheError("scan", prefix, exc) from exc
