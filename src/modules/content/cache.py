"""
Pre-warmed module content cache.

Content for a slot is normally pushed in ahead of time with ``prewarm``.
The ``ContentProvider`` is consulted only from ``get_for_entry``, when a
user actually enters a slot and the cache misses; routine state
transitions never generate content.

Concurrent entries into the same slot share one provider call.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Protocol, runtime_checkable

from src.core.cache import MemoryCache, content_key, content_prefix
from src.core.cache.local_store import LocalDurableCache
from src.core.concurrency import SingleFlight
from src.core.config import config_int
from src.core.exceptions import CacheError
from src.core.logging.logger import get_logger

logger = get_logger(__name__)


@runtime_checkable
class ContentProvider(Protocol):
    async def get_or_create_content(
        self,
        chapter_id: int,
        slot_index: int,
        content_type: str,
        context: Mapping[str, Any],
    ) -> Optional[Any]: ...


class ContentCache:
    def __init__(
        self,
        provider: ContentProvider,
        local: Optional[LocalDurableCache] = None,
        memory: Optional[MemoryCache] = None,
        ttl: Optional[float] = None,
    ) -> None:
        self.provider = provider
        self.local = local
        self.ttl = ttl if ttl is not None else config_int("content.cache_ttl_seconds", 86400)
        self.memory = memory or MemoryCache(default_ttl=self.ttl)
        self._flights: SingleFlight[Optional[Any]] = SingleFlight("content")
        self.provider_calls = 0

    async def prewarm(self, chapter_id: int, slot_index: int, content_type: str, content: Any) -> None:
        key = content_key(chapter_id, slot_index, content_type)
        self.memory.set(key, content, ttl=self.ttl)
        if self.local is not None:
            try:
                await self.local.set(key, content, ttl=self.ttl)
            except CacheError as exc:
                logger.warning("Content pre-warm not persisted", extra={"key": key, "error": str(exc)})

    async def get_cached(self, chapter_id: int, slot_index: int, content_type: str) -> Optional[Any]:
        key = content_key(chapter_id, slot_index, content_type)
        content = self.memory.get_fresh(key)
        if content is not None or self.local is None:
            return content
        try:
            entry = await self.local.get(key)
        except CacheError as exc:
            logger.warning("Content cache read failed", extra={"key": key, "error": str(exc)})
            return None
        if entry is None or entry.value is None:
            return None
        self.memory.set(key, entry.value, ttl=self.ttl)
        return entry.value

    async def get_for_entry(
        self,
        chapter_id: int,
        slot_index: int,
        content_type: str,
        context: Optional[Mapping[str, Any]] = None,
    ) -> Optional[Any]:
        """Cached content for the slot, generating it once on a miss; ``None`` if unavailable."""
        cached = await self.get_cached(chapter_id, slot_index, content_type)
        if cached is not None:
            return cached
        key = content_key(chapter_id, slot_index, content_type)
        return await self._flights.do(
            key, lambda: self._generate(chapter_id, slot_index, content_type, dict(context or {}))
        )

    async def _generate(
        self, chapter_id: int, slot_index: int, content_type: str, context: Dict[str, Any]
    ) -> Optional[Any]:
        self.provider_calls += 1
        content = await self.provider.get_or_create_content(chapter_id, slot_index, content_type, context)
        if content is None:
            logger.info(
                "Content unavailable",
                extra={"chapter_id": chapter_id, "slot_index": slot_index, "content_type": content_type},
            )
            return None
        await self.prewarm(chapter_id, slot_index, content_type, content)
        return content

    def invalidate(self) -> int:
        return self.memory.delete_prefix(content_prefix())
