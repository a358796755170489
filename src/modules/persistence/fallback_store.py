"""
Local-only fallback for fields the remote store has not accepted.

A field lands here when the remote rejects it (unknown column, numeric
overflow) or when the remote is unreachable. Fallback values overlay every
read and are re-sent on every write until the remote accepts them.

Bases
-----
A monotonic counter changed while the remote was unreachable also records
its base: the value the change was applied to. When the remote is reachable
again the counter is rebased as ``remote + (value - base)``, so offline
progress made on top of a stale or provisional snapshot never replaces
higher remote progress.

Storage
-------
Tier-2 entries under ``fallback_key(user_id)`` and
``fallback_base_key(user_id)`` with no freshness expiry, mirrored in tier 1
so the overlay survives a tier-2 outage.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Mapping, Optional

from src.core.cache import MemoryCache, fallback_base_key, fallback_key
from src.core.cache.local_store import LocalDurableCache
from src.core.exceptions import CacheError
from src.core.logging.logger import get_logger

logger = get_logger(__name__)


class FallbackStore:
    def __init__(self, local: LocalDurableCache, memory: Optional[MemoryCache] = None) -> None:
        self._local = local
        self._memory = memory or MemoryCache(default_ttl=None)

    async def _load(self, key: str, user_id: str) -> Dict[str, Any]:
        cached = self._memory.get_any(key)
        if cached is not None:
            return dict(cached)
        try:
            entry = await self._local.get(key)
        except CacheError as exc:
            logger.warning(
                "Fallback store unreadable, continuing without overlay",
                extra={"user_id": user_id, "error": str(exc)},
            )
            return {}
        fields = dict(entry.value) if entry is not None and isinstance(entry.value, dict) else {}
        self._memory.set(key, fields, ttl=None)
        return dict(fields)

    async def _store(self, key: str, user_id: str, fields: Dict[str, Any]) -> None:
        self._memory.set(key, dict(fields), ttl=None)
        try:
            if fields:
                await self._local.set(key, fields, ttl=None)
            else:
                await self._local.delete(key)
        except CacheError as exc:
            logger.warning(
                "Fallback store write failed; overlay kept in memory",
                extra={"user_id": user_id, "fields": sorted(fields), "error": str(exc)},
            )

    async def load(self, user_id: str) -> Dict[str, Any]:
        return await self._load(fallback_key(user_id), user_id)

    async def load_bases(self, user_id: str) -> Dict[str, int]:
        return await self._load(fallback_base_key(user_id), user_id)

    async def save(
        self,
        user_id: str,
        fields: Dict[str, Any],
        bases: Optional[Mapping[str, int]] = None,
    ) -> Dict[str, Any]:
        """
        Merge ``fields`` into the user's fallback; returns the new overlay.

        A base already recorded for a field is kept: it marks the remote value
        the first offline change started from.
        """
        if not fields:
            return await self.load(user_id)
        current = await self.load(user_id)
        current.update(fields)
        await self._store(fallback_key(user_id), user_id, current)
        if bases:
            current_bases = await self.load_bases(user_id)
            added = {name: base for name, base in bases.items() if name not in current_bases}
            if added:
                current_bases.update(added)
                await self._store(fallback_base_key(user_id), user_id, current_bases)
        logger.info(
            "Fields retained in local fallback",
            extra={"user_id": user_id, "fields": sorted(fields), "based": sorted(bases or ())},
        )
        return current

    async def rebase(self, user_id: str, fields: Mapping[str, Any], bases: Mapping[str, int]) -> None:
        """Replace values and bases after a counter was re-applied to a fresh remote value."""
        current = await self.load(user_id)
        current.update(fields)
        current_bases = await self.load_bases(user_id)
        current_bases.update(bases)
        await self._store(fallback_key(user_id), user_id, current)
        await self._store(fallback_base_key(user_id), user_id, current_bases)

    async def discard(self, user_id: str, names: Iterable[str]) -> Dict[str, Any]:
        """Forget fields the remote has now accepted."""
        names = list(names)
        current = await self.load(user_id)
        accepted = [name for name in names if name in current]
        if accepted:
            for name in accepted:
                del current[name]
            await self._store(fallback_key(user_id), user_id, current)
            logger.info(
                "Fallback fields accepted by remote",
                extra={"user_id": user_id, "fields": sorted(accepted)},
            )
        current_bases = await self.load_bases(user_id)
        settled = [name for name in names if name in current_bases]
        if settled:
            for name in settled:
                del current_bases[name]
            await self._store(fallback_base_key(user_id), user_id, current_bases)
        return current

    def forget(self, user_id: str) -> None:
        """Drop the in-memory mirror (tier-2 keys are purged by prefix)."""
        self._memory.delete(fallback_key(user_id))
        self._memory.delete(fallback_base_key(user_id))
