"""
Tier-1 in-memory cache (Waypoint).

Purpose
-------
Hold the latest merged progression snapshot for the signed-in user so that
repeated reads inside the TTL never touch Redis or the database.

Design Notes
------------
- Every value is wrapped in a ``CacheEntry`` carrying ``written_at`` and
  ``ttl``; freshness is decided on read, not by a background sweeper
- ``get_fresh`` honours the TTL; ``get_any`` returns stale entries too and
  is used when the remote tier is unreachable
- Values are stored by reference; callers store immutable snapshots or
  copies
- The clock is injectable (``time.monotonic`` by default)
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """
    A cached value and its freshness window.

    ``ttl`` of ``None`` means the entry never goes stale.
    """

    value: T
    written_at: float
    ttl: Optional[float]

    def is_fresh(self, now: float) -> bool:
        if self.ttl is None:
            return True
        return (now - self.written_at) < self.ttl

    def age(self, now: float) -> float:
        return max(0.0, now - self.written_at)

    def to_dict(self) -> Dict[str, Any]:
        return {"value": self.value, "written_at": self.written_at, "ttl": self.ttl}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheEntry[Any]":
        ttl = data.get("ttl")
        return cls(
            value=data.get("value"),
            written_at=float(data.get("written_at", 0.0)),
            ttl=float(ttl) if ttl is not None else None,
        )


class MemoryCache:
    """
    Process-local TTL cache.

    Example
    -------
    >>> cache = MemoryCache(default_ttl=300)
    >>> cache.set("waypoint:v1:progress:u1", snapshot)
    >>> cache.get_fresh("waypoint:v1:progress:u1")
    """

    def __init__(
        self,
        default_ttl: Optional[float] = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._entries: Dict[str, CacheEntry[Any]] = {}
        self._default_ttl = default_ttl
        self._clock = clock
        self.hits = 0
        self.misses = 0

    def get_fresh(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None or not entry.is_fresh(self._clock()):
            self.misses += 1
            return None
        self.hits += 1
        return entry.value

    def get_any(self, key: str) -> Optional[Any]:
        """Return the value regardless of age (degraded reads)."""
        entry = self._entries.get(key)
        return entry.value if entry is not None else None

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        self._entries[key] = CacheEntry(
            value=value,
            written_at=self._clock(),
            ttl=ttl if ttl is not None else self._default_ttl,
        )

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def delete_prefix(self, prefix: str) -> int:
        doomed = [key for key in self._entries if key.startswith(prefix)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def keys(self) -> List[str]:
        return list(self._entries)

    def cleanup_expired(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if not entry.is_fresh(now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
