"""
Configuration lookup metrics for Waypoint (2025).

Purpose
-------
Tracks ConfigManager lookups (hits, misses, latency, overrides) so that
operators can spot typos in config keys (persistent misses) and hot paths.

Architecture Notes
------------------
- Plain dataclass with slots; all access happens on the event loop thread
- Derived metrics are calculated on demand from raw counters
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict


@dataclass(slots=True)
class ConfigMetrics:
    """Typed metrics container for ConfigManager observability."""

    gets: int = 0
    sets: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    total_get_time_ms: float = 0.0

    def record_get_sync(self, elapsed_ms: float, hit: bool) -> None:
        self.gets += 1
        self.total_get_time_ms += elapsed_ms
        if hit:
            self.cache_hits += 1
        else:
            self.cache_misses += 1

    @property
    def hit_rate(self) -> float:
        if self.gets == 0:
            return 0.0
        return round(self.cache_hits / self.gets * 100, 2)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert metrics to dictionary for logging/export.

        Example
        -------
        >>> logger.info("Config metrics", extra=ConfigMetrics().to_dict())
        """
        data = asdict(self)
        data["hit_rate"] = self.hit_rate
        return data
