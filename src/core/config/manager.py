"""
Tunable configuration management for Waypoint (2025).

Purpose
-------
Expose progression tunables (level curve, chapter limits, quest templates,
cache TTLs, retry and circuit breaker settings, autosave cadence) through a
single dot-notation lookup backed by YAML files.

Responsibilities
----------------
- Load the packaged ``defaults.yaml`` shipped next to this module
- Deep-merge optional operator overrides from the ``config/`` directory
- Serve ``get("quests.daily.time_spent.base_target", default)`` lookups
- Accept in-process overrides via ``set()`` (tests, live tuning)
- Track lookup metrics for observability

Non-Responsibilities
--------------------
- Environment/static settings (handled by Config)
- Persistence of overrides (overrides live for the process only)

Architecture Notes
------------------
- Class-level singleton, lazily loaded on first access
- YAML precedence: packaged defaults < config/*.yaml < set() overrides
- ``reset()`` drops overrides and reloads from disk
"""

from __future__ import annotations

import copy
import logging
import time
from pathlib import Path
from typing import Any, Dict, List, MutableMapping

import yaml

from src.core.config.config import Config
from src.core.config.errors import ConfigInitializationError, ConfigValidationError
from src.core.config.metrics import ConfigMetrics

# Bootstrap logger: the logging subsystem imports this package first
logger = logging.getLogger(__name__)

_PACKAGED_DEFAULTS = Path(__file__).resolve().parent / "defaults.yaml"

_MISSING = object()


class ConfigManager:
    """
    Dot-notation access to YAML-backed tunables.

    Example
    -------
    >>> ConfigManager.get("progression.level.max_level", 1000)
    1000
    >>> ConfigManager.set("autosave.interval_seconds", 5)
    """

    _defaults: Dict[str, Any] = {}
    _cache: Dict[str, Any] = {}
    _initialized: bool = False
    _metrics: ConfigMetrics = ConfigMetrics()

    # =========================================================================
    # YAML LOADING
    # =========================================================================

    @staticmethod
    def _deep_merge_dict(
        target: MutableMapping[str, Any],
        source: MutableMapping[str, Any],
    ) -> None:
        """Recursively merge `source` into `target` (in-place)."""
        for key, value in source.items():
            if isinstance(value, dict) and isinstance(target.get(key), dict):
                ConfigManager._deep_merge_dict(target[key], value)
            else:
                target[key] = copy.deepcopy(value)

    @classmethod
    def _read_yaml(cls, path: Path) -> Dict[str, Any]:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigValidationError(
                f"YAML root of {path.name} must be a mapping, got {type(data).__name__}"
            )
        return data

    @classmethod
    def load(cls) -> None:
        """
        Load packaged defaults and operator overrides into the cache.

        Raises
        ------
        ConfigInitializationError
            If the packaged defaults cannot be read.
        """
        try:
            defaults = cls._read_yaml(_PACKAGED_DEFAULTS)
        except (OSError, yaml.YAMLError, ConfigValidationError) as exc:
            raise ConfigInitializationError(
                f"Failed to load packaged defaults: {exc}"
            ) from exc

        loaded_files = 0
        config_dir = Path(Config.CONFIG_DIR)
        if config_dir.exists():
            yaml_files = sorted(config_dir.rglob("*.yaml")) + sorted(config_dir.rglob("*.yml"))
            for yaml_file in yaml_files:
                try:
                    cls._deep_merge_dict(defaults, cls._read_yaml(yaml_file))
                    loaded_files += 1
                except (OSError, yaml.YAMLError, ConfigValidationError) as exc:
                    logger.warning(
                        "Failed to load YAML config override",
                        extra={
                            "file": str(yaml_file),
                            "error": str(exc),
                            "error_type": type(exc).__name__,
                        },
                    )

        cls._defaults = defaults
        cls._cache = copy.deepcopy(defaults)
        cls._initialized = True

        logger.debug(
            "ConfigManager loaded",
            extra={
                "override_files": loaded_files,
                "top_level_keys": len(cls._cache),
            },
        )

    @classmethod
    def _ensure_loaded(cls) -> None:
        if not cls._initialized:
            cls.load()

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    @staticmethod
    def _lookup(tree: Dict[str, Any], key: str) -> Any:
        value: Any = tree
        for part in key.split("."):
            if not isinstance(value, dict) or part not in value:
                return _MISSING
            value = value[part]
        return value

    @classmethod
    def get(cls, key: str, default: Any = None) -> Any:
        """
        Retrieve config value by dot notation path.

        Unlike a plain ``or`` fallback, falsy values such as ``0`` and
        ``False`` are returned as configured.
        """
        cls._ensure_loaded()
        start = time.perf_counter()

        value = cls._lookup(cls._cache, key)
        hit = value is not _MISSING
        cls._metrics.record_get_sync((time.perf_counter() - start) * 1000, hit)

        if not hit:
            return default
        return copy.deepcopy(value) if isinstance(value, (dict, list)) else value

    @classmethod
    def set(cls, key: str, value: Any) -> None:
        """Override a value for the lifetime of the process."""
        cls._ensure_loaded()

        parts = key.split(".")
        node = cls._cache
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[parts[-1]] = value
        cls._metrics.sets += 1

        logger.info("ConfigManager override applied", extra={"config_key": key})

    @classmethod
    def get_all_keys(cls) -> List[str]:
        cls._ensure_loaded()
        return sorted(cls._cache.keys())

    @classmethod
    def reset(cls) -> None:
        """Drop overrides and reload from disk."""
        cls._initialized = False
        cls._metrics = ConfigMetrics()
        cls.load()

    @classmethod
    def get_metrics(cls) -> Dict[str, Any]:
        return cls._metrics.to_dict()
