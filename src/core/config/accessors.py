"""
Typed accessors over ConfigManager.

Infrastructure and services read tunables through these helpers so that a
mistyped YAML value falls back to the code default instead of leaking a
string into arithmetic.
"""

from __future__ import annotations

import logging
from typing import Any, List

from src.core.config.manager import ConfigManager

logger = logging.getLogger(__name__)


def _warn_type(key: str, value: Any, expected: str) -> None:
    logger.warning(
        "Config value has unexpected type, using default",
        extra={"config_key": key, "expected": expected, "actual": type(value).__name__},
    )


def config_int(key: str, default: int) -> int:
    """Get integer config value with fallback."""
    value = ConfigManager.get(key)
    if value is None:
        return default
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    _warn_type(key, value, "int")
    return default


def config_float(key: str, default: float) -> float:
    """Get float config value with fallback."""
    value = ConfigManager.get(key)
    if value is None:
        return default
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    _warn_type(key, value, "float")
    return default


def config_bool(key: str, default: bool) -> bool:
    value = ConfigManager.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    _warn_type(key, value, "bool")
    return default


def config_str(key: str, default: str) -> str:
    value = ConfigManager.get(key)
    return value if isinstance(value, str) and value else default


def config_list(key: str, default: List[Any]) -> List[Any]:
    value = ConfigManager.get(key)
    return value if isinstance(value, list) else list(default)
