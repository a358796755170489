"""
Configuration error hierarchy for Waypoint (2025).

Exception Hierarchy
-------------------
ConfigError (base)
├── ConfigValidationError (malformed YAML, wrong types)
└── ConfigInitializationError (packaged defaults unreadable)
"""


class ConfigError(Exception):
    """
    Base exception for all configuration-related errors.

    Example
    -------
    >>> try:
    ...     ConfigManager.load()
    ... except ConfigError as e:
    ...     logger.error(f"Config operation failed: {e}")
    """
    pass


class ConfigValidationError(ConfigError):
    """
    Raised when a configuration file fails validation.

    This exception is raised when:
    - A YAML root object is not a mapping
    - A required tunable has the wrong type
    """
    pass


class ConfigInitializationError(ConfigError):
    """
    Raised when ConfigManager cannot load its packaged defaults.

    This is a critical error: the engine has no safe tunables to run with.
    """
    pass


__all__ = [
    "ConfigError",
    "ConfigValidationError",
    "ConfigInitializationError",
]
