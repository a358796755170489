"""
Configuration management subsystem for Waypoint (2025).

Static vs Tunable Configuration
-------------------------------
**Static (Config):**
- Loaded from environment variables at startup (python-dotenv)
- Connection strings, pool sizes, environment, logging switches

**Tunable (ConfigManager):**
- Loaded from packaged YAML defaults plus optional ``config/*.yaml``
- Level curve, chapter limits, quest templates, TTLs, retry settings
- In-process overrides via ``ConfigManager.set``

Usage Examples
--------------
```python
from src.core.config import Config, ConfigManager

db_url = Config.DATABASE_URL
max_level = ConfigManager.get("progression.level.max_level", 1000)
```
"""

from src.core.config.config import Config
from src.core.config.errors import (
    ConfigError,
    ConfigInitializationError,
    ConfigValidationError,
)
from src.core.config.manager import ConfigManager
from src.core.config.accessors import (
    config_bool,
    config_float,
    config_int,
    config_list,
    config_str,
)
from src.core.config.metrics import ConfigMetrics

__all__ = [
    "Config",
    "ConfigManager",
    "ConfigError",
    "ConfigInitializationError",
    "ConfigValidationError",
    "ConfigMetrics",
    "config_int",
    "config_float",
    "config_bool",
    "config_str",
    "config_list",
]
