"""
Core infrastructure layer for Waypoint.

Subpackages
-----------
- config: static settings (Config) and YAML tunables (ConfigManager)
- logging: structured logging and session-scoped log context
- cache: tier-1 memory cache and tier-2 Redis cache
- database: async SQLAlchemy engine and ORM base
- resilience: retry policy and circuit breaker for remote calls
- concurrency: keyed single-flight coalescing
- event: in-process async event bus

This module is intentionally thin: import from the subpackages directly.
"""
