"""
Database subsystem for Waypoint.

Provides the async SQLAlchemy engine, session management and the ORM base
classes used by the ``user_progress`` model.
"""

from src.core.database.base import Base, TimestampMixin, utc_now
from src.core.database.service import (
    DatabaseInitializationError,
    DatabaseNotInitializedError,
    DatabaseService,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "utc_now",
    "DatabaseService",
    "DatabaseInitializationError",
    "DatabaseNotInitializedError",
]
