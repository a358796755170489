"""
Database Models Package
========================

SQLAlchemy ORM models for Waypoint. Schema only, no business logic.

Domain Organization:
--------------------
- progression: the ``user_progress`` row (tier-3 authoritative store)
"""

from src.core.database.base import Base

from .progression import UserProgress

__all__ = ["Base", "UserProgress"]
