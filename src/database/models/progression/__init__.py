"""
Progression domain ORM models.

Exports:
- UserProgress
"""

from .user_progress import UserProgress

__all__ = ["UserProgress"]
