"""
UserProgress: authoritative progression row per user (tier 3).
Schema only.

Column names are the remote vocabulary; the persistence layer maps them to
domain names through its field table (``xp`` -> ``experience``,
``module_slots`` -> ``slots``).
"""

from __future__ import annotations

from typing import Any, Dict, List

from sqlalchemy import CheckConstraint, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database.base import Base, TimestampMixin


class UserProgress(Base, TimestampMixin):
    """One row per user; never deleted, only reset."""

    __tablename__ = "user_progress"
    __table_args__ = (
        CheckConstraint("xp >= 0", name="xp_non_negative"),
        CheckConstraint("currency >= 0", name="currency_non_negative"),
        CheckConstraint("current_chapter >= 1", name="chapter_positive"),
    )

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)

    xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    currency: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )

    current_chapter: Mapped[int] = mapped_column(
        Integer, nullable=False, default=1, server_default="1"
    )
    chapter_ceiling: Mapped[int] = mapped_column(
        Integer, nullable=False, default=1, server_default="1"
    )
    current_module_in_chapter: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    completed_modules_in_chapter: Mapped[List[int]] = mapped_column(
        JSONB, nullable=False, default=list, server_default="[]"
    )
    chapter_history: Mapped[List[int]] = mapped_column(
        JSONB, nullable=False, default=list, server_default="[]"
    )
    module_slots: Mapped[List[Dict[str, Any]]] = mapped_column(
        JSONB, nullable=False, default=list, server_default="[]"
    )
    quests: Mapped[Dict[str, Any]] = mapped_column(
        JSONB, nullable=False, default=dict, server_default="{}"
    )

    def __repr__(self) -> str:
        return f"<UserProgress user_id={self.user_id!r} xp={self.xp} level={self.level}>"
