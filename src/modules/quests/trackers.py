"""
Activity trackers feeding absolute quest progress.

``ActivityTracker`` is the contract the quest engine reads; the UI layer
reports activity into whichever implementation the session owns.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from src.core.logging.logger import get_logger

logger = get_logger(__name__)


@runtime_checkable
class ActivityTracker(Protocol):
    def active_minutes_today(self) -> int: ...

    def active_minutes_this_week(self) -> int: ...

    def perfect_series_completed_total(self) -> int: ...

    def reset_daily(self) -> None: ...

    def reset_weekly(self) -> None: ...


class InMemoryActivityTracker:
    """
    Counters kept for the lifetime of a session.

    Example
    -------
    >>> tracker = InMemoryActivityTracker()
    >>> tracker.record_minutes(12)
    >>> tracker.active_minutes_today()
    12
    """

    def __init__(self) -> None:
        self._minutes_today = 0
        self._minutes_week = 0
        self._perfect_series_total = 0

    def record_minutes(self, minutes: int) -> None:
        if minutes <= 0:
            return
        self._minutes_today += minutes
        self._minutes_week += minutes

    def record_perfect_series(self, count: int = 1) -> None:
        if count > 0:
            self._perfect_series_total += count

    def active_minutes_today(self) -> int:
        return self._minutes_today

    def active_minutes_this_week(self) -> int:
        return self._minutes_week

    def perfect_series_completed_total(self) -> int:
        return self._perfect_series_total

    def reset_daily(self) -> None:
        logger.debug("Activity tracker daily reset", extra={"minutes_today": self._minutes_today})
        self._minutes_today = 0

    def reset_weekly(self) -> None:
        self._minutes_week = 0
