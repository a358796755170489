"""
Quest domain model.

Purpose
-------
Value objects and entities for time-boxed and performance quests. A quest
has one edge: ACTIVE -> COMPLETED, taken the first time progress reaches
the target. Progress never decreases while ACTIVE; once COMPLETED both
progress and rewards are frozen.

Progress Routing
----------------
- INCREMENT: MODULES_COMPLETED, PERFECT_SERIES (``progress += amount``)
- DELTA: CURRENCY_EARNED (``min(target, total - start_baseline)``)
- ABSOLUTE: TIME_SPENT, LEVEL_REACHED (``min(target, value)``)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

from src.domain.models.base import DomainValidationError, validate_non_negative, validate_positive


class QuestType(str, Enum):
    TIME_SPENT = "time_spent"
    MODULES_COMPLETED = "modules_completed"
    PERFECT_SERIES = "perfect_series"
    CURRENCY_EARNED = "currency_earned"
    LEVEL_REACHED = "level_reached"


class QuestPool(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    PERFORMANCE = "performance"


class QuestStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


class ProgressMode(Enum):
    INCREMENT = "increment"
    DELTA = "delta"
    ABSOLUTE = "absolute"


PROGRESS_MODES: Dict[QuestType, ProgressMode] = {
    QuestType.MODULES_COMPLETED: ProgressMode.INCREMENT,
    QuestType.PERFECT_SERIES: ProgressMode.INCREMENT,
    QuestType.CURRENCY_EARNED: ProgressMode.DELTA,
    QuestType.TIME_SPENT: ProgressMode.ABSOLUTE,
    QuestType.LEVEL_REACHED: ProgressMode.ABSOLUTE,
}


# ============================================================================
# VALUE OBJECTS
# ============================================================================


@dataclass(frozen=True)
class QuestRewards:
    experience: int = 0
    currency: int = 0

    def __post_init__(self) -> None:
        validate_non_negative(self.experience, "experience")
        validate_non_negative(self.currency, "currency")


@dataclass(frozen=True)
class QuestMetadata:
    """
    Generation context.

    ``start_baseline`` anchors DELTA quests (currency total at creation) and
    the long-term perfect-series goal. ``milestone`` marks milestone-ladder
    quests; ``kind`` names the performance track a quest belongs to.
    """

    level_at_generation: int = 1
    start_baseline: int = 0
    milestone: Optional[int] = None
    kind: Optional[str] = None


# ============================================================================
# QUEST
# ============================================================================


def _parse_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return None
    return None


@dataclass
class Quest:
    quest_id: str
    quest_type: QuestType
    pool: QuestPool
    title: str
    target: int
    rewards: QuestRewards
    metadata: QuestMetadata = field(default_factory=QuestMetadata)
    progress: int = 0
    status: QuestStatus = QuestStatus.ACTIVE
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    rewards_granted: bool = False

    def __post_init__(self) -> None:
        validate_positive(self.target, "target")
        if not 0 <= self.progress <= self.target:
            raise DomainValidationError(
                f"progress must be within 0..{self.target}, got {self.progress}",
                field="progress",
            )

    @property
    def is_completed(self) -> bool:
        return self.status is QuestStatus.COMPLETED

    @property
    def progress_mode(self) -> ProgressMode:
        return PROGRESS_MODES[self.quest_type]

    def apply(self, value: int, now: Optional[datetime] = None) -> bool:
        """
        Route ``value`` by this quest's progress mode.

        Returns True only on the ACTIVE -> COMPLETED edge.
        """
        if self.is_completed:
            return False

        mode = self.progress_mode
        if mode is ProgressMode.INCREMENT:
            candidate = self.progress + max(0, value)
        elif mode is ProgressMode.DELTA:
            candidate = value - self.metadata.start_baseline
        else:
            candidate = value

        self.progress = max(self.progress, min(self.target, candidate))
        if self.progress >= self.target:
            self.status = QuestStatus.COMPLETED
            self.completed_at = now or datetime.now(timezone.utc)
            return True
        return False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "quest_id": self.quest_id,
            "quest_type": self.quest_type.value,
            "pool": self.pool.value,
            "title": self.title,
            "target": self.target,
            "progress": self.progress,
            "status": self.status.value,
            "rewards": {"experience": self.rewards.experience, "currency": self.rewards.currency},
            "metadata": {
                "level_at_generation": self.metadata.level_at_generation,
                "start_baseline": self.metadata.start_baseline,
                "milestone": self.metadata.milestone,
                "kind": self.metadata.kind,
            },
            "created_at": self.created_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "rewards_granted": self.rewards_granted,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Quest":
        """
        Raises
        ------
        DomainValidationError, KeyError, ValueError
            If the stored quest is malformed
        """
        rewards = data.get("rewards") or {}
        metadata = data.get("metadata") or {}
        target = int(data["target"])
        return cls(
            quest_id=str(data["quest_id"]),
            quest_type=QuestType(data["quest_type"]),
            pool=QuestPool(data["pool"]),
            title=str(data.get("title", "")),
            target=target,
            progress=min(max(0, int(data.get("progress", 0))), target),
            status=QuestStatus(data.get("status", QuestStatus.ACTIVE.value)),
            rewards=QuestRewards(
                experience=int(rewards.get("experience", 0)),
                currency=int(rewards.get("currency", 0)),
            ),
            metadata=QuestMetadata(
                level_at_generation=int(metadata.get("level_at_generation", 1)),
                start_baseline=int(metadata.get("start_baseline", 0)),
                milestone=metadata.get("milestone"),
                kind=metadata.get("kind"),
            ),
            created_at=_parse_datetime(data.get("created_at")) or datetime.now(timezone.utc),
            completed_at=_parse_datetime(data.get("completed_at")),
            rewards_granted=bool(data.get("rewards_granted", False)),
        )


# ============================================================================
# QUEST BOOK
# ============================================================================


@dataclass
class QuestBook:
    """
    All quests of one user, grouped by pool.

    ``completed_in_session`` lists quests completed since the last claim; it
    is never persisted.
    """

    daily: List[Quest] = field(default_factory=list)
    weekly: List[Quest] = field(default_factory=list)
    performance: List[Quest] = field(default_factory=list)
    last_daily_reset: Optional[date] = None
    last_weekly_reset: Optional[datetime] = None
    completed_in_session: List[Quest] = field(default_factory=list)

    def pool(self, pool: QuestPool) -> List[Quest]:
        return {
            QuestPool.DAILY: self.daily,
            QuestPool.WEEKLY: self.weekly,
            QuestPool.PERFORMANCE: self.performance,
        }[pool]

    def replace_pool(self, pool: QuestPool, quests: List[Quest]) -> None:
        setattr(self, pool.value, list(quests))

    def __iter__(self) -> Iterator[Quest]:
        yield from self.daily
        yield from self.weekly
        yield from self.performance

    def find(self, quest_id: str) -> Optional[Quest]:
        return next((quest for quest in self if quest.quest_id == quest_id), None)

    def active(self) -> List[Quest]:
        return [quest for quest in self if not quest.is_completed]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "daily": [quest.to_dict() for quest in self.daily],
            "weekly": [quest.to_dict() for quest in self.weekly],
            "performance": [quest.to_dict() for quest in self.performance],
            "last_daily_reset": self.last_daily_reset.isoformat() if self.last_daily_reset else None,
            "last_weekly_reset": self.last_weekly_reset.isoformat() if self.last_weekly_reset else None,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "QuestBook":
        """Malformed quests are dropped; the engine regenerates the pool."""
        data = data or {}
        book = cls()
        for pool in QuestPool:
            quests: List[Quest] = []
            for raw in data.get(pool.value) or []:
                try:
                    quests.append(Quest.from_dict(raw))
                except (DomainValidationError, KeyError, ValueError, TypeError, AttributeError):
                    continue
            book.replace_pool(pool, quests)

        daily_reset = data.get("last_daily_reset")
        if isinstance(daily_reset, str):
            try:
                book.last_daily_reset = date.fromisoformat(daily_reset)
            except ValueError:
                book.last_daily_reset = None
        book.last_weekly_reset = _parse_datetime(data.get("last_weekly_reset"))
        return book
