"""
Quest Engine

Purpose
-------
Own one user's QuestBook for the lifetime of a session: seed and renew the
daily and weekly pools, keep the performance track standing, route
progress events, and report rewards exactly once.

Responsibilities
----------------
- Seed empty pools on first use (single-flight, concurrent callers share one run)
- Renew daily pools when the calendar day changed and the pool is done
- Renew weekly pools after ``quests.weekly_reset_days`` once the pool is done
- Replace every completed performance quest with a harder successor
- Collect rewards of newly completed quests, flipping ``rewards_granted``

Non-Responsibilities
--------------------
- Granting rewards (the session grants collected rewards through progression)
- Persistence (the quest book travels inside the progress record)

Renewal Rules
-------------
A pool with at least one unfinished quest is never renewed, even across day
or week boundaries. Incomplete quests carry over until finished.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, List, Optional

from src.core.concurrency import SingleFlight
from src.core.config import config_int
from src.core.logging.logger import get_logger
from src.domain.models.quest import Quest, QuestBook, QuestPool, QuestRewards, QuestType
from src.modules.quests.generator import QuestGenerator
from src.modules.quests.trackers import ActivityTracker
from src.modules.shared import constants

logger = get_logger(__name__)


@dataclass(frozen=True)
class ProgressSnapshot:
    """Absolute values the engine syncs ABSOLUTE and DELTA quests against."""

    level: int
    currency_total: int
    minutes_today: int = 0
    minutes_this_week: int = 0
    perfect_series_total: int = 0

    @classmethod
    def capture(cls, level: int, currency_total: int, tracker: ActivityTracker) -> "ProgressSnapshot":
        return cls(
            level=level,
            currency_total=currency_total,
            minutes_today=tracker.active_minutes_today(),
            minutes_this_week=tracker.active_minutes_this_week(),
            perfect_series_total=tracker.perfect_series_completed_total(),
        )


@dataclass
class QuestProgressResult:
    completed: List[Quest] = field(default_factory=list)
    rewards: QuestRewards = field(default_factory=QuestRewards)

    @property
    def any_completed(self) -> bool:
        return bool(self.completed)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _sum_rewards(quests: Iterable[Quest]) -> QuestRewards:
    experience = 0
    currency = 0
    for quest in quests:
        experience += quest.rewards.experience
        currency += quest.rewards.currency
    return QuestRewards(experience=experience, currency=currency)


class QuestEngine:
    """
    Quest lifecycle for a single session.

    Example
    -------
    >>> engine = QuestEngine(book, QuestGenerator(), tracker)
    >>> await engine.ensure_pools(snapshot)
    >>> result = engine.handle_event(QuestType.MODULES_COMPLETED, 1, snapshot)
    >>> result.rewards.experience
    """

    def __init__(
        self,
        book: QuestBook,
        generator: QuestGenerator,
        tracker: ActivityTracker,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.book = book
        self.generator = generator
        self.tracker = tracker
        self._clock = clock
        self._seeding = SingleFlight("quest-seeding")
        self._weekly_reset_days = config_int("quests.weekly_reset_days", constants.WEEKLY_RESET_DAYS)

    # ------------------------------------------------------------------ #
    # Pool lifecycle
    # ------------------------------------------------------------------ #

    @staticmethod
    def _pool_done(quests: List[Quest]) -> bool:
        return not quests or all(quest.is_completed for quest in quests)

    def should_renew_daily(self, now: Optional[datetime] = None) -> bool:
        now = now or self._clock()
        day_changed = self.book.last_daily_reset is None or self.book.last_daily_reset != now.date()
        return day_changed and self._pool_done(self.book.daily)

    def should_renew_weekly(self, now: Optional[datetime] = None) -> bool:
        now = now or self._clock()
        last = self.book.last_weekly_reset
        period_over = last is None or now - last >= timedelta(days=self._weekly_reset_days)
        return period_over and self._pool_done(self.book.weekly)

    async def ensure_pools(self, snapshot: ProgressSnapshot) -> bool:
        """Seed or renew pools; concurrent callers join one seeding run."""
        return await self._seeding.do("seed", lambda: self._seed(snapshot))

    async def _seed(self, snapshot: ProgressSnapshot) -> bool:
        now = self._clock()
        changed = False

        if self.should_renew_daily(now):
            self.book.replace_pool(
                QuestPool.DAILY,
                self.generator.generate_pool(QuestPool.DAILY, snapshot.level, snapshot.currency_total),
            )
            self.book.last_daily_reset = now.date()
            self.tracker.reset_daily()
            changed = True

        if self.should_renew_weekly(now):
            self.book.replace_pool(
                QuestPool.WEEKLY,
                self.generator.generate_pool(QuestPool.WEEKLY, snapshot.level, snapshot.currency_total),
            )
            self.book.last_weekly_reset = now
            self.tracker.reset_weekly()
            changed = True

        if not self.book.performance:
            self.book.replace_pool(
                QuestPool.PERFORMANCE,
                self.generator.initial_performance(snapshot.level, snapshot.perfect_series_total),
            )
            changed = True

        # Completed before a crash but never granted: report again this session.
        reported = {id(q) for q in self.book.completed_in_session}
        for quest in self.book:
            if quest.is_completed and not quest.rewards_granted and id(quest) not in reported:
                self.book.completed_in_session.append(quest)

        if changed:
            logger.info(
                "Quest pools seeded",
                extra={
                    "daily": len(self.book.daily),
                    "weekly": len(self.book.weekly),
                    "performance": len(self.book.performance),
                },
            )
        return changed

    # ------------------------------------------------------------------ #
    # Progress
    # ------------------------------------------------------------------ #

    def _absolute_value(self, quest: Quest, snapshot: ProgressSnapshot) -> Optional[int]:
        if quest.quest_type is QuestType.LEVEL_REACHED:
            return snapshot.level
        if quest.quest_type is QuestType.CURRENCY_EARNED:
            return snapshot.currency_total
        if quest.quest_type is QuestType.TIME_SPENT:
            if quest.pool is QuestPool.WEEKLY:
                return snapshot.minutes_this_week
            return snapshot.minutes_today
        return None

    def _complete(self, quest: Quest, completed: List[Quest]) -> None:
        completed.append(quest)
        self.book.completed_in_session.append(quest)
        logger.info(
            "Quest completed",
            extra={
                "quest_id": quest.quest_id,
                "quest_type": quest.quest_type.value,
                "pool": quest.pool.value,
                "target": quest.target,
            },
        )

    def _replace_completed_performance(self, snapshot: ProgressSnapshot, completed: List[Quest]) -> None:
        # A successor may already be satisfied (level jumped twice); sync it too.
        for index, quest in enumerate(list(self.book.performance)):
            current = quest
            while current.is_completed:
                successor = self.generator.successor(current, snapshot.level, snapshot.perfect_series_total)
                self.book.performance[index] = successor
                value = self._absolute_value(successor, snapshot)
                if value is None or not successor.apply(value, self._clock()):
                    break
                self._complete(successor, completed)
                current = successor

    def synchronize(self, snapshot: ProgressSnapshot) -> QuestProgressResult:
        """Re-apply absolute and delta sources to every active quest."""
        now = self._clock()
        completed: List[Quest] = []
        for quest in self.book.active():
            value = self._absolute_value(quest, snapshot)
            if value is not None and quest.apply(value, now):
                self._complete(quest, completed)
        self._replace_completed_performance(snapshot, completed)
        return QuestProgressResult(completed=completed, rewards=_sum_rewards(completed))

    def handle_event(self, quest_type: QuestType, amount: int, snapshot: ProgressSnapshot) -> QuestProgressResult:
        """
        Route one progress event.

        INCREMENT quests of ``quest_type`` add ``amount``. ABSOLUTE and DELTA
        quests are synced from ``snapshot`` on every event.
        """
        now = self._clock()
        completed: List[Quest] = []
        for quest in self.book.active():
            if quest.quest_type is quest_type and self._absolute_value(quest, snapshot) is None:
                if quest.apply(amount, now):
                    self._complete(quest, completed)

        synced = self.synchronize(snapshot)
        completed.extend(synced.completed)
        return QuestProgressResult(completed=completed, rewards=_sum_rewards(completed))

    def collect_rewards(self) -> QuestRewards:
        """Rewards of completed quests not yet granted; marks them granted."""
        pending = [q for q in self.book.completed_in_session if not q.rewards_granted]
        for quest in pending:
            quest.rewards_granted = True
        return _sum_rewards(pending)

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #

    def list_active(self, snapshot: Optional[ProgressSnapshot] = None) -> List[Quest]:
        if snapshot is not None:
            self.synchronize(snapshot)
        return self.book.active()

    def list_by_pool(self, pool: QuestPool, snapshot: Optional[ProgressSnapshot] = None) -> List[Quest]:
        if snapshot is not None:
            self.synchronize(snapshot)
        return list(self.book.pool(pool))

    def claim_completed(self, quest_ids: Optional[Iterable[str]] = None) -> List[Quest]:
        """Acknowledge completed quests; rewards were already granted."""
        wanted = set(quest_ids) if quest_ids is not None else None
        claimed: List[Quest] = []
        remaining: List[Quest] = []
        for quest in self.book.completed_in_session:
            (claimed if wanted is None or quest.quest_id in wanted else remaining).append(quest)
        self.book.completed_in_session = remaining
        return claimed
