"""
Unit tests for the quest domain model: progress routing per quest type,
the single ACTIVE -> COMPLETED edge, and QuestBook serialization.
"""

from datetime import date, datetime, timezone

import pytest

from src.domain.models import (
    Quest,
    QuestBook,
    QuestMetadata,
    QuestPool,
    QuestRewards,
    QuestStatus,
    QuestType,
)
from src.domain.models.base import DomainValidationError

NOW = datetime(2025, 3, 3, 9, 0, tzinfo=timezone.utc)


def make_quest(quest_type: QuestType, target: int, baseline: int = 0, **kwargs) -> Quest:
    return Quest(
        quest_id=kwargs.pop("quest_id", f"daily-{quest_type.value}-test"),
        quest_type=quest_type,
        pool=kwargs.pop("pool", QuestPool.DAILY),
        title="test quest",
        target=target,
        rewards=kwargs.pop("rewards", QuestRewards(experience=50, currency=5)),
        metadata=QuestMetadata(level_at_generation=1, start_baseline=baseline),
        created_at=NOW,
        **kwargs,
    )


@pytest.mark.unit
@pytest.mark.domain
class TestDeltaQuest:
    def test_currency_quest_measures_from_baseline(self):
        """Earn 15 currency starting from a total of 100."""
        # Arrange
        quest = make_quest(QuestType.CURRENCY_EARNED, target=15, baseline=100)

        # Act
        completed = quest.apply(112, NOW)

        # Assert
        assert not completed
        assert quest.progress == 12
        assert quest.status is QuestStatus.ACTIVE

        # Act
        completed = quest.apply(116, NOW)

        # Assert
        assert completed
        assert quest.progress == 15
        assert quest.status is QuestStatus.COMPLETED
        assert quest.completed_at == NOW

    def test_completed_quest_is_frozen_when_total_drops(self):
        quest = make_quest(QuestType.CURRENCY_EARNED, target=15, baseline=100)
        quest.apply(116, NOW)

        assert quest.apply(90, NOW) is False

        assert quest.progress == 15
        assert quest.is_completed

    def test_total_below_baseline_never_goes_negative(self):
        quest = make_quest(QuestType.CURRENCY_EARNED, target=15, baseline=100)

        quest.apply(80, NOW)

        assert quest.progress == 0


@pytest.mark.unit
@pytest.mark.domain
class TestIncrementAndAbsoluteQuests:
    def test_modules_quest_counts_increments(self):
        quest = make_quest(QuestType.MODULES_COMPLETED, target=3)

        results = [quest.apply(1, NOW) for _ in range(3)]

        assert results == [False, False, True]
        assert quest.progress == 3

    def test_negative_increment_ignored(self):
        quest = make_quest(QuestType.PERFECT_SERIES, target=3)
        quest.apply(2, NOW)

        quest.apply(-5, NOW)

        assert quest.progress == 2

    def test_absolute_progress_never_decreases_while_active(self):
        # Arrange
        quest = make_quest(QuestType.TIME_SPENT, target=10)
        quest.apply(6, NOW)

        # Act: tracker reports a smaller value (e.g. reset by another device)
        quest.apply(2, NOW)

        # Assert
        assert quest.progress == 6
        assert quest.status is QuestStatus.ACTIVE

    def test_absolute_progress_capped_at_target(self):
        quest = make_quest(QuestType.LEVEL_REACHED, target=5, pool=QuestPool.PERFORMANCE)

        assert quest.apply(9, NOW)
        assert quest.progress == 5

    def test_completion_edge_reported_once(self):
        quest = make_quest(QuestType.MODULES_COMPLETED, target=1)

        assert quest.apply(1, NOW) is True
        assert quest.apply(1, NOW) is False


@pytest.mark.unit
@pytest.mark.domain
class TestQuestValidation:
    def test_target_must_be_positive(self):
        with pytest.raises(DomainValidationError):
            make_quest(QuestType.MODULES_COMPLETED, target=0)

    def test_progress_must_be_within_target(self):
        with pytest.raises(DomainValidationError):
            make_quest(QuestType.MODULES_COMPLETED, target=2, progress=3)

    def test_rewards_must_be_non_negative(self):
        with pytest.raises(DomainValidationError):
            QuestRewards(experience=-1)

    def test_package_exports_only_live_helpers(self):
        from src.domain import models

        missing = [name for name in models.__all__ if not hasattr(models, name)]
        helpers = {name for name in models.__all__ if name.startswith("validate_")}

        assert missing == []
        assert helpers == {"validate_non_negative", "validate_positive"}

    def test_stored_progress_is_clamped(self):
        data = make_quest(QuestType.TIME_SPENT, target=10).to_dict()
        data["progress"] = 40

        assert Quest.from_dict(data).progress == 10


@pytest.mark.unit
@pytest.mark.domain
class TestQuestBook:
    def test_round_trip_keeps_reset_markers(self):
        # Arrange
        book = QuestBook(
            daily=[make_quest(QuestType.MODULES_COMPLETED, target=1)],
            last_daily_reset=date(2025, 3, 3),
            last_weekly_reset=NOW,
        )

        # Act
        restored = QuestBook.from_dict(book.to_dict())

        # Assert
        assert restored.last_daily_reset == date(2025, 3, 3)
        assert restored.last_weekly_reset == NOW
        assert [q.quest_id for q in restored.daily] == [book.daily[0].quest_id]
        assert restored.completed_in_session == []

    def test_malformed_quests_are_dropped(self):
        good = make_quest(QuestType.MODULES_COMPLETED, target=1).to_dict()
        data = {
            "daily": [good, {"quest_id": "broken"}, {**good, "quest_type": "dancing"}],
            "last_daily_reset": "not-a-date",
        }

        book = QuestBook.from_dict(data)

        assert len(book.daily) == 1
        assert book.last_daily_reset is None

    def test_active_and_find(self):
        done = make_quest(QuestType.MODULES_COMPLETED, target=1, quest_id="done")
        done.apply(1, NOW)
        open_ = make_quest(QuestType.TIME_SPENT, target=5, quest_id="open")
        book = QuestBook(daily=[done, open_])

        assert [q.quest_id for q in book.active()] == ["open"]
        assert book.find("done") is done
        assert book.find("missing") is None
