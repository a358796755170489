"""
Quest Generator

Purpose
-------
Build quests from config-driven templates. Targets scale with coarse level
bands and rewards are fixed once, at creation, then clamped to the reward
caps.

Configuration Keys
------------------
- quests.daily / quests.weekly        : list of templates
- quests.scaling.level_band           : int (default 10)
- quests.rewards.max_experience       : int (default 100)
- quests.rewards.max_currency         : int (default 10)
- quests.rewards.level_band           : int (default 5)
- quests.rewards.band_bonus           : float (default 0.1)
- quests.performance.*                : performance track definitions

Performance Track
-----------------
Three standing quests, each replaced by a harder successor on completion:

- ``next_level``: reach level N, then N + 1
- ``milestone``: reach the next multiple of the milestone interval
- ``perfect_series``: long-term perfect-series goal growing by ``step``
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from src.core.config import config_float, config_int
from src.core.config.manager import ConfigManager
from src.core.logging.logger import get_logger
from src.domain.models.quest import Quest, QuestMetadata, QuestPool, QuestRewards, QuestType
from src.modules.shared import constants
from src.modules.shared.formulas import milestone_after, scaled_quest_target, scaled_reward

logger = get_logger(__name__)

PERFORMANCE_NEXT_LEVEL = "next_level"
PERFORMANCE_MILESTONE = "milestone"
PERFORMANCE_PERFECT_SERIES = "perfect_series"


@dataclass(frozen=True)
class QuestTemplate:
    quest_type: QuestType
    title: str
    base_target: int
    scaling_factor: float
    reward_experience: int
    reward_currency: int

    @classmethod
    def from_config(cls, data: Dict[str, Any]) -> "QuestTemplate":
        """
        Raises:
            KeyError, ValueError: If the template is malformed
        """
        return cls(
            quest_type=QuestType(data["quest_type"]),
            title=str(data.get("title", "{target}")),
            base_target=int(data["base_target"]),
            scaling_factor=float(data.get("scaling_factor", 0.0)),
            reward_experience=int(data.get("reward_experience", 0)),
            reward_currency=int(data.get("reward_currency", 0)),
        )


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class QuestGenerator:
    """Creates daily, weekly and performance quests for a given level."""

    def __init__(
        self,
        clock: Callable[[], datetime] = _utc_now,
        id_factory: Optional[Callable[[QuestPool, QuestType], str]] = None,
    ) -> None:
        self._clock = clock
        self._id_factory = id_factory or self._default_id
        self._target_band = config_int("quests.scaling.level_band", constants.QUEST_SCALING_LEVEL_BAND)
        self._max_experience = config_int(
            "quests.rewards.max_experience", constants.MAX_QUEST_REWARD_EXPERIENCE
        )
        self._max_currency = config_int("quests.rewards.max_currency", constants.MAX_QUEST_REWARD_CURRENCY)
        self._reward_band = config_int("quests.rewards.level_band", constants.REWARD_SCALING_LEVEL_BAND)
        self._reward_bonus = config_float("quests.rewards.band_bonus", constants.REWARD_SCALING_BONUS)
        self._milestone_interval = config_int(
            "quests.performance.milestone_interval", constants.MILESTONE_INTERVAL
        )

    @staticmethod
    def _default_id(pool: QuestPool, quest_type: QuestType) -> str:
        return f"{pool.value}-{quest_type.value}-{uuid.uuid4().hex[:8]}"

    # ------------------------------------------------------------------ #
    # Templates
    # ------------------------------------------------------------------ #

    def templates(self, pool: QuestPool) -> List[QuestTemplate]:
        raw = ConfigManager.get(f"quests.{pool.value}", [])
        templates: List[QuestTemplate] = []
        for item in raw if isinstance(raw, list) else []:
            try:
                templates.append(QuestTemplate.from_config(item))
            except (KeyError, ValueError, TypeError) as exc:
                logger.warning(
                    "Skipping malformed quest template",
                    extra={"pool": pool.value, "error": str(exc), "error_type": type(exc).__name__},
                )
        return templates

    def rewards_for(self, experience: int, currency: int, level: int) -> QuestRewards:
        return QuestRewards(
            experience=scaled_reward(
                experience, level, self._max_experience, self._reward_band, self._reward_bonus
            ),
            currency=scaled_reward(
                currency, level, self._max_currency, self._reward_band, self._reward_bonus
            ),
        )

    # ------------------------------------------------------------------ #
    # Daily / weekly pools
    # ------------------------------------------------------------------ #

    def build(
        self,
        template: QuestTemplate,
        pool: QuestPool,
        level: int,
        currency_total: int = 0,
    ) -> Quest:
        target = scaled_quest_target(
            template.base_target, level, template.scaling_factor, self._target_band
        )
        baseline = currency_total if template.quest_type is QuestType.CURRENCY_EARNED else 0
        return Quest(
            quest_id=self._id_factory(pool, template.quest_type),
            quest_type=template.quest_type,
            pool=pool,
            title=template.title.format(target=target),
            target=target,
            rewards=self.rewards_for(template.reward_experience, template.reward_currency, level),
            metadata=QuestMetadata(level_at_generation=level, start_baseline=baseline),
            created_at=self._clock(),
        )

    def generate_pool(self, pool: QuestPool, level: int, currency_total: int = 0) -> List[Quest]:
        if pool is QuestPool.PERFORMANCE:
            raise ValueError("performance quests are generated per track, not as a pool")
        quests = [self.build(t, pool, level, currency_total) for t in self.templates(pool)]
        logger.info(
            "Quest pool generated",
            extra={"pool": pool.value, "level": level, "quest_count": len(quests)},
        )
        return quests

    # ------------------------------------------------------------------ #
    # Performance track
    # ------------------------------------------------------------------ #

    def _performance_config(self, kind: str) -> Dict[str, Any]:
        value = ConfigManager.get(f"quests.performance.{kind}", {})
        return value if isinstance(value, dict) else {}

    def level_quest(self, target_level: int, level: int, milestone: bool = False) -> Quest:
        kind = PERFORMANCE_MILESTONE if milestone else PERFORMANCE_NEXT_LEVEL
        cfg = self._performance_config(kind)
        return Quest(
            quest_id=self._id_factory(QuestPool.PERFORMANCE, QuestType.LEVEL_REACHED),
            quest_type=QuestType.LEVEL_REACHED,
            pool=QuestPool.PERFORMANCE,
            title=str(cfg.get("title", "Reach level {target}")).format(target=target_level),
            target=target_level,
            rewards=self.rewards_for(
                int(cfg.get("reward_experience", 0)), int(cfg.get("reward_currency", 0)), level
            ),
            metadata=QuestMetadata(
                level_at_generation=level,
                milestone=target_level if milestone else None,
                kind=kind,
            ),
            created_at=self._clock(),
        )

    def perfect_series_quest(self, level: int, target: Optional[int] = None, baseline: int = 0) -> Quest:
        cfg = self._performance_config(PERFORMANCE_PERFECT_SERIES)
        if target is None:
            target = scaled_quest_target(
                int(cfg.get("base_target", 10)),
                level,
                float(cfg.get("scaling_factor", 0.3)),
                self._target_band,
            )
        return Quest(
            quest_id=self._id_factory(QuestPool.PERFORMANCE, QuestType.PERFECT_SERIES),
            quest_type=QuestType.PERFECT_SERIES,
            pool=QuestPool.PERFORMANCE,
            title=str(cfg.get("title", "Finish {target} perfect series")).format(target=target),
            target=target,
            rewards=self.rewards_for(
                int(cfg.get("reward_experience", 0)), int(cfg.get("reward_currency", 0)), level
            ),
            metadata=QuestMetadata(
                level_at_generation=level,
                start_baseline=baseline,
                kind=PERFORMANCE_PERFECT_SERIES,
            ),
            created_at=self._clock(),
        )

    def initial_performance(self, level: int, perfect_series_total: int = 0) -> List[Quest]:
        return [
            self.level_quest(level + 1, level),
            self.level_quest(milestone_after(level, self._milestone_interval), level, milestone=True),
            self.perfect_series_quest(level, baseline=perfect_series_total),
        ]

    def successor(self, completed: Quest, level: int, perfect_series_total: int = 0) -> Quest:
        """Harder replacement for a completed performance quest."""
        kind = completed.metadata.kind
        if kind == PERFORMANCE_MILESTONE:
            target = max(
                completed.target + self._milestone_interval,
                milestone_after(level, self._milestone_interval),
            )
            return self.level_quest(target, level, milestone=True)
        if kind == PERFORMANCE_PERFECT_SERIES:
            step = int(self._performance_config(PERFORMANCE_PERFECT_SERIES).get("step", 5))
            return self.perfect_series_quest(
                level, target=completed.target + step, baseline=perfect_series_total
            )
        # next_level (and any untagged level quest): N -> N + 1, never behind the user
        return self.level_quest(max(completed.target + 1, level + 1), level)
