"""
Waypoint Domain Constants

Purpose
-------
Provide domain-level constants for progression mechanics: experience
rewards, chapter layout and field names shared across the state machine,
the quest engine and the persistence layer.

IMPORTANT:
This module contains PROGRESSION constants only. Operator-tunable values
(quest templates, TTLs, retry settings) live in the YAML defaults served by
ConfigManager; the values here are the fallbacks used when a key is absent.

Design Notes
------------
- Values are annotated with typing.Final to signal immutability
- Grouped by subsystem
- No side effects at import time
"""

from __future__ import annotations

from enum import Enum
from typing import Final, Mapping

# ============================================================================
# EXPERIENCE REWARDS
# ============================================================================


class RewardSource(str, Enum):
    """Named activities that grant a fixed amount of experience."""

    QUIZ = "quiz"
    DAILY_SERIES = "daily_series"
    MODULE_COMPLETED = "module_completed"
    QUEST_COMPLETED = "quest_completed"
    CHAPTER_COMPLETED = "chapter_completed"


EXPERIENCE_REWARDS: Final[Mapping[RewardSource, int]] = {
    RewardSource.QUIZ: 15,
    RewardSource.DAILY_SERIES: 10,
    RewardSource.MODULE_COMPLETED: 25,
    RewardSource.QUEST_COMPLETED: 20,
    RewardSource.CHAPTER_COMPLETED: 50,
}

# ============================================================================
# LEVELING
# ============================================================================

MAX_LEVEL: Final[int] = 1000

# ============================================================================
# CHAPTERS & MODULE SLOTS
# ============================================================================

SLOTS_PER_CHAPTER: Final[int] = 3
MAX_CONTENT_CHAPTER: Final[int] = 10  # Content wraps after this chapter

# ============================================================================
# QUESTS
# ============================================================================

MAX_QUEST_REWARD_EXPERIENCE: Final[int] = 100
MAX_QUEST_REWARD_CURRENCY: Final[int] = 10
QUEST_SCALING_LEVEL_BAND: Final[int] = 10
REWARD_SCALING_LEVEL_BAND: Final[int] = 5
REWARD_SCALING_BONUS: Final[float] = 0.1
WEEKLY_RESET_DAYS: Final[int] = 7
MILESTONE_INTERVAL: Final[int] = 5

# ============================================================================
# PERSISTENCE
# ============================================================================

DEFAULT_MEMORY_TTL_SECONDS: Final[int] = 300
DEFAULT_LOCAL_TTL_SECONDS: Final[int] = 300
DEFAULT_KEY_PREFIX: Final[str] = "waypoint:v1"

# ============================================================================
# AUTOSAVE
# ============================================================================

AUTOSAVE_INTERVAL_SECONDS: Final[float] = 30.0
AUTOSAVE_GRACE_PERIOD_SECONDS: Final[float] = 2.0
