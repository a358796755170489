"""
Waypoint Progression Formulas

Purpose
-------
Pure calculation functions for progression mechanics: the experience/level
curve, quest target scaling and quest reward scaling.

Design Notes
------------
All formulas:
- Accept parameters explicitly (no config access, no I/O)
- Are deterministic and side-effect free
- Never raise on garbage numeric input where a safe answer exists

Level Curve
-----------
Going from level ``L`` to ``L + 1`` costs ``round(20 + 8 * L ** 1.5)``
experience. The curve is polynomial, so the total for level 1000 is about
1e8, far from the 2**53 float-exact limit.

Usage
-----
    from src.modules.shared.formulas import level_for_experience

    level = level_for_experience(1_250)
    target = scaled_quest_target(base=10, level=23, scaling_factor=0.2)
"""

from __future__ import annotations

import math
from bisect import bisect_right
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Optional, Tuple

DEFAULT_MAX_LEVEL = 1000
CURVE_BASE = 20
CURVE_COEFFICIENT = 8
CURVE_EXPONENT = 1.5

# Level model sentinel: no level exists beyond the cap
NO_FURTHER_LEVEL = None


# ============================================================================
# LEVEL MODEL
# ============================================================================


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def experience_required_for_level(level: int) -> int:
    """
    Experience needed to go from ``level`` to ``level + 1``.

    Example:
        >>> experience_required_for_level(1)
        28
        >>> experience_required_for_level(10)
        273
    """
    level = max(1, int(level))
    return _round_half_up(CURVE_BASE + CURVE_COEFFICIENT * level**CURVE_EXPONENT)


@lru_cache(maxsize=8)
def _cumulative_table(max_level: int) -> Tuple[int, ...]:
    """table[i] is the total experience at which level i + 1 starts."""
    table = [0]
    total = 0
    for level in range(1, max_level):
        total += experience_required_for_level(level)
        table.append(total)
    return tuple(table)


def experience_for_level(level: int, max_level: int = DEFAULT_MAX_LEVEL) -> Optional[int]:
    """
    Total experience at which ``level`` is reached.

    Levels below 1 are treated as level 1. Levels above ``max_level`` return
    ``NO_FURTHER_LEVEL`` instead of raising.

    Example:
        >>> experience_for_level(1)
        0
        >>> experience_for_level(2)
        28
        >>> experience_for_level(1001) is None
        True
    """
    if level > max_level:
        return NO_FURTHER_LEVEL
    if level <= 1:
        return 0
    return _cumulative_table(max_level)[level - 1]


def level_for_experience(experience: Any, max_level: int = DEFAULT_MAX_LEVEL) -> int:
    """
    Level reached with ``experience`` total experience (binary search).

    Non-numeric, negative and non-finite inputs map to level 1; callers that
    need the last-known-good value use ``sanitize_experience`` first.

    Example:
        >>> level_for_experience(0)
        1
        >>> level_for_experience(28)
        2
        >>> level_for_experience(27)
        1
    """
    if not is_valid_experience(experience):
        return 1
    level = bisect_right(_cumulative_table(max_level), int(experience))
    return min(max(level, 1), max_level)


def experience_to_next_level(experience: Any, max_level: int = DEFAULT_MAX_LEVEL) -> Optional[int]:
    """Experience still missing for the next level, or None at the cap."""
    safe = int(experience) if is_valid_experience(experience) else 0
    level = level_for_experience(safe, max_level)
    next_threshold = experience_for_level(level + 1, max_level)
    if next_threshold is NO_FURTHER_LEVEL:
        return NO_FURTHER_LEVEL
    return next_threshold - safe


@dataclass(frozen=True)
class LevelProgress:
    """Display snapshot of where a user stands on the level curve."""

    level: int
    experience: int
    level_start: int
    next_level_at: Optional[int]

    @property
    def is_max_level(self) -> bool:
        return self.next_level_at is None

    @property
    def fraction(self) -> float:
        if self.next_level_at is None:
            return 1.0
        span = self.next_level_at - self.level_start
        return (self.experience - self.level_start) / span if span > 0 else 1.0


def level_progress(experience: Any, max_level: int = DEFAULT_MAX_LEVEL) -> LevelProgress:
    safe = int(experience) if is_valid_experience(experience) else 0
    level = level_for_experience(safe, max_level)
    return LevelProgress(
        level=level,
        experience=safe,
        level_start=experience_for_level(level, max_level) or 0,
        next_level_at=experience_for_level(level + 1, max_level),
    )


def is_valid_experience(value: Any) -> bool:
    """True for finite, non-negative numbers (bools excluded)."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    if isinstance(value, float) and not math.isfinite(value):
        return False
    return value >= 0


def sanitize_experience(value: Any, last_known_good: int = 0) -> int:
    """
    Clamp corrupted experience to the last known good value.

    Example:
        >>> sanitize_experience(-5, last_known_good=120)
        120
        >>> sanitize_experience(float("nan"))
        0
        >>> sanitize_experience(41.0)
        41
    """
    if is_valid_experience(value):
        return int(value)
    return max(0, int(last_known_good)) if is_valid_experience(last_known_good) else 0


# ============================================================================
# QUEST SCALING
# ============================================================================


def scaled_quest_target(base: int, level: int, scaling_factor: float, band: int = 10) -> int:
    """
    Quest target scaled by coarse level bands.

    ``ceil(base * (1 + floor(level / band) * scaling_factor))``; targets are
    stable inside a band.

    Example:
        >>> scaled_quest_target(10, 9, 0.2)
        10
        >>> scaled_quest_target(10, 10, 0.2)
        12
        >>> scaled_quest_target(15, 25, 0.15)
        20
    """
    multiplier = 1 + (max(0, level) // band) * scaling_factor
    # Guard against float noise such as 12.000000000000002
    return max(1, math.ceil(round(base * multiplier, 9)))


def reward_multiplier(level: int, band: int = 5, bonus: float = 0.1) -> float:
    """
    Example:
        >>> reward_multiplier(4)
        1.0
        >>> reward_multiplier(12)
        1.2
    """
    return round(1 + (max(0, level) // band) * bonus, 6)


def scaled_reward(base: int, level: int, cap: int, band: int = 5, bonus: float = 0.1) -> int:
    """
    Reward scaled by level and clamped to ``cap``.

    Example:
        >>> scaled_reward(50, 12, cap=100)
        60
        >>> scaled_reward(300, 1, cap=100)
        100
    """
    value = math.ceil(round(base * reward_multiplier(level, band, bonus), 9))
    return max(0, min(cap, value))


def milestone_after(level: int, interval: int = 5) -> int:
    """
    Next milestone level strictly above ``level``.

    Example:
        >>> milestone_after(1)
        5
        >>> milestone_after(5)
        10
    """
    return ((max(0, level) // interval) + 1) * interval
