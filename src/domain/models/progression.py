"""
Progression domain model: experience, levels and the module/chapter
unlock state machine.

Purpose
-------
``ProgressionRecord`` is the aggregate root for one user's progress. It owns
the three module slots of the current chapter and the rules that move a
learner from one slot to the next and from one chapter to the next.

State Machine
-------------
Each slot is LOCKED, UNLOCKED or COMPLETED. A fresh chapter is
``[UNLOCKED, LOCKED, LOCKED]``. Completing the UNLOCKED current slot marks it
COMPLETED and unlocks the next; completing the last slot closes the chapter:

- the finished chapter is appended to ``chapter_history``
- ``current_chapter`` increments (it never decreases)
- ``chapter_ceiling`` rises by one, capped at the content limit
- slots reset to ``[UNLOCKED, LOCKED, LOCKED]`` keeping completion counts

Replaying a COMPLETED slot is always allowed and never mutates anything.

Domain Events
-------------
- ``progression.module_completed``
- ``progression.chapter_completed``
- ``progression.level_up``
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from src.domain.models.base import AggregateRoot, validate_non_negative
from src.modules.shared.constants import MAX_CONTENT_CHAPTER, MAX_LEVEL, SLOTS_PER_CHAPTER
from src.modules.shared.formulas import level_for_experience

# ============================================================================
# MODULE SLOTS
# ============================================================================


class SlotState(str, Enum):
    LOCKED = "locked"
    UNLOCKED = "unlocked"
    COMPLETED = "completed"


@dataclass
class ModuleSlot:
    """One of the three module positions of a chapter."""

    index: int
    state: SlotState = SlotState.LOCKED
    completed_at: Optional[datetime] = None
    completion_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "state": self.state.value,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "completion_count": self.completion_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], index: int) -> "ModuleSlot":
        try:
            state = SlotState(data.get("state", SlotState.LOCKED.value))
        except ValueError:
            state = SlotState.LOCKED
        completed_at = data.get("completed_at")
        if isinstance(completed_at, str):
            try:
                completed_at = datetime.fromisoformat(completed_at)
            except ValueError:
                completed_at = None
        elif not isinstance(completed_at, datetime):
            completed_at = None
        count = data.get("completion_count", 0)
        return cls(
            index=index,
            state=state,
            completed_at=completed_at,
            completion_count=count if isinstance(count, int) and count >= 0 else 0,
        )


def fresh_slots(previous: Optional[List[ModuleSlot]] = None) -> List[ModuleSlot]:
    """``[UNLOCKED, LOCKED, LOCKED]``, carrying completion counts over."""
    counts = {slot.index: slot.completion_count for slot in previous or []}
    return [
        ModuleSlot(
            index=i,
            state=SlotState.UNLOCKED if i == 0 else SlotState.LOCKED,
            completion_count=counts.get(i, 0),
        )
        for i in range(SLOTS_PER_CHAPTER)
    ]


# ============================================================================
# RESULTS
# ============================================================================


@dataclass(frozen=True)
class ModuleCompletionResult:
    """Outcome of ``complete_current``; failures are values, not exceptions."""

    success: bool
    slot_index: int
    reason: Optional[str] = None
    chapter_completed: bool = False
    finished_chapter: Optional[int] = None

    @classmethod
    def failed(cls, slot_index: int, reason: str) -> "ModuleCompletionResult":
        return cls(success=False, slot_index=slot_index, reason=reason)


@dataclass(frozen=True)
class SlotAccess:
    allowed: bool
    slot_index: int
    replay: bool = False
    reason: Optional[str] = None


@dataclass(frozen=True)
class GrantResult:
    experience_gained: int
    currency_gained: int
    old_level: int
    new_level: int

    @property
    def leveled_up(self) -> bool:
        return self.new_level > self.old_level


# ============================================================================
# AGGREGATE
# ============================================================================


class ProgressionRecord(AggregateRoot):
    """
    One user's progression.

    Created with defaults on first read of a new user, mutated only through
    the methods below, never deleted (``reset`` is the explicit user action).
    """

    def __init__(
        self,
        user_id: str,
        experience: int = 0,
        currency: int = 0,
        current_chapter: int = 1,
        chapter_ceiling: int = 1,
        current_module_in_chapter: int = 0,
        completed_modules_in_chapter: Optional[Set[int]] = None,
        chapter_history: Optional[List[int]] = None,
        slots: Optional[List[ModuleSlot]] = None,
        quests: Optional[Dict[str, Any]] = None,
        max_level: int = MAX_LEVEL,
        max_content_chapter: int = MAX_CONTENT_CHAPTER,
    ) -> None:
        super().__init__(user_id)
        validate_non_negative(experience, "experience")
        validate_non_negative(currency, "currency")
        self.experience = experience
        self.currency = currency
        self.current_chapter = max(1, current_chapter)
        self.chapter_ceiling = min(max(1, chapter_ceiling), max_content_chapter)
        self.current_module_in_chapter = current_module_in_chapter
        self.completed_modules_in_chapter: Set[int] = set(completed_modules_in_chapter or ())
        self.chapter_history: List[int] = list(chapter_history or [])
        self.slots: List[ModuleSlot] = slots if slots is not None else fresh_slots()
        self.quests: Dict[str, Any] = dict(quests or {})
        self.max_level = max_level
        self.max_content_chapter = max_content_chapter

    @property
    def user_id(self) -> str:
        return self.id

    @property
    def level(self) -> int:
        return level_for_experience(self.experience, self.max_level)

    @property
    def content_chapter(self) -> int:
        """Content index; wraps after the last authored chapter."""
        return ((self.current_chapter - 1) % self.max_content_chapter) + 1

    @property
    def current_slot(self) -> Optional[ModuleSlot]:
        if 0 <= self.current_module_in_chapter < len(self.slots):
            return self.slots[self.current_module_in_chapter]
        return None

    # ------------------------------------------------------------------ #
    # Rewards
    # ------------------------------------------------------------------ #

    def grant(self, experience: int = 0, currency: int = 0) -> GrantResult:
        validate_non_negative(experience, "experience")
        validate_non_negative(currency, "currency")
        old_level = self.level
        self.experience += experience
        self.currency += currency
        new_level = self.level
        if new_level > old_level:
            self.add_domain_event(
                "progression.level_up",
                {"user_id": self.id, "old_level": old_level, "new_level": new_level},
            )
        return GrantResult(experience, currency, old_level, new_level)

    # ------------------------------------------------------------------ #
    # Module / chapter transitions
    # ------------------------------------------------------------------ #

    def complete_current(self, now: Optional[datetime] = None) -> ModuleCompletionResult:
        index = self.current_module_in_chapter
        slot = self.current_slot
        if slot is None:
            return ModuleCompletionResult.failed(index, "no_current_slot")
        if slot.state is SlotState.COMPLETED:
            return ModuleCompletionResult.failed(index, "already_completed")
        if slot.state is SlotState.LOCKED:
            return ModuleCompletionResult.failed(index, "slot_locked")

        slot.state = SlotState.COMPLETED
        slot.completed_at = now or datetime.now(timezone.utc)
        slot.completion_count += 1
        self.completed_modules_in_chapter.add(index)
        chapter = self.current_chapter
        self.add_domain_event(
            "progression.module_completed",
            {"user_id": self.id, "chapter": chapter, "slot_index": index},
        )

        if index == len(self.slots) - 1:
            self.complete_cycle()
            return ModuleCompletionResult(
                success=True, slot_index=index, chapter_completed=True, finished_chapter=chapter
            )

        self.slots[index + 1].state = SlotState.UNLOCKED
        self.current_module_in_chapter = index + 1
        return ModuleCompletionResult(success=True, slot_index=index)

    def complete_cycle(self, emit: bool = True) -> int:
        """Close the current chapter and open the next; returns the new chapter."""
        finished = self.current_chapter
        self.chapter_history.append(finished)
        self.current_chapter = finished + 1
        self.chapter_ceiling = min(self.chapter_ceiling + 1, self.max_content_chapter)
        self.slots = fresh_slots(self.slots)
        self.completed_modules_in_chapter = set()
        self.current_module_in_chapter = 0
        if emit:
            self.add_domain_event(
                "progression.chapter_completed",
                {
                    "user_id": self.id,
                    "chapter": finished,
                    "next_chapter": self.current_chapter,
                    "content_chapter": self.content_chapter,
                },
            )
        return self.current_chapter

    def open_slot(self, index: int) -> SlotAccess:
        """Entering a slot; replaying a completed one never mutates progress."""
        if not 0 <= index < len(self.slots):
            return SlotAccess(allowed=False, slot_index=index, reason="out_of_range")
        state = self.slots[index].state
        if state is SlotState.LOCKED:
            return SlotAccess(allowed=False, slot_index=index, reason="slot_locked")
        return SlotAccess(allowed=True, slot_index=index, replay=state is SlotState.COMPLETED)

    # ------------------------------------------------------------------ #
    # Consistency
    # ------------------------------------------------------------------ #

    def validate_slots(self) -> bool:
        """Exactly one UNLOCKED slot and it is the current one."""
        if len(self.slots) != SLOTS_PER_CHAPTER:
            return False
        unlocked = [slot.index for slot in self.slots if slot.state is SlotState.UNLOCKED]
        return unlocked == [self.current_module_in_chapter]

    def repair(self) -> bool:
        """
        Rebuild slot states from ``current_module_in_chapter``.

        The index is first raised past every slot or index recorded as
        completed, so a lagging index never rolls completed modules back.
        Below current: COMPLETED; current: UNLOCKED; above: LOCKED. A chapter
        whose three modules are all completed is advanced. Returns True when
        anything changed.
        """
        before = self.to_dict()

        if len(self.slots) == SLOTS_PER_CHAPTER and all(
            slot.state is SlotState.COMPLETED for slot in self.slots
        ):
            self.completed_modules_in_chapter = set(range(SLOTS_PER_CHAPTER))
        if len(self.completed_modules_in_chapter & set(range(SLOTS_PER_CHAPTER))) == SLOTS_PER_CHAPTER:
            self.complete_cycle(emit=False)

        if len(self.slots) != SLOTS_PER_CHAPTER:
            self.slots = fresh_slots(self.slots)
        for position, slot in enumerate(self.slots):
            slot.index = position

        current = self.current_module_in_chapter
        if not isinstance(current, int) or not 0 <= current < SLOTS_PER_CHAPTER:
            current = 0
        done = [slot.index for slot in self.slots if slot.state is SlotState.COMPLETED]
        done.extend(i for i in self.completed_modules_in_chapter if 0 <= i < SLOTS_PER_CHAPTER)
        current = min(max([current] + [i + 1 for i in done]), SLOTS_PER_CHAPTER - 1)
        self.current_module_in_chapter = current

        if not self.validate_slots() or self.completed_modules_in_chapter != set(range(current)):
            for slot in self.slots:
                if slot.index < current:
                    slot.state = SlotState.COMPLETED
                elif slot.index == current:
                    slot.state = SlotState.UNLOCKED
                    slot.completed_at = None
                else:
                    slot.state = SlotState.LOCKED
                    slot.completed_at = None
            self.completed_modules_in_chapter = set(range(current))

        self.chapter_ceiling = min(max(1, self.chapter_ceiling), self.max_content_chapter)
        return self.to_dict() != before

    def reset(self) -> None:
        """Explicit user reset: defaults, completion counts preserved."""
        self.experience = 0
        self.currency = 0
        self.current_chapter = 1
        self.chapter_ceiling = 1
        self.current_module_in_chapter = 0
        self.completed_modules_in_chapter = set()
        self.chapter_history = []
        self.slots = fresh_slots(self.slots)
        self.quests = {}

    # ------------------------------------------------------------------ #
    # Serialization (local field names)
    # ------------------------------------------------------------------ #

    def to_dict(self) -> Dict[str, Any]:
        return {
            "experience": self.experience,
            "level": self.level,
            "currency": self.currency,
            "current_chapter": self.current_chapter,
            "chapter_ceiling": self.chapter_ceiling,
            "current_module_in_chapter": self.current_module_in_chapter,
            "completed_modules_in_chapter": sorted(self.completed_modules_in_chapter),
            "chapter_history": list(self.chapter_history),
            "slots": [slot.to_dict() for slot in self.slots],
            "quests": dict(self.quests),
        }

    @classmethod
    def from_dict(
        cls,
        user_id: str,
        data: Dict[str, Any],
        max_level: int = MAX_LEVEL,
        max_content_chapter: int = MAX_CONTENT_CHAPTER,
    ) -> "ProgressionRecord":
        """
        Build from a snapshot that the persistence layer already coerced.

        Slots are taken as stored; callers run ``repair()`` afterwards.
        """
        raw_slots = data.get("slots")
        slots = (
            [
                ModuleSlot.from_dict(item if isinstance(item, dict) else {}, position)
                for position, item in enumerate(raw_slots)
            ]
            if isinstance(raw_slots, list) and raw_slots
            else fresh_slots()
        )
        quests = data.get("quests")
        return cls(
            user_id=user_id,
            experience=int(data.get("experience", 0)),
            currency=int(data.get("currency", 0)),
            current_chapter=int(data.get("current_chapter", 1)),
            chapter_ceiling=int(data.get("chapter_ceiling", 1)),
            current_module_in_chapter=int(data.get("current_module_in_chapter", 0)),
            completed_modules_in_chapter={
                int(i) for i in data.get("completed_modules_in_chapter") or [] if isinstance(i, int)
            },
            chapter_history=[int(c) for c in data.get("chapter_history") or [] if isinstance(c, int)],
            slots=slots,
            quests=quests if isinstance(quests, dict) else {},
            max_level=max_level,
            max_content_chapter=max_content_chapter,
        )
