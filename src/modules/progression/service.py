"""
Progression Service
===================

Purpose
-------
Drive one user's ``ProgressionRecord`` through the module/chapter state
machine and reward grants, persisting every change through the
``ProgressReconciler`` and publishing domain events once the write landed.

Domain
------
- Module completion (typed failure results, never exceptions)
- Chapter advance with completion bonuses
- Experience/currency grants from the reward table
- Repair pass on every load, with a corrective write when it changed state
- Explicit user reset

Configuration Keys
------------------
- progression.experience_rewards.<source>  : int per ``RewardSource``
- progression.level.max_level              : int (default 1000)
- progression.chapters.max_content_chapter : int (default 10)
"""

from __future__ import annotations

from datetime import datetime
from logging import Logger
from typing import Any, Dict, Optional

from src.core.config import config_int
from src.core.event.bus import EventBus
from src.core.logging.logger import get_logger
from src.domain.models.progression import (
    GrantResult,
    ModuleCompletionResult,
    ProgressionRecord,
    SlotAccess,
)
from src.modules.persistence.reconciler import ProgressReconciler, WriteResult
from src.modules.shared import constants
from src.modules.shared.base_service import BaseService
from src.modules.shared.constants import RewardSource
from src.modules.shared.exceptions import InvalidOperationError


class ProgressionService(BaseService):
    """
    Per-session progression operations.

    Public Methods
    --------------
    - load() -> Read, repair and hold the record
    - complete_current_module() -> Advance the state machine and grant rewards
    - open_slot() -> Replay-safe slot entry check
    - grant() / grant_reward() -> Experience and currency
    - save() -> Persist the held record
    - reset() -> Explicit user reset
    """

    def __init__(
        self,
        reconciler: ProgressReconciler,
        event_bus: EventBus,
        logger: Optional[Logger] = None,
    ) -> None:
        super().__init__(event_bus, logger or get_logger(__name__))
        self.reconciler = reconciler
        self._record: Optional[ProgressionRecord] = None
        self._max_level = config_int("progression.level.max_level", constants.MAX_LEVEL)
        self._max_content_chapter = config_int(
            "progression.chapters.max_content_chapter", constants.MAX_CONTENT_CHAPTER
        )

    @property
    def record(self) -> ProgressionRecord:
        if self._record is None:
            raise InvalidOperationError("access progression", "progression has not been loaded")
        return self._record

    @property
    def is_loaded(self) -> bool:
        return self._record is not None

    # ========================================================================
    # LOAD / SAVE
    # ========================================================================

    def _build(self, snapshot: Dict[str, Any]) -> ProgressionRecord:
        return ProgressionRecord.from_dict(
            self.reconciler.user_id,
            snapshot,
            max_level=self._max_level,
            max_content_chapter=self._max_content_chapter,
        )

    async def load(self, force_refresh: bool = False) -> ProgressionRecord:
        """
        Read the best-known snapshot and run the repair pass.

        A repaired record, or one with corrupted fields fixed by the
        reconciler, is written back immediately.
        """
        snapshot = await self.reconciler.read(force_refresh=force_refresh)
        record = self._build(snapshot)
        repaired = record.repair()
        self._record = record

        self.log_operation(
            "load",
            user_id=record.user_id,
            level=record.level,
            chapter=record.current_chapter,
            repaired=repaired,
        )
        if repaired or self.reconciler.pending_corrections:
            self.log.warning(
                "Progression state repaired on load",
                extra={
                    "user_id": record.user_id,
                    "slot_repair": repaired,
                    "corrected_fields": sorted(self.reconciler.pending_corrections),
                },
            )
            await self.save()
        return record

    async def save(self, explicit_reset: bool = False) -> WriteResult:
        record = self.record
        result = await self.reconciler.write(record.to_dict(), explicit_reset=explicit_reset)

        # The regression guard or an offline rebase may have changed a counter; adopt it.
        for name in result.adopt_fields:
            setattr(record, name, result.record[name])

        await self.publish_domain_events(record.clear_domain_events())
        return result

    # ========================================================================
    # STATE MACHINE
    # ========================================================================

    def open_slot(self, index: int) -> SlotAccess:
        return self.record.open_slot(index)

    def reward_amount(self, source: RewardSource) -> int:
        value = self.get_config(
            f"progression.experience_rewards.{source.value}", constants.EXPERIENCE_REWARDS[source]
        )
        return value if isinstance(value, int) and value >= 0 else constants.EXPERIENCE_REWARDS[source]

    async def complete_current_module(self, now: Optional[datetime] = None) -> ModuleCompletionResult:
        """
        Complete the current slot.

        Invalid transitions come back as a failed result and change nothing.
        """
        record = self.record
        result = record.complete_current(now)
        if not result.success:
            self.log.info(
                "Module completion refused",
                extra={
                    "user_id": record.user_id,
                    "slot_index": result.slot_index,
                    "reason": result.reason,
                },
            )
            return result

        experience = self.reward_amount(RewardSource.MODULE_COMPLETED)
        if result.chapter_completed:
            experience += self.reward_amount(RewardSource.CHAPTER_COMPLETED)
        record.grant(experience=experience)

        self.log_operation(
            "complete_module",
            user_id=record.user_id,
            slot_index=result.slot_index,
            chapter_completed=result.chapter_completed,
            experience_granted=experience,
        )
        await self.save()
        return result

    # ========================================================================
    # REWARDS
    # ========================================================================

    async def grant(self, experience: int = 0, currency: int = 0, reason: str = "reward") -> GrantResult:
        """
        Raises:
            ValidationError: If an amount is negative or not an int
        """
        self.validate_non_negative_int(experience, "experience")
        self.validate_non_negative_int(currency, "currency")
        result = self.record.grant(experience=experience, currency=currency)
        self.log_operation(
            "grant",
            user_id=self.record.user_id,
            reason=reason,
            experience=experience,
            currency=currency,
            new_level=result.new_level,
        )
        await self.save()
        return result

    async def grant_reward(self, source: RewardSource, currency: int = 0) -> GrantResult:
        return await self.grant(self.reward_amount(source), currency, reason=source.value)

    async def reset(self) -> WriteResult:
        """Explicit user reset; zeroes pass the regression guard."""
        self.record.reset()
        self.log_operation("reset", user_id=self.record.user_id)
        return await self.save(explicit_reset=True)
