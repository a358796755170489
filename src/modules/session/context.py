"""
Progression Session
===================

Purpose
-------
Explicit per-user context owning every stateful piece of the engine: the
reconciler and its caches, the progression service, the quest engine, the
activity tracker, the autosave scheduler and an event bus. Built fresh by
``sign_in`` and torn down by ``sign_out``; nothing survives between
sessions in process memory.

Responsibilities
----------------
- Hydrate progression (repair pass included) and seed quest pools
- Feed module completions, rewards and activity into the quest engine
- Grant quest rewards exactly once and publish ``quest.completed``
- Keep the autosave reference in step with writes made by services
- On sign-out: final flush, purge every tier for the user, close

Usage
-----
    session = await ProgressionSession.sign_in("u1", remote, local)
    await session.complete_module()
    quests = await session.list_active_quests()
    await session.sign_out()
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from src.core.cache import MemoryCache
from src.core.cache.local_store import LocalDurableCache
from src.core.config import config_int, config_str
from src.core.event.bus import EventBus
from src.core.logging.logger import LogContext, get_logger
from src.core.resilience import RemoteResilience
from src.domain.models.progression import GrantResult, ModuleCompletionResult, SlotAccess
from src.domain.models.quest import Quest, QuestBook, QuestPool, QuestType
from src.modules.autosave.scheduler import AutosaveScheduler, LifecycleState
from src.modules.content.cache import ContentCache, ContentProvider
from src.modules.persistence.diagnostics import IntegrityDiagnostics
from src.modules.persistence.reconciler import ProgressReconciler, WriteResult
from src.modules.persistence.remote_store import RemoteProgressStore
from src.modules.progression.service import ProgressionService
from src.modules.quests.engine import ProgressSnapshot, QuestEngine, QuestProgressResult
from src.modules.quests.generator import QuestGenerator
from src.modules.quests.trackers import ActivityTracker, InMemoryActivityTracker
from src.modules.shared import constants
from src.modules.shared.constants import RewardSource
from src.modules.shared.exceptions import SessionClosedError

logger = get_logger(__name__)

# Granting quest currency can complete currency quests in turn.
_MAX_REWARD_ROUNDS = 5


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ProgressionSession:
    def __init__(
        self,
        user_id: str,
        reconciler: ProgressReconciler,
        progression: ProgressionService,
        quests: QuestEngine,
        tracker: ActivityTracker,
        autosave: AutosaveScheduler,
        event_bus: EventBus,
        content: Optional[ContentCache] = None,
        session_id: Optional[str] = None,
    ) -> None:
        self.user_id = user_id
        self.session_id = session_id or uuid.uuid4().hex[:12]
        self.reconciler = reconciler
        self.progression = progression
        self.quests = quests
        self.tracker = tracker
        self.autosave = autosave
        self.events = event_bus
        self.content = content
        self._closed = False

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    @classmethod
    async def sign_in(
        cls,
        user_id: str,
        remote: RemoteProgressStore,
        local: LocalDurableCache,
        content_provider: Optional[ContentProvider] = None,
        tracker: Optional[ActivityTracker] = None,
        event_bus: Optional[EventBus] = None,
        resilience: Optional[RemoteResilience] = None,
        diagnostics: Optional[IntegrityDiagnostics] = None,
        clock: Callable[[], datetime] = _utc_now,
        autosave_interval: Optional[float] = None,
        autosave_grace_period: Optional[float] = None,
    ) -> "ProgressionSession":
        """Build a brand-new context; no in-memory state is reused."""
        session_id = uuid.uuid4().hex[:12]
        with LogContext(user_id=user_id, session_id=session_id, operation="session.sign_in"):
            bus = event_bus or EventBus()
            memory = MemoryCache(
                default_ttl=config_int(
                    "persistence.memory_ttl_seconds", constants.DEFAULT_MEMORY_TTL_SECONDS
                )
            )
            reconciler = ProgressReconciler(
                user_id,
                remote,
                local,
                memory=memory,
                diagnostics=diagnostics,
                resilience=resilience,
            )
            progression = ProgressionService(reconciler, bus)
            record = await progression.load()

            tracker = tracker or InMemoryActivityTracker()
            engine = QuestEngine(
                QuestBook.from_dict(record.quests), QuestGenerator(clock=clock), tracker, clock=clock
            )
            content = ContentCache(content_provider, local) if content_provider is not None else None

            session_ref: Dict[str, ProgressionSession] = {}

            async def persist(changes: Dict[str, Any]) -> bool:
                result = await reconciler.write(changes)
                return result.success and not result.degraded

            autosave = AutosaveScheduler(
                snapshot=lambda: session_ref["session"]._state(),
                persist=persist,
                interval=autosave_interval,
                grace_period=autosave_grace_period,
            )
            session = cls(
                user_id,
                reconciler,
                progression,
                engine,
                tracker,
                autosave,
                bus,
                content=content,
                session_id=session_id,
            )
            session_ref["session"] = session

            if await engine.ensure_pools(session.snapshot()):
                await session._settle(QuestProgressResult())
            await autosave.start(reference=session._state())

            logger.info(
                "Session signed in",
                extra={
                    "user_id": user_id,
                    "session_id": session_id,
                    "level": record.level,
                    "chapter": record.current_chapter,
                },
            )
            return session

    async def sign_out(self) -> None:
        """Final flush, purge every tier for this user, close the context."""
        if self._closed:
            return
        with LogContext(user_id=self.user_id, session_id=self.session_id, operation="session.sign_out"):
            self._sync_quest_book()
            await self.autosave.stop(final_flush=True)
            removed = await self.reconciler.purge()
            if self.content is not None:
                self.content.invalidate()
            self.events.clear()
            self._closed = True
            logger.info(
                "Session signed out",
                extra={"user_id": self.user_id, "session_id": self.session_id, "keys_removed": removed},
            )

    @property
    def is_closed(self) -> bool:
        return self._closed

    def _require_open(self, action: str) -> None:
        if self._closed:
            raise SessionClosedError(action, self.user_id)

    # ========================================================================
    # STATE
    # ========================================================================

    def _sync_quest_book(self) -> None:
        self.progression.record.quests = self.quests.book.to_dict()

    def _state(self) -> Dict[str, Any]:
        self._sync_quest_book()
        return self.progression.record.to_dict()

    def snapshot(self) -> ProgressSnapshot:
        record = self.progression.record
        return ProgressSnapshot.capture(record.level, record.currency, self.tracker)

    def _after_write(self, result: WriteResult) -> None:
        if result.success and not result.degraded:
            self.autosave.record_persisted(self._state())
        else:
            self.autosave.dirty = True

    async def _settle(self, result: QuestProgressResult) -> WriteResult:
        """Grant collected quest rewards, publish completions and persist."""
        completed: List[Quest] = list(result.completed)
        for _ in range(_MAX_REWARD_ROUNDS):
            rewards = self.quests.collect_rewards()
            if rewards.experience == 0 and rewards.currency == 0:
                break
            self.progression.record.grant(experience=rewards.experience, currency=rewards.currency)
            follow_up = self.quests.synchronize(self.snapshot())
            completed.extend(follow_up.completed)

        for quest in completed:
            await self.progression.emit_event(
                "quest.completed",
                {
                    "user_id": self.user_id,
                    "quest_id": quest.quest_id,
                    "quest_type": quest.quest_type.value,
                    "pool": quest.pool.value,
                    "rewards": {
                        "experience": quest.rewards.experience,
                        "currency": quest.rewards.currency,
                    },
                },
            )

        self._sync_quest_book()
        write = await self.progression.save()
        self._after_write(write)
        return write

    # ========================================================================
    # PROGRESSION
    # ========================================================================

    def open_slot(self, index: int) -> SlotAccess:
        self._require_open("open_slot")
        return self.progression.open_slot(index)

    async def enter_slot(
        self,
        index: int,
        content_type: Optional[str] = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> Tuple[SlotAccess, Optional[Any]]:
        """Open a slot and fetch its content; replay never mutates progress."""
        access = self.open_slot(index)
        if not access.allowed or self.content is None:
            return access, None
        content = await self.content.get_for_entry(
            self.progression.record.content_chapter,
            index,
            content_type or config_str("content.default_content_type", "lesson"),
            context,
        )
        return access, content

    async def complete_module(self, now: Optional[datetime] = None) -> ModuleCompletionResult:
        self._require_open("complete_module")
        result = await self.progression.complete_current_module(now)
        if not result.success:
            return result
        progress = self.quests.handle_event(QuestType.MODULES_COMPLETED, 1, self.snapshot())
        await self._settle(progress)
        return result

    async def grant_rewards(self, source: RewardSource, currency: int = 0) -> GrantResult:
        """Grant the reward-table experience for ``source`` plus optional currency."""
        self._require_open("grant_rewards")
        grant = await self.progression.grant_reward(source, currency=currency)
        progress = self.quests.synchronize(self.snapshot())
        await self._settle(progress)
        return grant

    async def reset_progress(self) -> WriteResult:
        self._require_open("reset_progress")
        result = await self.progression.reset()
        self.quests.book = QuestBook()
        await self.quests.ensure_pools(self.snapshot())
        await self._settle(QuestProgressResult())
        return result

    # ========================================================================
    # ACTIVITY
    # ========================================================================

    async def record_activity(self, minutes: int) -> QuestProgressResult:
        self._require_open("record_activity")
        if isinstance(self.tracker, InMemoryActivityTracker):
            self.tracker.record_minutes(minutes)
        result = self.quests.handle_event(QuestType.TIME_SPENT, minutes, self.snapshot())
        if result.any_completed:
            await self._settle(result)
        else:
            self.autosave.mark_dirty()
        return result

    async def record_perfect_series(self, count: int = 1) -> QuestProgressResult:
        self._require_open("record_perfect_series")
        if isinstance(self.tracker, InMemoryActivityTracker):
            self.tracker.record_perfect_series(count)
        result = self.quests.handle_event(QuestType.PERFECT_SERIES, count, self.snapshot())
        await self._settle(result)
        return result

    # ========================================================================
    # QUESTS
    # ========================================================================

    async def list_active_quests(self) -> List[Quest]:
        """Renew pools if due, resynchronize, then list."""
        self._require_open("list_active_quests")
        renewed = await self.quests.ensure_pools(self.snapshot())
        result = self.quests.synchronize(self.snapshot())
        if renewed or result.any_completed:
            await self._settle(result)
        return self.quests.book.active()

    async def list_quests(self, pool: QuestPool) -> List[Quest]:
        self._require_open("list_quests")
        renewed = await self.quests.ensure_pools(self.snapshot())
        result = self.quests.synchronize(self.snapshot())
        if renewed or result.any_completed:
            await self._settle(result)
        return self.quests.list_by_pool(pool)

    def completed_this_session(self) -> List[Quest]:
        return list(self.quests.book.completed_in_session)

    def claim_quests(self, quest_ids: Optional[List[str]] = None) -> List[Quest]:
        self._require_open("claim_quests")
        return self.quests.claim_completed(quest_ids)

    # ========================================================================
    # AUTOSAVE
    # ========================================================================

    async def on_lifecycle_change(self, state: LifecycleState) -> bool:
        self._require_open("on_lifecycle_change")
        return await self.autosave.on_lifecycle_change(state)

    async def save(self) -> bool:
        self._require_open("save")
        return await self.autosave.force_save()
