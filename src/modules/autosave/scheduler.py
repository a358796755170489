"""
Autosave Scheduler

Purpose
-------
Decide when the session's state is flushed to the reconciler. Tracks a
``dirty`` flag and a reference snapshot of the last successfully persisted
state, and writes only the fields that differ from it.

Triggers
--------
- Fixed period (``autosave.interval_seconds``, default 30)
- Lifecycle transition to background or inactive
- Explicit ``mark_dirty()``
- ``force_save()`` (sign-out, explicit save), which ignores the grace period

Flush Rules
-----------
- A grace period after ``start()`` suppresses flushes so the initial
  hydration read is never raced by a write of defaults.
- Flushes are single-flight. Triggers arriving during a flush collapse
  into one follow-up flush that carries the newer state; the running flush
  is never cancelled.
- A flush that does not reach the remote leaves the scheduler dirty so the
  next trigger retries it.
"""

from __future__ import annotations

import asyncio
import copy
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from src.core.concurrency import SingleFlight
from src.core.config import config_float
from src.core.logging.logger import get_logger
from src.modules.shared import constants

logger = get_logger(__name__)

_FLUSH_KEY = "flush"


class LifecycleState(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    BACKGROUND = "background"


class AutosaveScheduler:
    """
    Example
    -------
    >>> scheduler = AutosaveScheduler(lambda: record.to_dict(), persist_changes)
    >>> await scheduler.start()
    >>> scheduler.mark_dirty()
    >>> await scheduler.stop()  # final flush
    """

    def __init__(
        self,
        snapshot: Callable[[], Dict[str, Any]],
        persist: Callable[[Dict[str, Any]], Awaitable[bool]],
        interval: Optional[float] = None,
        grace_period: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._snapshot = snapshot
        self._persist = persist
        self.interval = (
            interval
            if interval is not None
            else config_float("autosave.interval_seconds", constants.AUTOSAVE_INTERVAL_SECONDS)
        )
        self.grace_period = (
            grace_period
            if grace_period is not None
            else config_float("autosave.grace_period_seconds", constants.AUTOSAVE_GRACE_PERIOD_SECONDS)
        )
        self._clock = clock
        self._sleep = sleep
        self._flights: SingleFlight[bool] = SingleFlight("autosave")
        self._follow_up = False
        self._periodic: Optional["asyncio.Task[None]"] = None
        self._triggered: Set["asyncio.Task[bool]"] = set()
        self._started_at: Optional[float] = None

        self.dirty = False
        self.reference: Dict[str, Any] = {}
        self.flush_count = 0
        self.failed_flush_count = 0

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    @property
    def is_running(self) -> bool:
        return self._periodic is not None and not self._periodic.done()

    async def start(self, reference: Optional[Dict[str, Any]] = None) -> None:
        self.reference = copy.deepcopy(reference if reference is not None else self._snapshot())
        self.dirty = False
        self._started_at = self._clock()
        if self.interval > 0 and not self.is_running:
            self._periodic = asyncio.ensure_future(self._run_periodic())
        logger.info(
            "Autosave started",
            extra={"interval_seconds": self.interval, "grace_period_seconds": self.grace_period},
        )

    async def stop(self, final_flush: bool = True) -> bool:
        """Stop the timer; by default flush once more, ignoring the grace period."""
        if self._periodic is not None:
            self._periodic.cancel()
            try:
                await self._periodic
            except asyncio.CancelledError:
                pass
            self._periodic = None
        if self._triggered:
            await asyncio.gather(*list(self._triggered), return_exceptions=True)
        flushed = await self.force_save() if final_flush else False
        logger.info("Autosave stopped", extra={"final_flush": flushed, "flush_count": self.flush_count})
        return flushed

    def in_grace_period(self) -> bool:
        return self._started_at is not None and self._clock() - self._started_at < self.grace_period

    async def _run_periodic(self) -> None:
        while True:
            await self._sleep(self.interval)
            try:
                await self.flush("interval")
            except Exception:
                logger.exception("Periodic autosave failed")

    # ------------------------------------------------------------------ #
    # Triggers
    # ------------------------------------------------------------------ #

    def mark_dirty(self) -> "asyncio.Task[bool]":
        """Flag unsaved state and schedule a flush."""
        self.dirty = True
        task = asyncio.ensure_future(self.flush("mark_dirty"))
        self._triggered.add(task)
        task.add_done_callback(self._triggered.discard)
        return task

    async def on_lifecycle_change(self, state: LifecycleState) -> bool:
        state = LifecycleState(state)
        if state is LifecycleState.ACTIVE:
            return False
        logger.debug("Lifecycle flush", extra={"lifecycle_state": state.value})
        return await self.flush(f"lifecycle:{state.value}")

    async def force_save(self) -> bool:
        return await self.flush("force", force=True)

    def record_persisted(self, snapshot: Dict[str, Any]) -> None:
        """Adopt a state persisted outside the scheduler as the new reference."""
        self.reference = copy.deepcopy(snapshot)
        self.dirty = False

    # ------------------------------------------------------------------ #
    # Flushing
    # ------------------------------------------------------------------ #

    def changed_fields(self) -> Dict[str, Any]:
        current = self._snapshot()
        return {
            name: copy.deepcopy(value)
            for name, value in current.items()
            if self.reference.get(name) != value
        }

    async def flush(self, trigger: str = "manual", force: bool = False) -> bool:
        """
        Returns True when a flush wrote something (in this call or in the
        follow-up it joined).
        """
        if not force and self.in_grace_period():
            logger.debug("Flush suppressed during grace period", extra={"trigger": trigger})
            return False
        if self._flights.is_running(_FLUSH_KEY):
            self._follow_up = True
        return await self._flights.do(_FLUSH_KEY, self._run_flushes)

    async def _run_flushes(self) -> bool:
        flushed = False
        while True:
            self._follow_up = False
            flushed = await self._flush_once() or flushed
            if not self._follow_up:
                return flushed

    async def _flush_once(self) -> bool:
        changes = self.changed_fields()
        if not changes:
            self.dirty = False
            return False

        self.dirty = False
        ok = await self._persist(changes)
        if ok:
            self.reference.update(changes)
            self.flush_count += 1
            logger.debug("Autosave flushed", extra={"fields": sorted(changes)})
            return True

        self.dirty = True
        self.failed_flush_count += 1
        logger.warning("Autosave flush not persisted remotely", extra={"fields": sorted(changes)})
        return False
