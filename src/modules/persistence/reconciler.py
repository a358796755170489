"""
Progress Reconciler

Purpose
-------
Keep one user's progression convergent across three tiers:

1. ``MemoryCache``        process-local TTL entries
2. ``LocalDurableCache``  Redis, survives restarts
3. ``RemoteProgressStore`` authoritative, reachable only some of the time

Reads
-----
Tier 1 if fresh, else tier 2 if fresh, else tier 3 merged with fields only
tier 2 holds and with the fallback overlay. Every read repairs corrupted
numeric fields and populates tiers 1-2.

Writes
------
Serialized by ``write_lock``. Each write re-reads the freshest snapshot,
merges the delta, applies the regression guard, sends only changed fields
(plus any fallback fields still pending) to tier 3, and caches the merged
record, never the raw remote response.

Failure Handling
----------------
- Unknown column: retried without it; the value moves to the fallback
- Numeric overflow: value moves to the fallback, a data-integrity warning
  is recorded, the write reports success
- Not found: the row is created with explicit defaults; a concurrent create
  (unique violation) triggers a refetch and the update is re-sent
- Remote unreachable: changed fields move to the fallback and the write
  completes cache-only (``degraded=True``); changed counters also record
  their base
- Remote reachable again: offline counter changes are re-applied on top of
  the remote value (``remote + value - base``), and a caller's absolute
  counter computed from the pre-reconnect snapshot is shifted the same way
  (``rebased_fields``)

Configuration Keys
------------------
- persistence.memory_ttl_seconds         : int (default 300)
- persistence.local_ttl_seconds          : int (default 300)
- persistence.regression_guarded_fields  : list[str]
- progression.level.max_level            : int (default 1000)
"""

from __future__ import annotations

import asyncio
import copy
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Set, Tuple

from src.core.cache import MemoryCache, progress_key, user_prefix
from src.core.cache.local_store import LocalDurableCache
from src.core.config import config_int, config_list
from src.core.exceptions import CacheError
from src.core.logging.logger import LogContext, get_logger
from src.core.resilience import CircuitBreakerOpenError, RemoteResilience
from src.modules.persistence.diagnostics import IntegrityDiagnostics
from src.modules.persistence.fallback_store import FallbackStore
from src.modules.persistence.field_mapping import FIELD_MAPPING, FieldMappingTable
from src.modules.persistence.remote_store import (
    RemoteErrorCode,
    RemoteProgressStore,
    RemoteStoreError,
    RemoteUnavailableError,
)
from src.modules.shared import constants
from src.modules.shared.formulas import level_for_experience, sanitize_experience

logger = get_logger(__name__)

_UNAVAILABLE = (RemoteUnavailableError, CircuitBreakerOpenError)


def _is_count(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass(frozen=True)
class WriteResult:
    """
    Outcome of ``ProgressReconciler.write``.

    ``success`` is True whenever the merged value is safe locally; it is
    False only when the remote permanently rejected the write for a reason
    the reconciler cannot handle.
    """

    record: Dict[str, Any]
    changed_fields: Tuple[str, ...] = ()
    remote_written: bool = False
    degraded: bool = False
    fallback_fields: Tuple[str, ...] = ()
    guarded_fields: Tuple[str, ...] = ()
    rebased_fields: Tuple[str, ...] = ()
    success: bool = True

    @property
    def adopt_fields(self) -> Tuple[str, ...]:
        """Fields whose persisted value differs from what the caller sent."""
        return tuple(dict.fromkeys(self.guarded_fields + self.rebased_fields))


@dataclass
class _RemoteOutcome:
    row: Optional[Dict[str, Any]] = None
    written: Set[str] = field(default_factory=set)
    excluded: Dict[str, Any] = field(default_factory=dict)
    unavailable: bool = False
    rejected: bool = False


class ProgressReconciler:
    """
    Read-with-cache and write-with-merge for a single user.

    Example
    -------
    >>> reconciler = ProgressReconciler("u1", remote, local)
    >>> snapshot = await reconciler.read()
    >>> result = await reconciler.write({"experience": snapshot["experience"] + 25})
    >>> result.remote_written
    True
    """

    def __init__(
        self,
        user_id: str,
        remote: RemoteProgressStore,
        local: LocalDurableCache,
        memory: Optional[MemoryCache] = None,
        fallback: Optional[FallbackStore] = None,
        diagnostics: Optional[IntegrityDiagnostics] = None,
        resilience: Optional[RemoteResilience] = None,
        mapping: FieldMappingTable = FIELD_MAPPING,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.user_id = user_id
        self.remote = remote
        self.local = local
        self.memory = memory or MemoryCache(
            default_ttl=config_int("persistence.memory_ttl_seconds", constants.DEFAULT_MEMORY_TTL_SECONDS)
        )
        self.fallback = fallback or FallbackStore(local, self.memory)
        self.diagnostics = diagnostics or IntegrityDiagnostics()
        self.resilience = resilience or RemoteResilience()
        self.mapping = mapping
        self._clock = clock
        self._local_ttl = config_int("persistence.local_ttl_seconds", constants.DEFAULT_LOCAL_TTL_SECONDS)
        self._max_level = config_int("progression.level.max_level", constants.MAX_LEVEL)
        guarded_names = config_list("persistence.regression_guarded_fields", [])
        self._guarded = (
            self.mapping.guarded(guarded_names) if guarded_names else self.mapping.guarded()
        )
        self._pending_corrections: Set[str] = set()
        self.write_lock = asyncio.Lock()

    @property
    def key(self) -> str:
        return progress_key(self.user_id)

    @property
    def pending_corrections(self) -> Set[str]:
        """Fields repaired on read that still need a corrective write."""
        return set(self._pending_corrections)

    # ------------------------------------------------------------------ #
    # Tier access
    # ------------------------------------------------------------------ #

    async def _local_get(self) -> Optional[Any]:
        try:
            return await self.local.get(self.key)
        except CacheError as exc:
            logger.warning("Local cache read failed", extra={"user_id": self.user_id, "error": str(exc)})
            return None

    async def _populate(self, snapshot: Dict[str, Any]) -> None:
        self.memory.set(self.key, copy.deepcopy(snapshot))
        try:
            await self.local.set(self.key, snapshot, ttl=self._local_ttl)
        except CacheError as exc:
            logger.warning("Local cache write failed", extra={"user_id": self.user_id, "error": str(exc)})

    def _last_known_good(self) -> Dict[str, Any]:
        cached = self.memory.get_any(self.key)
        return cached if isinstance(cached, dict) else {}

    async def _fetch_remote(self, operation: str = "remote.fetch") -> Tuple[Optional[Dict[str, Any]], bool]:
        """Returns ``(row, reachable)``."""
        try:
            row = await self.resilience.execute(lambda: self.remote.fetch(self.user_id), operation)
        except _UNAVAILABLE as exc:
            logger.warning(
                "Remote unreachable, serving cached progress",
                extra={"user_id": self.user_id, "operation": operation, "error": str(exc)},
            )
            return None, False
        except RemoteStoreError as exc:
            logger.error(
                "Remote fetch rejected",
                extra={"user_id": self.user_id, "code": exc.code.value, "error": str(exc)},
            )
            return None, False
        return row, True

    async def _create_remote(self) -> Tuple[Optional[Dict[str, Any]], bool]:
        """Create the row with explicit defaults; a racing create is re-fetched."""
        fields = self.mapping.to_remote(self.mapping.defaults())
        core_fields = {
            name: value
            for name, value in fields.items()
            if not (spec := self.mapping.by_remote(name)) or not spec.optional
        }
        for attempt_fields in (fields, core_fields):
            try:
                row = await self.resilience.execute(
                    lambda f=attempt_fields: self.remote.create(self.user_id, f), "remote.create"
                )
                logger.info("Progress record created", extra={"user_id": self.user_id})
                return row, True
            except _UNAVAILABLE:
                return None, False
            except RemoteStoreError as exc:
                if exc.code is RemoteErrorCode.UNIQUE_VIOLATION:
                    logger.info(
                        "Concurrent create detected, re-fetching",
                        extra={"user_id": self.user_id},
                    )
                    return await self._fetch_remote("remote.refetch")
                if exc.code is RemoteErrorCode.UNKNOWN_FIELD and attempt_fields is fields:
                    continue
                logger.error(
                    "Remote create rejected",
                    extra={"user_id": self.user_id, "code": exc.code.value, "error": str(exc)},
                )
                return None, False
        return None, False

    # ------------------------------------------------------------------ #
    # Normalization
    # ------------------------------------------------------------------ #

    def _normalize(self, snapshot: Mapping[str, Any], last_good: Mapping[str, Any]) -> Dict[str, Any]:
        """Coerce every mapped field; corrupted values fall back to last known good."""
        normalized: Dict[str, Any] = {}
        for spec in self.mapping:
            if spec.local_name not in snapshot:
                normalized[spec.local_name] = copy.deepcopy(last_good.get(spec.local_name, spec.default_value()))
                continue
            coerced = spec.coerce(snapshot[spec.local_name])
            if coerced.valid:
                normalized[spec.local_name] = coerced.value
                continue
            if spec.local_name == "experience":
                normalized[spec.local_name] = sanitize_experience(
                    snapshot[spec.local_name], last_good.get(spec.local_name, 0)
                )
            else:
                replacement = spec.coerce(last_good.get(spec.local_name))
                normalized[spec.local_name] = replacement.value if replacement.valid else spec.default_value()
            self._pending_corrections.add(spec.local_name)
            logger.warning(
                "Corrupted field repaired",
                extra={
                    "user_id": self.user_id,
                    "field": spec.local_name,
                    "corrupted_value": repr(snapshot[spec.local_name]),
                    "repaired_value": repr(normalized[spec.local_name]),
                },
            )
        normalized["level"] = level_for_experience(normalized["experience"], self._max_level)
        for name, value in snapshot.items():
            if name not in self.mapping:
                normalized[name] = copy.deepcopy(value)
        return normalized

    async def _rebased_overlay(self, remote_view: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Fallback overlay for a fresh remote row.

        Counters changed offline are re-applied as deltas on top of the remote
        value instead of replacing it, so a change made against a defaults or
        stale snapshot cannot drag higher remote progress down.
        """
        overlay = await self.fallback.load(self.user_id)
        bases = await self.fallback.load_bases(self.user_id)
        rebased: Dict[str, Any] = {}
        new_bases: Dict[str, int] = {}
        for name, base in bases.items():
            value = overlay.get(name)
            remote_value = remote_view.get(name)
            if not all(_is_count(v) for v in (value, base, remote_value)) or remote_value == base:
                continue
            rebased[name] = max(0, remote_value + (value - base))
            new_bases[name] = remote_value
            logger.warning(
                "Offline change rebased onto newer remote value",
                extra={
                    "user_id": self.user_id,
                    "field": name,
                    "offline_base": base,
                    "offline_value": value,
                    "remote_value": remote_value,
                    "rebased_value": rebased[name],
                },
            )
        if rebased:
            await self.fallback.rebase(self.user_id, rebased, new_bases)
            overlay.update(rebased)
        return overlay

    # ------------------------------------------------------------------ #
    # Read
    # ------------------------------------------------------------------ #

    async def read(self, force_refresh: bool = False) -> Dict[str, Any]:
        """Best-known snapshot in local field names. Never raises on I/O."""
        with LogContext(user_id=self.user_id, operation="progress.read"):
            last_good = self._last_known_good()
            local_entry = None
            if not force_refresh:
                cached = self.memory.get_fresh(self.key)
                if cached is not None:
                    return copy.deepcopy(cached)
                local_entry = await self._local_get()
                if local_entry is not None and local_entry.is_fresh(self._clock()):
                    snapshot = self._normalize(local_entry.value or {}, last_good)
                    self.memory.set(self.key, copy.deepcopy(snapshot))
                    return snapshot
            else:
                local_entry = await self._local_get()

            local_value = local_entry.value if local_entry is not None and isinstance(local_entry.value, dict) else {}
            row, reachable = await self._fetch_remote()
            if reachable and row is None:
                row, reachable = await self._create_remote()

            if reachable and row is not None:
                merged = self.mapping.from_remote(row)
                for name in self.mapping.local_names:
                    if name not in merged and name in local_value:
                        merged[name] = local_value[name]
                source = "remote"
                merged.update(await self._rebased_overlay(merged))
            else:
                merged = dict(local_value or last_good)
                source = "local" if local_value else ("memory" if last_good else "defaults")
                merged.update(await self.fallback.load(self.user_id))

            snapshot = self._normalize(merged, last_good or local_value)
            await self._populate(snapshot)
            logger.debug("Progress read", extra={"user_id": self.user_id, "source": source})
            return copy.deepcopy(snapshot)

    async def refresh(self) -> Dict[str, Any]:
        return await self.read(force_refresh=True)

    # ------------------------------------------------------------------ #
    # Write
    # ------------------------------------------------------------------ #

    async def _apply_regression_guard(
        self, fresh: Dict[str, Any], merged: Dict[str, Any], explicit_reset: bool
    ) -> List[str]:
        if explicit_reset:
            return []
        suspect = [
            spec
            for spec in self._guarded
            if isinstance(fresh.get(spec.local_name), int)
            and fresh[spec.local_name] > 0
            and merged.get(spec.local_name) == 0
        ]
        if not suspect:
            return []

        row, reachable = await self._fetch_remote("remote.regression_check")
        remote_view = self.mapping.from_remote(row) if reachable and row is not None else {}
        blocked: List[str] = []
        for spec in suspect:
            confirmed = reachable and remote_view.get(spec.local_name) == 0
            if confirmed:
                logger.info(
                    "Zero confirmed by remote",
                    extra={"user_id": self.user_id, "field": spec.local_name},
                )
                continue
            remote_value = remote_view.get(spec.local_name)
            keep = remote_value if isinstance(remote_value, int) and remote_value > 0 else fresh[spec.local_name]
            merged[spec.local_name] = keep
            blocked.append(spec.local_name)
            logger.warning(
                "Regression guard kept previous value",
                extra={
                    "user_id": self.user_id,
                    "field": spec.local_name,
                    "kept_value": keep,
                    "remote_reachable": reachable,
                },
            )
        return blocked

    def _overflowing(self, fields: Mapping[str, Any], hint: Optional[str]) -> List[str]:
        names = [
            name
            for name, value in fields.items()
            if (spec := self.mapping.by_remote(name)) is not None and spec.exceeds_column(value)
        ]
        if not names and hint and hint in fields:
            names = [hint]
        return names

    def _unknown_column(self, fields: Mapping[str, Any], hint: Optional[str]) -> Optional[str]:
        if hint and hint in fields:
            return hint
        # No column named in the rejection: drop the first field the schema may lag on.
        for spec in self.mapping.optional():
            if spec.remote_name in fields:
                return spec.remote_name
        return None

    async def _send(self, remote_fields: Dict[str, Any]) -> _RemoteOutcome:
        outcome = _RemoteOutcome()
        remaining = dict(remote_fields)
        created = False

        while remaining:
            try:
                outcome.row = await self.resilience.execute(
                    lambda f=dict(remaining): self.remote.upsert(self.user_id, f), "remote.upsert"
                )
                outcome.written = set(remaining)
                return outcome
            except _UNAVAILABLE as exc:
                logger.warning(
                    "Remote unreachable, write kept locally",
                    extra={"user_id": self.user_id, "fields": sorted(remaining), "error": str(exc)},
                )
                outcome.unavailable = True
                return outcome
            except RemoteStoreError as exc:
                if exc.code is RemoteErrorCode.UNKNOWN_FIELD:
                    column = self._unknown_column(remaining, exc.field)
                    if column is None:
                        break
                    outcome.excluded[column] = remaining.pop(column)
                    logger.warning(
                        "Remote schema lacks column, retrying without it",
                        extra={"user_id": self.user_id, "column": column},
                    )
                    continue
                if exc.code is RemoteErrorCode.NUMERIC_OUT_OF_RANGE:
                    columns = self._overflowing(remaining, exc.field)
                    if not columns:
                        break
                    for column in columns:
                        value = remaining.pop(column)
                        outcome.excluded[column] = value
                        spec = self.mapping.by_remote(column)
                        self.diagnostics.record(
                            self.user_id,
                            spec.local_name if spec else column,
                            column,
                            value,
                            spec.column_max if spec else None,
                        )
                    continue
                if exc.code is RemoteErrorCode.NOT_FOUND and not created:
                    created = True
                    _, reachable = await self._create_remote()
                    if not reachable:
                        outcome.unavailable = True
                        return outcome
                    continue
                break

        if remaining:
            logger.error(
                "Remote rejected write",
                extra={"user_id": self.user_id, "fields": sorted(remaining)},
            )
            outcome.rejected = True
            outcome.excluded.update(remaining)
        return outcome

    def _shift_stale_counters(
        self,
        before: Mapping[str, Any],
        fresh: Mapping[str, Any],
        delta: Mapping[str, Any],
        merged: Dict[str, Any],
    ) -> List[str]:
        """
        Re-express absolute counters the caller derived from ``before`` on top
        of ``fresh`` when reading rebased them in the meantime.
        """
        shifted: List[str] = []
        for spec in self._guarded:
            name = spec.local_name
            if name not in delta:
                continue
            sent, seen, now = delta[name], before.get(name), fresh.get(name)
            if not all(_is_count(v) for v in (sent, seen, now)) or seen == now:
                continue
            merged[name] = max(0, now + (sent - seen))
            shifted.append(name)
            logger.info(
                "Stale counter shifted onto rebased value",
                extra={"user_id": self.user_id, "field": name, "sent": sent, "written": merged[name]},
            )
        return shifted

    def _offline_bases(
        self,
        fresh: Mapping[str, Any],
        changed: List[str],
        pending: Set[str],
        existing: Mapping[str, int],
    ) -> Dict[str, int]:
        # Fields already pending without a base (overflow, schema drift) stay absolute.
        return {
            spec.local_name: fresh[spec.local_name]
            for spec in self._guarded
            if spec.local_name in changed
            and _is_count(fresh.get(spec.local_name))
            and (spec.local_name not in pending or spec.local_name in existing)
        }

    async def write(self, delta: Mapping[str, Any], explicit_reset: bool = False) -> WriteResult:
        """
        Merge ``delta`` (local field names, absolute values) into the freshest
        snapshot and persist it. Never raises on I/O.
        """
        async with self.write_lock:
            with LogContext(user_id=self.user_id, operation="progress.write"):
                before = copy.deepcopy(self._last_known_good())
                offline_bases = await self.fallback.load_bases(self.user_id)
                fresh = await self.read(force_refresh=bool(offline_bases))
                merged = copy.deepcopy(fresh)
                for name, value in delta.items():
                    if name in self.mapping:
                        merged[name] = copy.deepcopy(value)
                rebased: List[str] = []
                if offline_bases and not explicit_reset:
                    stale = {name: value for name, value in delta.items() if name in offline_bases}
                    rebased = self._shift_stale_counters(before, fresh, stale, merged)
                merged = self._normalize(merged, fresh)

                guarded = await self._apply_regression_guard(fresh, merged, explicit_reset)
                merged["level"] = level_for_experience(merged["experience"], self._max_level)
                changed = [
                    name for name in self.mapping.local_names if merged.get(name) != fresh.get(name)
                ]
                pending = set(await self.fallback.load(self.user_id))
                to_send = set(changed) | pending | self._pending_corrections
                remote_fields = self.mapping.to_remote(
                    {name: merged[name] for name in self.mapping.local_names if name in to_send}
                )

                outcome = await self._send(remote_fields) if remote_fields else _RemoteOutcome()
                if outcome.unavailable:
                    unsent = {
                        name: merged[name]
                        for name in self.mapping.local_names
                        if name in to_send
                    }
                    if explicit_reset:
                        # A reset is absolute; drop any base so it is not rebased later.
                        await self.fallback.discard(self.user_id, unsent)
                        bases = {}
                    else:
                        bases = self._offline_bases(fresh, changed, pending, offline_bases)
                    await self.fallback.save(self.user_id, unsent, bases)
                else:
                    excluded_local = {
                        self.mapping.local_name_for(column) or column: value
                        for column, value in outcome.excluded.items()
                    }
                    accepted = [
                        self.mapping.local_name_for(column) or column for column in outcome.written
                    ]
                    await self.fallback.discard(self.user_id, accepted)
                    await self.fallback.save(self.user_id, excluded_local)
                    self._pending_corrections.difference_update(accepted)

                await self._populate(merged)
                fallback_fields = tuple(sorted(await self.fallback.load(self.user_id)))

                result = WriteResult(
                    record=copy.deepcopy(merged),
                    changed_fields=tuple(changed),
                    remote_written=bool(outcome.written),
                    degraded=outcome.unavailable,
                    fallback_fields=fallback_fields,
                    guarded_fields=tuple(guarded),
                    rebased_fields=tuple(rebased),
                    success=not outcome.rejected,
                )
                logger.info(
                    "Progress written",
                    extra={
                        "user_id": self.user_id,
                        "changed_fields": list(changed),
                        "remote_written": result.remote_written,
                        "degraded": result.degraded,
                        "fallback_fields": list(fallback_fields),
                    },
                )
                return result

    # ------------------------------------------------------------------ #
    # Session end
    # ------------------------------------------------------------------ #

    async def purge(self) -> int:
        """Delete every tier-1/tier-2 key of this user, fallback included."""
        prefix = user_prefix(self.user_id)
        removed = self.memory.delete_prefix(prefix)
        self.fallback.forget(self.user_id)
        try:
            keys = await self.local.list_keys_with_prefix(prefix)
            for key in keys:
                if await self.local.delete(key):
                    removed += 1
        except CacheError as exc:
            logger.warning(
                "Local cache purge incomplete",
                extra={"user_id": self.user_id, "error": str(exc)},
            )
        self._pending_corrections.clear()
        logger.info("User caches purged", extra={"user_id": self.user_id, "keys_removed": removed})
        return removed
