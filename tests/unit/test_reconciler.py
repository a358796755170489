"""
Unit Tests for ProgressReconciler
=================================

Purpose
-------
Exercise the three-tier read/merge/write path against in-memory tiers.

Test Coverage
-------------
- First read creates the remote row (including a lost create race)
- Tier-1 / tier-2 / tier-3 read order and merge of local-only fields
- Schema drift: unknown columns move to the fallback and are retried
- Regression guard on experience/currency
- Numeric overflow retained locally with a diagnostic
- Degraded writes while the remote is unreachable
- Merge idempotence and write serialization
- Corrupted-field repair and corrective writes
- Purge on sign-out

Testing Strategy
----------------
- Unit tests over ``tests/fakes.py`` (no containers)
- AAA pattern (Arrange, Act, Assert)
"""

import asyncio

import pytest

from src.core.cache import fallback_key, progress_key, user_prefix
from src.modules.persistence import INT32_MAX
from tests.fakes import REMOTE_COLUMNS, FakeClock, InMemoryLocalCache, InMemoryRemoteStore

# ============================================================================
# READS
# ============================================================================


@pytest.mark.unit
class TestReconcilerReads:
    async def test_first_read_creates_remote_row_with_defaults(self, make_reconciler, remote_store, local_cache):
        # Arrange
        reconciler = make_reconciler("u1")

        # Act
        snapshot = await reconciler.read()

        # Assert
        assert snapshot["experience"] == 0
        assert snapshot["level"] == 1
        assert snapshot["current_chapter"] == 1
        assert remote_store.rows["u1"]["xp"] == 0
        assert len(remote_store.calls_of("create")) == 1
        assert progress_key("u1") in local_cache.entries

    async def test_concurrent_create_is_refetched(self, make_reconciler, remote_store):
        # Arrange
        remote_store.race_on_create = True
        reconciler = make_reconciler("u1")

        # Act
        snapshot = await reconciler.read()

        # Assert
        assert snapshot["experience"] == 0
        assert len(remote_store.calls_of("create")) == 1
        assert len(remote_store.calls_of("fetch")) == 2

    async def test_create_retried_without_lagging_columns(self, make_reconciler):
        remote = InMemoryRemoteStore(columns=set(REMOTE_COLUMNS) - {"chapter_history"})
        reconciler = make_reconciler("u1", remote=remote)

        snapshot = await reconciler.read()

        assert "u1" in remote.rows
        assert len(remote.calls_of("create")) == 2
        assert snapshot["chapter_history"] == []

    async def test_fresh_memory_tier_skips_remote(self, make_reconciler, remote_store):
        reconciler = make_reconciler("u1")
        await reconciler.read()
        fetches = len(remote_store.calls_of("fetch"))

        await reconciler.read()

        assert len(remote_store.calls_of("fetch")) == fetches

    async def test_fresh_local_tier_skips_remote(self, make_reconciler, remote_store):
        # Arrange
        await make_reconciler("u1").write({"experience": 40})
        fetches = len(remote_store.calls_of("fetch"))

        # Act: new process, same durable cache
        snapshot = await make_reconciler("u1").read()

        # Assert
        assert snapshot["experience"] == 40
        assert len(remote_store.calls_of("fetch")) == fetches

    async def test_stale_local_tier_merges_fields_only_it_holds(self, make_reconciler):
        # Arrange
        clock = FakeClock()
        local = InMemoryLocalCache(clock=clock)
        remote = InMemoryRemoteStore(columns=set(REMOTE_COLUMNS) - {"chapter_history"})
        remote.seed("u1", xp=90, level=3)
        await local.set(progress_key("u1"), {"experience": 10, "chapter_history": [1, 2]}, ttl=300)
        clock.advance(301)
        reconciler = make_reconciler("u1", remote=remote, local=local, clock=clock)

        # Act
        snapshot = await reconciler.read()

        # Assert
        assert snapshot["experience"] == 90
        assert snapshot["chapter_history"] == [1, 2]

    async def test_unreachable_remote_serves_local_snapshot(self, make_reconciler, remote_store):
        await make_reconciler("u1").write({"experience": 40})
        remote_store.unavailable = True

        snapshot = await make_reconciler("u1").read(force_refresh=True)

        assert snapshot["experience"] == 40

    async def test_unreachable_remote_new_user_gets_defaults(self, make_reconciler, remote_store):
        remote_store.unavailable = True

        snapshot = await make_reconciler("u1").read()

        assert snapshot["experience"] == 0
        assert snapshot["level"] == 1
        assert "u1" not in remote_store.rows

    async def test_local_cache_failure_degrades_to_remote(self, make_reconciler, remote_store, local_cache):
        remote_store.seed("u1", xp=55)
        local_cache.fail = True

        snapshot = await make_reconciler("u1").read()

        assert snapshot["experience"] == 55


# ============================================================================
# SCHEMA DRIFT
# ============================================================================


@pytest.mark.unit
class TestSchemaDrift:
    @pytest.fixture
    def lagging_remote(self):
        return InMemoryRemoteStore(columns=set(REMOTE_COLUMNS) - {"chapter_history"})

    async def test_unknown_column_moves_to_fallback(self, make_reconciler, lagging_remote, local_cache):
        """Write rejected for chapter_history; retried without it."""
        # Arrange
        reconciler = make_reconciler("u1", remote=lagging_remote)
        await reconciler.read()

        # Act
        result = await reconciler.write({"experience": 40, "chapter_history": [1]})

        # Assert
        assert result.success
        assert result.remote_written
        assert result.fallback_fields == ("chapter_history",)
        assert result.record["chapter_history"] == [1]
        assert lagging_remote.rows["u1"]["xp"] == 40
        assert "chapter_history" not in lagging_remote.rows["u1"]
        assert local_cache.entries[fallback_key("u1")].value == {"chapter_history": [1]}

    async def test_next_fetch_restores_fallback_field(self, make_reconciler, lagging_remote, local_cache):
        # Arrange
        await make_reconciler("u1", remote=lagging_remote).write({"chapter_history": [1]})
        del local_cache.entries[progress_key("u1")]

        # Act: new process, only the fallback survives locally
        snapshot = await make_reconciler("u1", remote=lagging_remote).read()

        # Assert
        assert snapshot["chapter_history"] == [1]

    async def test_fallback_retried_until_schema_catches_up(self, make_reconciler, lagging_remote):
        # Arrange
        reconciler = make_reconciler("u1", remote=lagging_remote)
        await reconciler.write({"chapter_history": [1]})

        # Act: unrelated write re-attempts the pending field
        still_lagging = await reconciler.write({"currency": 2})

        # Assert
        assert "chapter_history" in lagging_remote.calls_of("upsert")[-2]
        assert still_lagging.fallback_fields == ("chapter_history",)

        # Act: migration lands
        lagging_remote.columns.add("chapter_history")
        caught_up = await reconciler.write({"currency": 3})

        # Assert
        assert caught_up.fallback_fields == ()
        assert lagging_remote.rows["u1"]["chapter_history"] == [1]


# ============================================================================
# REGRESSION GUARD
# ============================================================================


@pytest.mark.unit
class TestRegressionGuard:
    async def test_unconfirmed_zero_is_refused(self, make_reconciler, remote_store):
        # Arrange
        reconciler = make_reconciler("u1")
        await reconciler.write({"experience": 40, "currency": 6})
        fetches = len(remote_store.calls_of("fetch"))

        # Act
        result = await reconciler.write({"experience": 0})

        # Assert
        assert result.guarded_fields == ("experience",)
        assert result.record["experience"] == 40
        assert remote_store.rows["u1"]["xp"] == 40
        assert len(remote_store.calls_of("fetch")) == fetches + 1
        assert all(call.get("xp") != 0 for call in remote_store.calls_of("upsert"))

    async def test_zero_confirmed_by_remote_is_persisted(self, make_reconciler, remote_store):
        reconciler = make_reconciler("u1")
        await reconciler.write({"currency": 6})
        remote_store.rows["u1"]["currency"] = 0

        result = await reconciler.write({"currency": 0})

        assert result.guarded_fields == ()
        assert result.record["currency"] == 0

    async def test_explicit_reset_skips_refetch(self, make_reconciler, remote_store):
        reconciler = make_reconciler("u1")
        await reconciler.write({"experience": 40})
        fetches = len(remote_store.calls_of("fetch"))

        result = await reconciler.write({"experience": 0}, explicit_reset=True)

        assert result.record["experience"] == 0
        assert remote_store.rows["u1"]["xp"] == 0
        assert len(remote_store.calls_of("fetch")) == fetches

    async def test_unreachable_remote_keeps_previous_value(self, make_reconciler, remote_store):
        reconciler = make_reconciler("u1")
        await reconciler.write({"experience": 40})
        remote_store.unavailable = True

        result = await reconciler.write({"experience": 0})

        assert result.record["experience"] == 40
        assert result.guarded_fields == ("experience",)

    async def test_remote_positive_value_wins(self, make_reconciler, remote_store):
        # Another device already pushed experience further.
        reconciler = make_reconciler("u1")
        await reconciler.write({"experience": 40})
        remote_store.rows["u1"]["xp"] = 75

        result = await reconciler.write({"experience": 0})

        assert result.record["experience"] == 75
        assert result.record["level"] == 3


# ============================================================================
# NUMERIC RANGE
# ============================================================================


@pytest.mark.unit
class TestNumericRange:
    async def test_overflow_retained_locally_with_diagnostic(
        self, make_reconciler, remote_store, diagnostics
    ):
        # Arrange
        reconciler = make_reconciler("u1")
        await reconciler.read()
        huge = INT32_MAX + 10

        # Act
        result = await reconciler.write({"experience": huge})

        # Assert
        assert result.success
        assert result.record["experience"] == huge
        assert result.fallback_fields == ("experience",)
        assert remote_store.rows["u1"]["xp"] == 0
        assert remote_store.rows["u1"]["level"] == 1000
        assert diagnostics.count == 1
        warning = diagnostics.warnings[0]
        assert (warning.field, warning.remote_column, warning.value) == ("experience", "xp", huge)

    async def test_overflowed_value_survives_remote_reads(self, make_reconciler, local_cache):
        huge = INT32_MAX + 10
        await make_reconciler("u1").write({"experience": huge})
        del local_cache.entries[progress_key("u1")]

        snapshot = await make_reconciler("u1").read()

        assert snapshot["experience"] == huge


# ============================================================================
# DEGRADED WRITES
# ============================================================================


@pytest.mark.unit
class TestDegradedWrites:
    async def test_unreachable_remote_completes_cache_only(self, make_reconciler, remote_store):
        # Arrange
        reconciler = make_reconciler("u1")
        await reconciler.read()
        remote_store.unavailable = True

        # Act
        result = await reconciler.write({"experience": 30})

        # Assert
        assert result.success
        assert result.degraded
        assert not result.remote_written
        assert result.record["experience"] == 30
        assert set(result.fallback_fields) >= {"experience", "level"}
        assert (await reconciler.read())["experience"] == 30

    async def test_pending_fields_flushed_when_remote_returns(self, make_reconciler, remote_store):
        reconciler = make_reconciler("u1")
        await reconciler.read()
        remote_store.unavailable = True
        await reconciler.write({"experience": 30})
        remote_store.unavailable = False

        result = await reconciler.write({"currency": 2})

        assert result.remote_written
        assert result.fallback_fields == ()
        assert remote_store.rows["u1"]["xp"] == 30
        assert remote_store.rows["u1"]["currency"] == 2

    async def test_unsynced_values_win_over_stale_remote(self, make_reconciler, remote_store, local_cache):
        await make_reconciler("u1").read()
        remote_store.unavailable = True
        await make_reconciler("u1").write({"experience": 30})
        remote_store.unavailable = False
        del local_cache.entries[progress_key("u1")]

        snapshot = await make_reconciler("u1").read()

        assert snapshot["experience"] == 30

    async def test_offline_progress_is_added_to_higher_remote_progress(
        self, make_reconciler, remote_store, local_cache
    ):
        # Arrange
        remote_store.seed("u1", xp=500)
        remote_store.unavailable = True
        offline = make_reconciler("u1")
        provisional = await offline.read()
        await offline.write({"experience": provisional["experience"] + 10})
        remote_store.unavailable = False
        del local_cache.entries[progress_key("u1")]

        # Act
        online = make_reconciler("u1")
        snapshot = await online.read()
        result = await online.write({"currency": snapshot["currency"] + 1})

        # Assert
        assert provisional["experience"] == 0
        assert snapshot["experience"] == 510
        assert result.remote_written
        assert remote_store.rows["u1"]["xp"] == 510
        assert remote_store.rows["u1"]["currency"] == 1
        assert result.fallback_fields == ()

    async def test_stale_absolute_counter_is_shifted_onto_remote(self, make_reconciler, remote_store):
        # Arrange
        remote_store.seed("u1", xp=500)
        remote_store.unavailable = True
        reconciler = make_reconciler("u1")
        await reconciler.read()
        await reconciler.write({"experience": 10})
        remote_store.unavailable = False

        # Act: the caller still believes experience is 10 and grants 25 more
        result = await reconciler.write({"experience": 35})

        # Assert
        assert result.rebased_fields == ("experience",)
        assert "experience" in result.adopt_fields
        assert result.record["experience"] == 535
        assert remote_store.rows["u1"]["xp"] == 535

    async def test_offline_progress_on_unchanged_remote_is_kept(self, make_reconciler, remote_store):
        remote_store.seed("u1", xp=500)
        reconciler = make_reconciler("u1")
        await reconciler.read()
        remote_store.unavailable = True
        await reconciler.write({"experience": 540})
        remote_store.unavailable = False

        result = await reconciler.write({"currency": 1})

        assert result.rebased_fields == ()
        assert remote_store.rows["u1"]["xp"] == 540

    async def test_transient_failure_retried_within_write(self, make_reconciler, remote_store):
        reconciler = make_reconciler("u1")
        await reconciler.read()
        remote_store.fail_next = 1

        result = await reconciler.write({"experience": 12})

        assert result.remote_written
        assert not result.degraded
        assert remote_store.rows["u1"]["xp"] == 12


# ============================================================================
# MERGE SEMANTICS
# ============================================================================


@pytest.mark.unit
class TestMergeSemantics:
    async def test_same_delta_twice_is_idempotent(self, make_reconciler, remote_store):
        # Arrange
        reconciler = make_reconciler("u1")
        delta = {"experience": 40, "chapter_history": [1], "current_chapter": 2}

        # Act
        first = await reconciler.write(delta)
        upserts = len(remote_store.calls_of("upsert"))
        second = await reconciler.write(delta)

        # Assert
        assert second.record == first.record
        assert second.changed_fields == ()
        assert len(remote_store.calls_of("upsert")) == upserts

    async def test_only_changed_fields_sent(self, make_reconciler, remote_store):
        reconciler = make_reconciler("u1")
        await reconciler.read()

        await reconciler.write({"currency": 4})

        assert remote_store.calls_of("upsert")[-1] == {"currency": 4}

    async def test_cached_record_is_merged_not_raw_response(self, make_reconciler, remote_store):
        reconciler = make_reconciler("u1")
        await reconciler.write({"experience": 40, "chapter_history": [1]})

        result = await reconciler.write({"currency": 4})

        assert result.record["experience"] == 40
        assert result.record["chapter_history"] == [1]
        assert (await reconciler.read())["experience"] == 40

    async def test_concurrent_writes_apply_on_merged_base(self, make_reconciler):
        reconciler = make_reconciler("u1")
        await reconciler.read()

        await asyncio.gather(
            reconciler.write({"experience": 10}),
            reconciler.write({"currency": 3}),
        )

        snapshot = await reconciler.read()
        assert snapshot["experience"] == 10
        assert snapshot["currency"] == 3

    async def test_writes_wait_for_the_lock(self, make_reconciler):
        reconciler = make_reconciler("u1")
        await reconciler.read()

        await reconciler.write_lock.acquire()
        task = asyncio.create_task(reconciler.write({"experience": 10}))
        await asyncio.sleep(0)
        assert not task.done()
        reconciler.write_lock.release()

        result = await task
        assert result.record["experience"] == 10

    async def test_unmapped_delta_keys_ignored(self, make_reconciler, remote_store):
        reconciler = make_reconciler("u1")
        await reconciler.read()

        result = await reconciler.write({"favourite_colour": "teal"})

        assert result.changed_fields == ()
        assert "favourite_colour" not in remote_store.rows["u1"]


# ============================================================================
# CORRUPTION
# ============================================================================


@pytest.mark.unit
class TestCorruptedFields:
    async def test_corrupted_remote_value_replaced_by_last_known_good(self, make_reconciler, remote_store):
        # Arrange
        reconciler = make_reconciler("u1")
        await reconciler.write({"experience": 40})
        remote_store.rows["u1"]["xp"] = -7

        # Act
        snapshot = await reconciler.refresh()

        # Assert
        assert snapshot["experience"] == 40
        assert reconciler.pending_corrections == {"experience"}

    async def test_corrective_write_clears_pending(self, make_reconciler, remote_store):
        reconciler = make_reconciler("u1")
        await reconciler.write({"experience": 40})
        remote_store.rows["u1"]["xp"] = -7
        await reconciler.refresh()

        await reconciler.write({})

        assert remote_store.rows["u1"]["xp"] == 40
        assert reconciler.pending_corrections == set()

    async def test_corrupted_experience_clamped_through_formula(self, make_reconciler, remote_store, mocker):
        # Arrange
        from src.modules.persistence import reconciler as reconciler_module

        sanitize = mocker.spy(reconciler_module, "sanitize_experience")
        reconciler = make_reconciler("u1")
        await reconciler.write({"experience": 120})
        remote_store.rows["u1"]["xp"] = float("nan")

        # Act
        snapshot = await reconciler.refresh()

        # Assert
        assert snapshot["experience"] == 120
        assert snapshot["level"] == reconciler_module.level_for_experience(120, 1000)
        sanitize.assert_called_once()
        assert sanitize.spy_return == 120

    async def test_corruption_without_history_falls_back_to_default(self, make_reconciler, remote_store):
        remote_store.seed("u1", xp=-3, current_chapter=0)

        snapshot = await make_reconciler("u1").read()

        assert snapshot["experience"] == 0
        assert snapshot["current_chapter"] == 1


# ============================================================================
# PURGE
# ============================================================================


@pytest.mark.unit
class TestPurge:
    async def test_purge_removes_every_user_key(self, make_reconciler, local_cache):
        # Arrange
        lagging = InMemoryRemoteStore(columns=set(REMOTE_COLUMNS) - {"chapter_history"})
        mine = make_reconciler("u1", remote=lagging)
        theirs = make_reconciler("u2", remote=lagging)
        await mine.write({"chapter_history": [1]})
        await theirs.write({"experience": 5})

        # Act
        removed = await mine.purge()

        # Assert
        assert removed >= 2
        assert mine.memory.keys() == []
        assert not [k for k in local_cache.entries if k.startswith(user_prefix("u1"))]
        assert progress_key("u2") in local_cache.entries
        assert await mine.fallback.load("u1") == {}

    async def test_purge_tolerates_local_failure(self, make_reconciler, local_cache):
        reconciler = make_reconciler("u1")
        await reconciler.read()
        local_cache.fail = True

        await reconciler.purge()

        assert reconciler.memory.keys() == []
