"""
Integration Tests for SqlAlchemyRemoteStore
===========================================

Purpose
-------
Run the tier-3 store and the reconciler against a real PostgreSQL
container, including the rejections the reconciler depends on.

Test Coverage
-------------
- create / fetch / upsert round trips (JSONB columns decoded)
- NOT_FOUND, UNIQUE_VIOLATION, UNKNOWN_FIELD, NUMERIC_OUT_OF_RANGE mapping
- Reconciler end-to-end: defaults row, schema lag, overflow diagnostics

Testing Strategy
----------------
- testcontainers PostgreSQL (session-scoped container, schema per test)
- Requires Docker
"""

import pytest
from sqlalchemy import text

from src.core.resilience import CircuitBreaker, RemoteResilience, RetryPolicy
from src.modules.persistence import (
    INT32_MAX,
    IntegrityDiagnostics,
    ProgressReconciler,
    RemoteErrorCode,
    RemoteStoreError,
    SqlAlchemyRemoteStore,
)
from tests.fakes import InMemoryLocalCache

pytestmark = [pytest.mark.integration, pytest.mark.database]


async def _no_sleep(_):
    return None


async def drop_column(database, column: str) -> None:
    async with database.get_transaction() as session:
        await session.execute(text(f"ALTER TABLE user_progress DROP COLUMN {column}"))


@pytest.fixture
def store(database):
    return SqlAlchemyRemoteStore()


# ============================================================================
# STORE OPERATIONS
# ============================================================================


class TestSqlAlchemyRemoteStore:
    async def test_create_and_fetch(self, store):
        # Act
        created = await store.create("u1", {"xp": 0, "level": 1})
        fetched = await store.fetch("u1")

        # Assert
        assert created["user_id"] == "u1"
        assert fetched["xp"] == 0
        assert fetched["quests"] == {}
        assert fetched["chapter_history"] == []

    async def test_fetch_missing_row(self, store):
        assert await store.fetch("nobody") is None

    async def test_upsert_updates_only_given_columns(self, store):
        await store.create("u1", {"xp": 10, "currency": 3})

        row = await store.upsert("u1", {"xp": 40, "chapter_history": [1, 2]})

        assert row["xp"] == 40
        assert row["currency"] == 3
        assert row["chapter_history"] == [1, 2]

    async def test_upsert_json_object(self, store):
        await store.create("u1", {"xp": 0})
        quests = {"daily": [{"quest_id": "d1", "progress": 2}], "last_daily_reset": "2025-03-03"}

        await store.upsert("u1", {"quests": quests})

        assert (await store.fetch("u1"))["quests"] == quests

    async def test_upsert_missing_row_is_not_found(self, store):
        with pytest.raises(RemoteStoreError) as exc_info:
            await store.upsert("nobody", {"xp": 1})

        assert exc_info.value.code is RemoteErrorCode.NOT_FOUND

    async def test_duplicate_create_is_unique_violation(self, store):
        await store.create("u1", {"xp": 0})

        with pytest.raises(RemoteStoreError) as exc_info:
            await store.create("u1", {"xp": 0})

        assert exc_info.value.code is RemoteErrorCode.UNIQUE_VIOLATION

    async def test_dropped_column_is_unknown_field(self, store, database):
        # Arrange
        await store.create("u1", {"xp": 0})
        await drop_column(database, "chapter_history")

        # Act
        with pytest.raises(RemoteStoreError) as exc_info:
            await store.upsert("u1", {"chapter_history": [1]})

        # Assert
        assert exc_info.value.code is RemoteErrorCode.UNKNOWN_FIELD
        assert exc_info.value.field == "chapter_history"

    async def test_integer_overflow_is_numeric_out_of_range(self, store):
        await store.create("u1", {"xp": 0})

        with pytest.raises(RemoteStoreError) as exc_info:
            await store.upsert("u1", {"xp": INT32_MAX + 1})

        assert exc_info.value.code is RemoteErrorCode.NUMERIC_OUT_OF_RANGE
        assert (await store.fetch("u1"))["xp"] == 0


# ============================================================================
# RECONCILER END-TO-END
# ============================================================================


class TestReconcilerAgainstPostgres:
    @pytest.fixture
    def reconciler(self, store):
        return ProgressReconciler(
            "u1",
            store,
            InMemoryLocalCache(),
            diagnostics=IntegrityDiagnostics(),
            resilience=RemoteResilience(
                breaker=CircuitBreaker(name="test-postgres"),
                retry_policy=RetryPolicy(sleep=_no_sleep),
            ),
        )

    async def test_first_read_creates_defaults_row(self, reconciler, store):
        snapshot = await reconciler.read()

        row = await store.fetch("u1")
        assert snapshot["level"] == 1
        assert row["xp"] == 0
        assert row["current_chapter"] == 1

    async def test_write_persists_mapped_columns(self, reconciler, store):
        result = await reconciler.write({"experience": 40, "slots": [{"index": 0, "state": "completed"}]})

        row = await store.fetch("u1")
        assert result.remote_written
        assert (row["xp"], row["level"]) == (40, 2)
        assert row["module_slots"] == [{"index": 0, "state": "completed"}]

    async def test_lagging_schema_keeps_field_in_fallback(self, reconciler, store, database):
        # Arrange
        await reconciler.read()
        await drop_column(database, "chapter_history")

        # Act
        result = await reconciler.write({"experience": 30, "chapter_history": [1]})

        # Assert
        assert result.success
        assert result.fallback_fields == ("chapter_history",)
        assert (await store.fetch("u1"))["xp"] == 30
        assert (await reconciler.refresh())["chapter_history"] == [1]

    async def test_overflow_recorded_and_kept_locally(self, reconciler, store):
        await reconciler.read()

        result = await reconciler.write({"currency": INT32_MAX + 7})

        assert result.success
        assert result.record["currency"] == INT32_MAX + 7
        assert reconciler.diagnostics.count == 1
        assert (await store.fetch("u1"))["currency"] == 0
