"""
Unit tests for the shared core primitives: SingleFlight, MemoryCache,
cache keys and the EventBus.
"""

import asyncio

import pytest

from src.core.cache import CacheEntry, MemoryCache, content_key, fallback_key, progress_key, user_prefix
from src.core.concurrency import SingleFlight
from src.core.config import ConfigManager
from src.core.event import EventBus
from tests.fakes import FakeClock

# ============================================================================
# SINGLE FLIGHT
# ============================================================================


@pytest.mark.unit
class TestSingleFlight:
    async def test_concurrent_callers_share_one_call(self):
        # Arrange
        flight: SingleFlight[int] = SingleFlight("test")
        release = asyncio.Event()
        calls = 0

        async def work() -> int:
            nonlocal calls
            calls += 1
            await release.wait()
            return 42

        # Act
        tasks = [asyncio.create_task(flight.do("k", work)) for _ in range(5)]
        await asyncio.sleep(0)
        assert flight.is_running("k")
        release.set()
        results = await asyncio.gather(*tasks)

        # Assert
        assert results == [42] * 5
        assert calls == 1
        assert flight.joined_count == 4
        assert not flight.is_running("k")

    async def test_new_call_after_completion(self):
        flight: SingleFlight[str] = SingleFlight("test")
        calls = []

        async def work() -> str:
            calls.append(1)
            return "done"

        await flight.do("k", work)
        await flight.do("k", work)

        assert len(calls) == 2

    async def test_joiners_receive_the_exception(self):
        flight: SingleFlight[None] = SingleFlight("test")
        release = asyncio.Event()

        async def work() -> None:
            await release.wait()
            raise ValueError("boom")

        tasks = [asyncio.create_task(flight.do("k", work)) for _ in range(2)]
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert all(isinstance(r, ValueError) for r in results)

    async def test_different_keys_run_independently(self):
        flight: SingleFlight[str] = SingleFlight("test")

        async def work(value: str) -> str:
            await asyncio.sleep(0)
            return value

        results = await asyncio.gather(flight.do("a", lambda: work("a")), flight.do("b", lambda: work("b")))

        assert results == ["a", "b"]


# ============================================================================
# MEMORY CACHE
# ============================================================================


@pytest.mark.unit
class TestMemoryCache:
    def test_fresh_then_stale(self):
        # Arrange
        clock = FakeClock()
        cache = MemoryCache(default_ttl=10, clock=clock)
        cache.set("k", {"experience": 5})

        # Act & Assert
        assert cache.get_fresh("k") == {"experience": 5}
        clock.advance(11)
        assert cache.get_fresh("k") is None
        assert cache.get_any("k") == {"experience": 5}
        assert cache.hits == 1
        assert cache.misses == 1

    def test_none_ttl_never_stale(self):
        clock = FakeClock()
        cache = MemoryCache(default_ttl=None, clock=clock)
        cache.set("k", 1)

        clock.advance(10**9)

        assert cache.get_fresh("k") == 1

    def test_delete_prefix_and_cleanup(self):
        clock = FakeClock()
        cache = MemoryCache(default_ttl=5, clock=clock)
        cache.set("user:u1:a", 1)
        cache.set("user:u1:b", 2)
        cache.set("user:u2:a", 3, ttl=100)

        assert cache.delete_prefix("user:u1:") == 2
        clock.advance(6)
        assert cache.cleanup_expired() == 0
        assert cache.keys() == ["user:u2:a"]

    def test_entry_round_trip(self):
        entry = CacheEntry(value=[1, 2], written_at=100.0, ttl=30)

        restored = CacheEntry.from_dict(entry.to_dict())

        assert restored == entry
        assert restored.is_fresh(129.0)
        assert not restored.is_fresh(131.0)


@pytest.mark.unit
class TestCacheKeys:
    def test_user_keys_share_prefix(self):
        prefix = user_prefix("u1")

        assert progress_key("u1").startswith(prefix)
        assert fallback_key("u1").startswith(prefix)
        assert not progress_key("u10").startswith(prefix)

    def test_prefix_is_configurable(self):
        ConfigManager.set("persistence.key_prefix", "wp:test")

        assert progress_key("u1") == "wp:test:user:u1:progress"
        assert content_key(2, 1, "lesson") == "wp:test:content:2:1:lesson"


# ============================================================================
# EVENT BUS
# ============================================================================


@pytest.mark.unit
class TestEventBus:
    async def test_exact_and_wildcard_delivery(self):
        # Arrange
        bus = EventBus()
        received = []
        bus.subscribe("progression.level_up", lambda e: received.append(("exact", e.event_name)))
        bus.subscribe("progression.*", lambda e: received.append(("wild", e.event_name)))
        bus.subscribe("quest.*", lambda e: received.append(("quest", e.event_name)))

        # Act
        delivered = await bus.publish("progression.level_up", {"new_level": 2})

        # Assert
        assert delivered == 2
        assert received == [("exact", "progression.level_up"), ("wild", "progression.level_up")]

    async def test_failing_listener_is_isolated(self):
        bus = EventBus()
        received = []

        def broken(_):
            raise RuntimeError("listener bug")

        async def healthy(event):
            received.append(event.data)

        bus.subscribe("quest.completed", broken)
        bus.subscribe("quest.completed", healthy)

        delivered = await bus.publish("quest.completed", {"quest_id": "q1"})

        assert delivered == 1
        assert received == [{"quest_id": "q1"}]
        assert bus.failed_listener_count == 1

    async def test_once_and_unsubscribe(self):
        bus = EventBus()
        received = []
        bus.subscribe("a", lambda e: received.append("once"), once=True)
        listener_id = bus.subscribe("a", lambda e: received.append("always"))

        await bus.publish("a")
        await bus.publish("a")
        assert bus.unsubscribe("a", listener_id)
        await bus.publish("a")

        assert received == ["once", "always", "always"]
        assert bus.listener_count() == 0

    def test_empty_event_name_rejected(self):
        with pytest.raises(ValueError):
            EventBus().subscribe("", lambda e: None)
