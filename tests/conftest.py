"""
Pytest Configuration and Fixtures for Waypoint Tests
====================================================

Purpose
-------
Centralized fixtures for the Waypoint test suite: in-memory tiers for unit
tests, real PostgreSQL/Redis containers for integration tests, and helpers
for asserting domain events.

Responsibilities
----------------
- Testcontainers setup for PostgreSQL and Redis
- Fresh reconciler/session wiring over in-memory tiers
- Retry policies that never sleep
- Config overrides reset between tests

Architecture Notes
------------------
- Unit tests use the fakes in ``tests/fakes.py`` (fast, isolated)
- Integration tests use testcontainers (real database/redis)
- Containers are session-scoped; engines and clients are per test so each
  test owns its event loop
"""

from __future__ import annotations

import os

# Must be set before src.core.config is imported (NullPool, test logging).
os.environ["ENVIRONMENT"] = "test"
os.environ.setdefault("LOG_LEVEL", "DEBUG")

from typing import AsyncGenerator, Callable, Generator

import pytest
import pytest_asyncio
from redis.asyncio import Redis as AsyncRedis
from testcontainers.postgres import PostgresContainer
from testcontainers.redis import RedisContainer

from src.core.config import ConfigManager
from src.core.database.base import Base
from src.core.database.service import DatabaseService
from src.core.logging.logger import get_logger
from src.core.resilience import CircuitBreaker, RemoteResilience, RetryPolicy
from src.modules.persistence import IntegrityDiagnostics, ProgressReconciler
from tests.fakes import InMemoryLocalCache, InMemoryRemoteStore

logger = get_logger(__name__)


async def _no_sleep(_: float) -> None:
    return None


# ============================================================================
# CONFIGURATION
# ============================================================================


@pytest.fixture(autouse=True)
def reset_config() -> Generator[None, None, None]:
    """Drop ConfigManager overrides a test applied."""
    yield
    ConfigManager.reset()


# ============================================================================
# TESTCONTAINERS FIXTURES (Integration Tests)
# ============================================================================


@pytest.fixture(scope="session")
def postgres_container() -> Generator[PostgresContainer, None, None]:
    """
    Start PostgreSQL testcontainer for integration tests.

    Scope: session (container persists across all tests)
    """
    logger.info("Starting PostgreSQL testcontainer...")
    container = PostgresContainer(image="postgres:17-alpine", driver="asyncpg")
    container.start()
    logger.info("PostgreSQL testcontainer started")

    yield container

    logger.info("Stopping PostgreSQL testcontainer...")
    container.stop()


@pytest.fixture(scope="session")
def redis_container() -> Generator[RedisContainer, None, None]:
    """
    Start Redis testcontainer for integration tests.

    Scope: session (container persists across all tests)
    """
    logger.info("Starting Redis testcontainer...")
    container = RedisContainer(image="redis:7-alpine")
    container.start()
    logger.info(
        "Redis testcontainer started: %s:%s",
        container.get_container_host_ip(),
        container.get_exposed_port(6379),
    )

    yield container

    logger.info("Stopping Redis testcontainer...")
    container.stop()


# ============================================================================
# DATABASE / REDIS FIXTURES (Integration Tests)
# ============================================================================


@pytest_asyncio.fixture
async def database(postgres_container: PostgresContainer) -> AsyncGenerator[type[DatabaseService], None]:
    """
    DatabaseService bound to the container with a clean schema.

    Scope: function (tables dropped after each test)
    """
    await DatabaseService.initialize(postgres_container.get_connection_url())
    await DatabaseService.create_schema()

    yield DatabaseService

    engine = DatabaseService._require_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await DatabaseService.shutdown()


@pytest_asyncio.fixture
async def redis_client(redis_container: RedisContainer) -> AsyncGenerator[AsyncRedis, None]:
    host = redis_container.get_container_host_ip()
    port = redis_container.get_exposed_port(6379)
    client: AsyncRedis = AsyncRedis.from_url(f"redis://{host}:{port}/0", decode_responses=True)
    await client.flushdb()

    yield client

    await client.flushdb()
    await client.aclose()


# ============================================================================
# IN-MEMORY TIERS (Unit Tests)
# ============================================================================


@pytest.fixture
def fast_resilience() -> RemoteResilience:
    """Breaker plus retry policy that retries without sleeping."""
    return RemoteResilience(
        breaker=CircuitBreaker(name="test-remote"),
        retry_policy=RetryPolicy(sleep=_no_sleep),
    )


@pytest.fixture
def remote_store() -> InMemoryRemoteStore:
    return InMemoryRemoteStore()


@pytest.fixture
def local_cache() -> InMemoryLocalCache:
    return InMemoryLocalCache()


@pytest.fixture
def diagnostics() -> IntegrityDiagnostics:
    return IntegrityDiagnostics()


@pytest.fixture
def make_reconciler(
    remote_store: InMemoryRemoteStore,
    local_cache: InMemoryLocalCache,
    diagnostics: IntegrityDiagnostics,
) -> Callable[..., ProgressReconciler]:
    """
    Factory for reconcilers sharing the test's tiers.

    Usage:
        reconciler = make_reconciler("u1")
        other_device = make_reconciler("u1")  # same tiers, fresh memory
    """

    def factory(user_id: str = "u1", **overrides) -> ProgressReconciler:
        overrides.setdefault("diagnostics", diagnostics)
        overrides.setdefault(
            "resilience",
            RemoteResilience(
                breaker=CircuitBreaker(name=f"test-{user_id}"),
                retry_policy=RetryPolicy(sleep=_no_sleep),
            ),
        )
        return ProgressReconciler(
            user_id,
            overrides.pop("remote", remote_store),
            overrides.pop("local", local_cache),
            **overrides,
        )

    return factory


# ============================================================================
# MOCK FIXTURES (Unit Tests)
# ============================================================================


@pytest.fixture
def mock_event_bus(mocker):
    """
    Mock EventBus for unit tests.

    Scope: function
    Uses: Unit tests that assert on published events
    """
    mock_bus = mocker.MagicMock()
    mock_bus.publish = mocker.AsyncMock(return_value=1)
    mock_bus.publish_all = mocker.AsyncMock(return_value=0)
    mock_bus.subscribe = mocker.MagicMock()
    return mock_bus


# ============================================================================
# UTILITY FUNCTIONS
# ============================================================================


def assert_domain_event_emitted(domain_model, event_name: str) -> bool:
    """
    Check that an aggregate recorded a specific event.

    Usage:
        record.grant(experience=100)
        assert assert_domain_event_emitted(record, "progression.level_up")
    """
    events = domain_model.get_pending_events()
    return any(event.event_name == event_name for event in events)


def get_domain_event_payload(domain_model, event_name: str) -> dict | None:
    """
    Payload of the first pending event with ``event_name``.

    Usage:
        record.grant(experience=100)
        payload = get_domain_event_payload(record, "progression.level_up")
        assert payload["new_level"] == 3
    """
    for event in domain_model.get_pending_events():
        if event.event_name == event_name:
            return event.payload
    return None
