"""
Pytest configuration and shared fixtures.
"""

import os
from collections.abc import AsyncGenerator, Callable
from typing import Any
from uuid import uuid4

import pytest
import pytest_asyncio
import sqlalchemy as sa
from prometheus_client import CollectorRegistry
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from assetpipe.clock import ManualClock
from assetpipe.config import Settings
from assetpipe.db.connection import create_session_factory, create_tables, get_test_engine
from assetpipe.ledger.memory import InMemoryLedger
from assetpipe.observability.metrics import MetricsCollector
from assetpipe.queue.memory import InMemoryJobQueue
from assetpipe.storage.memory import InMemoryObjectStore
from assetpipe.types.job import Job
from assetpipe.worker.policy import RetryPolicy
from assetpipe.worker.pool import WorkerPool

# Postgres-backed tests only run when a test database is provided
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        queue_backend="memory",
        ledger_backend="memory",
        object_store_backend="memory",
        visibility_timeout_seconds=30.0,
        worker_concurrency=1,
        worker_lease_wait_seconds=1.0,
        worker_heartbeat_interval_seconds=0.0,
        queue_poll_interval_seconds=0.05,
        drain_timeout_seconds=1.0,
        max_attempts=5,
        backoff_base_seconds=1.0,
        backoff_max_seconds=30.0,
        backoff_jitter=0.0,
        ledger_retention_seconds=3600.0,
        prometheus_enabled=False,
        log_level="DEBUG",
        log_format="console",
    )


@pytest.fixture
def clock() -> ManualClock:
    """Create a controllable clock."""
    return ManualClock()


@pytest.fixture
def metrics() -> MetricsCollector:
    """Create a metrics collector on a private registry."""
    return MetricsCollector(CollectorRegistry())


@pytest.fixture
def store() -> InMemoryObjectStore:
    return InMemoryObjectStore()


@pytest.fixture
def queue(clock: ManualClock, metrics: MetricsCollector) -> InMemoryJobQueue:
    return InMemoryJobQueue(clock=clock, metrics=metrics)


@pytest.fixture
def ledger(clock: ManualClock, test_settings: Settings) -> InMemoryLedger:
    return InMemoryLedger(test_settings.ledger_retention_seconds, clock=clock)


@pytest.fixture
def policy(test_settings: Settings) -> RetryPolicy:
    return RetryPolicy.from_settings(test_settings)


@pytest_asyncio.fixture
async def pool(
    queue: InMemoryJobQueue,
    ledger: InMemoryLedger,
    store: InMemoryObjectStore,
    test_settings: Settings,
    clock: ManualClock,
    metrics: MetricsCollector,
) -> AsyncGenerator[WorkerPool]:
    """Create a worker pool on the manual clock; stopped after the test."""
    pool = WorkerPool(
        queue,
        ledger,
        store,
        test_settings,
        clock=clock,
        metrics=metrics,
        pool_id="test-pool",
    )
    yield pool
    await pool.stop(drain_timeout=1.0)


@pytest.fixture
def make_job(clock: ManualClock) -> Callable[..., Job]:
    """Factory for jobs stamped with the test clock."""

    def factory(
        object_key: str = "in/sample.png",
        job_id: str | None = None,
        attempt: int = 0,
        payload: dict[str, Any] | None = None,
    ) -> Job:
        return Job(
            id=job_id or f"job-{uuid4().hex[:12]}",
            object_key=object_key,
            attempt=attempt,
            enqueued_at=clock.utcnow(),
            payload=payload or {},
        )

    return factory


@pytest.fixture(scope="session")
def database_url() -> str:
    """Get the test database URL."""
    if TEST_DATABASE_URL is None:
        pytest.skip("TEST_DATABASE_URL is not set")
    return TEST_DATABASE_URL


@pytest_asyncio.fixture
async def async_engine(database_url: str) -> AsyncGenerator[AsyncEngine]:
    """Create an async engine with the pipeline tables in place."""
    engine = get_test_engine(database_url)
    await create_tables(engine)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory over freshly truncated tables."""
    factory = create_session_factory(async_engine)

    async with factory() as session:
        # Clean up test data before each test to ensure clean state
        await session.execute(sa.text(
            "TRUNCATE TABLE pipeline_jobs, pipeline_dead_letters, pipeline_ledger"
        ))
        await session.commit()

    return factory
