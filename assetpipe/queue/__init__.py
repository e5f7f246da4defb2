"""
Job queue module.
Contains the queue contract and its in-memory and postgres backends.
"""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from assetpipe.clock import Clock
from assetpipe.config import Settings
from assetpipe.exceptions import ConfigurationError
from assetpipe.observability.metrics import MetricsCollector
from assetpipe.queue.base import JobQueue
from assetpipe.queue.memory import InMemoryJobQueue
from assetpipe.queue.postgres import PostgresJobQueue


def create_job_queue(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    clock: Clock | None = None,
    metrics: MetricsCollector | None = None,
) -> JobQueue:
    """Build the queue named by ``settings.queue_backend``."""
    if settings.queue_backend == "memory":
        return InMemoryJobQueue(clock=clock, fifo=settings.queue_fifo, metrics=metrics)
    if settings.queue_backend == "postgres":
        if session_factory is None:
            raise ConfigurationError("The postgres queue needs a session factory")
        return PostgresJobQueue(
            session_factory,
            clock=clock,
            poll_interval=settings.queue_poll_interval_seconds,
            fifo=settings.queue_fifo,
            metrics=metrics,
        )
    raise ConfigurationError(f"Unknown queue backend: {settings.queue_backend}")


__all__ = [
    "JobQueue",
    "InMemoryJobQueue",
    "PostgresJobQueue",
    "create_job_queue",
]
