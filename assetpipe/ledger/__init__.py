"""
Idempotency ledger module.
Contains the ledger contract and its in-memory and postgres backends.
"""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from assetpipe.clock import Clock
from assetpipe.config import Settings
from assetpipe.exceptions import ConfigurationError
from assetpipe.ledger.base import IdempotencyLedger
from assetpipe.ledger.memory import InMemoryLedger
from assetpipe.ledger.postgres import PostgresLedger


def create_ledger(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    clock: Clock | None = None,
) -> IdempotencyLedger:
    """Build the ledger named by ``settings.ledger_backend``."""
    if settings.ledger_backend == "memory":
        return InMemoryLedger(settings.ledger_retention_seconds, clock=clock)
    if settings.ledger_backend == "postgres":
        if session_factory is None:
            raise ConfigurationError("The postgres ledger needs a session factory")
        return PostgresLedger(
            session_factory,
            retention_seconds=settings.ledger_retention_seconds,
            clock=clock,
        )
    raise ConfigurationError(f"Unknown ledger backend: {settings.ledger_backend}")


__all__ = [
    "IdempotencyLedger",
    "InMemoryLedger",
    "PostgresLedger",
    "create_ledger",
]
