"""
PostgreSQL-backed idempotency ledger.
"""

import logging
from datetime import timedelta

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from assetpipe.clock import Clock, SystemClock
from assetpipe.db.connection import session_scope
from assetpipe.db.models import LedgerRecord
from assetpipe.ledger.base import IdempotencyLedger
from assetpipe.types.job import LedgerEntry

logger = logging.getLogger(__name__)


class PostgresLedger(IdempotencyLedger):
    """
    Ledger stored in PostgreSQL.

    Uses INSERT ... ON CONFLICT DO NOTHING so concurrent completions of the
    same job id resolve to a single row, written by whichever commits first.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        retention_seconds: float,
        clock: Clock | None = None,
    ):
        self._session_factory = session_factory
        self._retention = timedelta(seconds=retention_seconds)
        self._clock = clock or SystemClock()

    async def has_completed(self, job_id: str) -> bool:
        stmt = select(LedgerRecord.job_id).where(LedgerRecord.job_id == job_id)
        async with session_scope(self._session_factory) as session:
            result = await session.execute(stmt)
            return result.scalar_one_or_none() is not None

    async def record_completion(self, job_id: str, result_key: str) -> bool:
        stmt = insert(LedgerRecord).values(
            job_id=job_id,
            result_key=result_key,
            completed_at=self._clock.utcnow(),
        ).on_conflict_do_nothing(
            index_elements=["job_id"]
        ).returning(LedgerRecord.job_id)

        async with session_scope(self._session_factory) as session:
            result = await session.execute(stmt)
            created = result.scalar_one_or_none() is not None

        if not created:
            logger.info("Completion already recorded", extra={"job_id": job_id})
        return created

    async def get(self, job_id: str) -> LedgerEntry | None:
        async with session_scope(self._session_factory) as session:
            row = await session.get(LedgerRecord, job_id)
            return row.to_entry() if row is not None else None

    async def purge_expired(self) -> int:
        cutoff = self._clock.utcnow() - self._retention
        stmt = delete(LedgerRecord).where(LedgerRecord.completed_at < cutoff)
        async with session_scope(self._session_factory) as session:
            result = await session.execute(stmt)
            count = result.rowcount

        if count > 0:
            logger.info(f"Purged {count} ledger entries")
        return count
