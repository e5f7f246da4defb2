"""
PostgreSQL-backed job queue.

Implements the lease/ack/nack contract on a single table:
- Lease acquisition with FOR UPDATE SKIP LOCKED, reclaiming expired leases
- Resolution guarded by (id, receipt, unexpired lease)
- Dead-lettering as one delete+insert transaction
"""

import logging
from datetime import timedelta
from uuid import uuid4

from sqlalchemy import and_, case, delete, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from assetpipe.clock import Clock, SystemClock
from assetpipe.constants import QueueRecordState
from assetpipe.db.connection import session_scope
from assetpipe.db.models import DeadLetter, QueuedJob
from assetpipe.exceptions import QueueUnavailableError
from assetpipe.observability.metrics import MetricsCollector
from assetpipe.queue.base import JobQueue
from assetpipe.types.job import DeadLetterRecord, Delivery, Job

logger = logging.getLogger(__name__)


class PostgresJobQueue(JobQueue):
    """
    Job queue stored in PostgreSQL.

    Many worker processes may share one table: row locks taken with SKIP
    LOCKED keep two leasers from claiming the same row, and every
    resolution only matches the row while the caller's receipt is current.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock | None = None,
        poll_interval: float = 1.0,
        fifo: bool = False,
        metrics: MetricsCollector | None = None,
    ):
        """
        Initialize the queue.

        Args:
            session_factory: Factory for database sessions.
            clock: Time source; defaults to wall-clock time.
            poll_interval: Seconds between lease attempts while waiting.
            fifo: Hand out visible jobs in enqueue order.
            metrics: Optional metrics collector.
        """
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._poll_interval = poll_interval
        self._fifo = fifo
        self._metrics = metrics

    def _owned(self, delivery: Delivery, now):
        return and_(
            QueuedJob.id == delivery.job_id,
            QueuedJob.receipt == delivery.receipt,
            QueuedJob.state == QueueRecordState.LEASED,
            QueuedJob.lease_expires_at > now,
        )

    async def enqueue(self, job: Job) -> str:
        now = self._clock.utcnow()
        try:
            async with session_scope(self._session_factory) as session:
                dead = await session.get(DeadLetter, job.id)
                if dead is not None:
                    logger.warning(
                        "Job is dead-lettered; replay it instead of re-enqueuing",
                        extra={"job_id": job.id},
                    )
                    return job.id

                stmt = insert(QueuedJob).values(
                    id=job.id,
                    object_key=job.object_key,
                    attempt=job.attempt,
                    payload=job.payload,
                    enqueued_at=job.enqueued_at,
                    state=QueueRecordState.QUEUED,
                    visible_at=now,
                ).on_conflict_do_nothing(index_elements=["id"])

                result = await session.execute(stmt)
        except (OperationalError, DBAPIError) as exc:
            raise QueueUnavailableError(f"Could not enqueue job {job.id}: {exc}") from exc

        if result.rowcount == 0:
            logger.info("Job already pending (idempotent)", extra={"job_id": job.id})
        return job.id

    async def _try_lease(self, visibility_timeout: float) -> Delivery | None:
        now = self._clock.utcnow()
        receipt = uuid4().hex
        lease_expires_at = now + timedelta(seconds=visibility_timeout)

        if self._fifo:
            ordering = (QueuedJob.enqueued_at.asc(), QueuedJob.id.asc())
        else:
            ordering = (QueuedJob.visible_at.asc(), QueuedJob.enqueued_at.asc())

        # Expired leases are reclaimed here too, as an implicit nack
        candidate = (
            select(QueuedJob.id)
            .where(
                or_(
                    and_(
                        QueuedJob.state == QueueRecordState.QUEUED,
                        QueuedJob.visible_at <= now,
                    ),
                    and_(
                        QueuedJob.state == QueueRecordState.LEASED,
                        QueuedJob.lease_expires_at <= now,
                    ),
                )
            )
            .order_by(*ordering)
            .limit(1)
            .with_for_update(skip_locked=True)
            .scalar_subquery()
        )

        stmt = (
            update(QueuedJob)
            .where(QueuedJob.id == candidate)
            .values(
                attempt=case(
                    (QueuedJob.state == QueueRecordState.LEASED, QueuedJob.attempt + 1),
                    else_=QueuedJob.attempt,
                ),
                state=QueueRecordState.LEASED,
                receipt=receipt,
                leased_at=now,
                lease_expires_at=lease_expires_at,
                updated_at=now,
            )
            .returning(QueuedJob)
        )

        async with session_scope(self._session_factory) as session:
            result = await session.execute(stmt)
            row = result.scalar_one_or_none()
            if row is None:
                return None
            return Delivery(
                job=row.to_job(),
                receipt=receipt,
                leased_at=now,
                lease_expires_at=lease_expires_at,
                last_error=row.last_error,
            )

    async def lease(
        self,
        visibility_timeout: float,
        wait_timeout: float | None = None,
    ) -> Delivery | None:
        if visibility_timeout <= 0:
            raise ValueError("visibility_timeout must be positive")

        deadline = None if wait_timeout is None else self._clock.time() + wait_timeout

        while True:
            delivery = await self._try_lease(visibility_timeout)
            if delivery is not None:
                return delivery

            pause = self._poll_interval
            if deadline is not None:
                remaining = deadline - self._clock.time()
                if remaining <= 0:
                    return None
                pause = min(pause, remaining)
            await self._clock.sleep(pause)

    async def ack(self, delivery: Delivery) -> bool:
        now = self._clock.utcnow()
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                delete(QueuedJob).where(self._owned(delivery, now))
            )
            return result.rowcount > 0

    async def nack(
        self,
        delivery: Delivery,
        delay: float,
        error: str | None = None,
    ) -> bool:
        now = self._clock.utcnow()
        stmt = (
            update(QueuedJob)
            .where(self._owned(delivery, now))
            .values(
                state=QueueRecordState.QUEUED,
                attempt=QueuedJob.attempt + 1,
                visible_at=now + timedelta(seconds=max(0.0, delay)),
                receipt=None,
                leased_at=None,
                lease_expires_at=None,
                last_error=error,
                updated_at=now,
            )
        )
        async with session_scope(self._session_factory) as session:
            result = await session.execute(stmt)
            return result.rowcount > 0

    async def extend(self, delivery: Delivery, visibility_timeout: float) -> bool:
        now = self._clock.utcnow()
        stmt = (
            update(QueuedJob)
            .where(self._owned(delivery, now))
            .values(
                lease_expires_at=now + timedelta(seconds=visibility_timeout),
                updated_at=now,
            )
        )
        async with session_scope(self._session_factory) as session:
            result = await session.execute(stmt)
            return result.rowcount > 0

    async def dead_letter(self, delivery: Delivery, reason: str) -> bool:
        now = self._clock.utcnow()
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                delete(QueuedJob)
                .where(self._owned(delivery, now))
                .returning(QueuedJob)
            )
            row = result.scalar_one_or_none()
            if row is None:
                return False

            await session.execute(
                insert(DeadLetter).values(
                    job_id=row.id,
                    object_key=row.object_key,
                    attempt=row.attempt,
                    payload=row.payload,
                    last_error=reason,
                    enqueued_at=row.enqueued_at,
                    dead_lettered_at=now,
                ).on_conflict_do_nothing(index_elements=["job_id"])
            )
        return True

    async def list_dead_letters(self, limit: int = 100) -> list[DeadLetterRecord]:
        stmt = (
            select(DeadLetter)
            .order_by(DeadLetter.dead_lettered_at.desc())
            .limit(limit)
        )
        async with session_scope(self._session_factory) as session:
            result = await session.execute(stmt)
            return [row.to_record() for row in result.scalars().all()]

    async def get_dead_letter(self, job_id: str) -> DeadLetterRecord | None:
        async with session_scope(self._session_factory) as session:
            row = await session.get(DeadLetter, job_id)
            return row.to_record() if row is not None else None

    async def replay_dead_letter(
        self,
        job_id: str,
        reset_attempts: bool = True,
    ) -> Job | None:
        now = self._clock.utcnow()
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                delete(DeadLetter)
                .where(DeadLetter.job_id == job_id)
                .returning(DeadLetter)
            )
            record = result.scalar_one_or_none()
            if record is None:
                return None

            job = Job(
                id=record.job_id,
                object_key=record.object_key,
                attempt=0 if reset_attempts else record.attempt,
                enqueued_at=record.enqueued_at or now,
                payload=record.payload or {},
            )
            await session.execute(
                insert(QueuedJob).values(
                    id=job.id,
                    object_key=job.object_key,
                    attempt=job.attempt,
                    payload=job.payload,
                    enqueued_at=job.enqueued_at,
                    state=QueueRecordState.QUEUED,
                    visible_at=now,
                ).on_conflict_do_nothing(index_elements=["id"])
            )

        logger.info("Job replayed from dead letters", extra={"job_id": job_id})
        return job

    async def is_pending(self, job_id: str) -> bool:
        async with session_scope(self._session_factory) as session:
            return await session.get(QueuedJob, job_id) is not None

    async def depth(self) -> int:
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                select(func.count()).select_from(QueuedJob)
            )
            return result.scalar() or 0

    async def requeue_expired(self) -> int:
        now = self._clock.utcnow()
        stmt = (
            update(QueuedJob)
            .where(
                and_(
                    QueuedJob.state == QueueRecordState.LEASED,
                    QueuedJob.lease_expires_at <= now,
                )
            )
            .values(
                state=QueueRecordState.QUEUED,
                attempt=QueuedJob.attempt + 1,
                visible_at=now,
                receipt=None,
                leased_at=None,
                lease_expires_at=None,
                updated_at=now,
            )
        )
        async with session_scope(self._session_factory) as session:
            result = await session.execute(stmt)
            count = result.rowcount

        if count > 0:
            logger.info(f"Returned {count} jobs with expired leases to the queue")
            if self._metrics is not None:
                self._metrics.record_leases_expired(count)
        return count
