"""
In-process job queue.

All state lives in the event loop that uses the queue; operations run
between await points, so no locks are needed. Waiting leasers sleep until
either the queue changes or the earliest delayed or leased job falls due on
the injected clock.
"""

import asyncio
import copy
import itertools
import logging
from dataclasses import dataclass
from uuid import uuid4

from assetpipe.clock import Clock, SystemClock, to_datetime
from assetpipe.observability.metrics import MetricsCollector
from assetpipe.queue.base import JobQueue
from assetpipe.types.job import DeadLetterRecord, Delivery, Job

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    job: Job
    sequence: int
    visible_at: float
    receipt: str | None = None
    lease_expires_at: float | None = None
    last_error: str | None = None

    @property
    def is_leased(self) -> bool:
        return self.receipt is not None


class InMemoryJobQueue(JobQueue):
    """
    Job queue held in memory.

    With ``fifo=True`` visible jobs are handed out in enqueue order;
    otherwise the job that became visible first goes first, which lets
    redeliveries overtake jobs enqueued after them.
    """

    def __init__(
        self,
        clock: Clock | None = None,
        fifo: bool = False,
        metrics: MetricsCollector | None = None,
    ):
        self._clock = clock or SystemClock()
        self._fifo = fifo
        self._metrics = metrics
        self._entries: dict[str, _Entry] = {}
        self._dead_letters: dict[str, DeadLetterRecord] = {}
        self._sequence = itertools.count()
        self._changed = asyncio.Event()

    # Internal helpers

    def _notify(self) -> None:
        self._changed.set()
        self._changed = asyncio.Event()

    def _expire_leases(self, now: float) -> int:
        expired = 0
        for entry in self._entries.values():
            if entry.is_leased and entry.lease_expires_at <= now:
                entry.job = entry.job.redelivered(entry.job.attempt + 1)
                entry.receipt = None
                entry.lease_expires_at = None
                entry.visible_at = now
                expired += 1
                logger.info(
                    "Lease expired, job returned to queue",
                    extra={"job_id": entry.job.id, "attempt": entry.job.attempt},
                )
        if expired:
            if self._metrics is not None:
                self._metrics.record_leases_expired(expired)
            self._notify()
        return expired

    def _next_visible(self, now: float) -> _Entry | None:
        candidates = [
            entry
            for entry in self._entries.values()
            if not entry.is_leased and entry.visible_at <= now
        ]
        if not candidates:
            return None
        if self._fifo:
            return min(candidates, key=lambda entry: entry.sequence)
        return min(candidates, key=lambda entry: (entry.visible_at, entry.sequence))

    def _next_due(self) -> float | None:
        due = [
            entry.lease_expires_at if entry.is_leased else entry.visible_at
            for entry in self._entries.values()
        ]
        return min(due) if due else None

    def _owned_entry(self, delivery: Delivery) -> _Entry | None:
        self._expire_leases(self._clock.time())
        entry = self._entries.get(delivery.job_id)
        if entry is None or entry.receipt != delivery.receipt:
            logger.debug(
                "Ignoring stale delivery",
                extra={"job_id": delivery.job_id, "receipt": delivery.receipt},
            )
            return None
        return entry

    async def _wait_for_change(self, timeout: float | None) -> None:
        changed = self._changed
        if timeout is None:
            await changed.wait()
            return

        waiter = asyncio.ensure_future(changed.wait())
        sleeper = asyncio.ensure_future(self._clock.sleep(timeout))
        try:
            await asyncio.wait(
                {waiter, sleeper}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            waiter.cancel()
            sleeper.cancel()

    # JobQueue contract

    async def enqueue(self, job: Job) -> str:
        if job.id in self._entries:
            logger.info("Job already pending (idempotent)", extra={"job_id": job.id})
            return job.id
        if job.id in self._dead_letters:
            logger.warning(
                "Job is dead-lettered; replay it instead of re-enqueuing",
                extra={"job_id": job.id},
            )
            return job.id

        # The queue keeps its own copy; deliveries never share its payload
        self._entries[job.id] = _Entry(
            job=job.model_copy(deep=True),
            sequence=next(self._sequence),
            visible_at=self._clock.time(),
        )
        logger.debug("Enqueued job", extra={"job_id": job.id})
        self._notify()
        return job.id

    async def lease(
        self,
        visibility_timeout: float,
        wait_timeout: float | None = None,
    ) -> Delivery | None:
        if visibility_timeout <= 0:
            raise ValueError("visibility_timeout must be positive")

        deadline = None if wait_timeout is None else self._clock.time() + wait_timeout

        while True:
            now = self._clock.time()
            self._expire_leases(now)

            entry = self._next_visible(now)
            if entry is not None:
                entry.receipt = uuid4().hex
                entry.lease_expires_at = now + visibility_timeout
                return Delivery(
                    job=entry.job.model_copy(deep=True),
                    receipt=entry.receipt,
                    leased_at=to_datetime(now),
                    lease_expires_at=to_datetime(entry.lease_expires_at),
                    last_error=entry.last_error,
                )

            waits = []
            if deadline is not None:
                if now >= deadline:
                    return None
                waits.append(deadline - now)
            due = self._next_due()
            if due is not None:
                waits.append(max(0.0, due - now))

            await self._wait_for_change(min(waits) if waits else None)

    async def ack(self, delivery: Delivery) -> bool:
        if self._owned_entry(delivery) is None:
            return False
        del self._entries[delivery.job_id]
        return True

    async def nack(
        self,
        delivery: Delivery,
        delay: float,
        error: str | None = None,
    ) -> bool:
        entry = self._owned_entry(delivery)
        if entry is None:
            return False

        entry.job = entry.job.redelivered(entry.job.attempt + 1)
        entry.receipt = None
        entry.lease_expires_at = None
        entry.visible_at = self._clock.time() + max(0.0, delay)
        entry.last_error = error
        self._notify()
        return True

    async def extend(self, delivery: Delivery, visibility_timeout: float) -> bool:
        entry = self._owned_entry(delivery)
        if entry is None:
            return False
        entry.lease_expires_at = self._clock.time() + visibility_timeout
        return True

    async def dead_letter(self, delivery: Delivery, reason: str) -> bool:
        entry = self._owned_entry(delivery)
        if entry is None:
            return False

        del self._entries[delivery.job_id]
        job = entry.job
        self._dead_letters[job.id] = DeadLetterRecord(
            job_id=job.id,
            object_key=job.object_key,
            attempt=job.attempt,
            last_error=reason,
            dead_lettered_at=self._clock.utcnow(),
            payload=copy.deepcopy(job.payload),
            enqueued_at=job.enqueued_at,
        )
        return True

    async def list_dead_letters(self, limit: int = 100) -> list[DeadLetterRecord]:
        records = sorted(
            self._dead_letters.values(),
            key=lambda record: record.dead_lettered_at,
            reverse=True,
        )
        return records[:limit]

    async def get_dead_letter(self, job_id: str) -> DeadLetterRecord | None:
        return self._dead_letters.get(job_id)

    async def replay_dead_letter(
        self,
        job_id: str,
        reset_attempts: bool = True,
    ) -> Job | None:
        record = self._dead_letters.pop(job_id, None)
        if record is None:
            return None

        job = Job(
            id=record.job_id,
            object_key=record.object_key,
            attempt=0 if reset_attempts else record.attempt,
            enqueued_at=record.enqueued_at or self._clock.utcnow(),
            payload=copy.deepcopy(record.payload),
        )
        await self.enqueue(job)
        logger.info("Job replayed from dead letters", extra={"job_id": job_id})
        return job

    async def is_pending(self, job_id: str) -> bool:
        return job_id in self._entries

    async def depth(self) -> int:
        return len(self._entries)

    async def requeue_expired(self) -> int:
        return self._expire_leases(self._clock.time())
