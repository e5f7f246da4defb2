"""
Worker pool for processing jobs.

Each worker runs an explicit loop: lease a job, consult the idempotency
ledger, invoke the processing function, and resolve the delivery with ack,
nack (backoff) or dead-letter. Workers share nothing but the queue, the
ledger and the object store.
"""

import asyncio
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable

from assetpipe.clock import Clock, SystemClock
from assetpipe.config import Settings
from assetpipe.constants import SPAN_PROCESS_JOB, DeadLetterReason, JobState
from assetpipe.ledger.base import IdempotencyLedger
from assetpipe.observability.logging import bind_job_context, clear_job_context
from assetpipe.observability.metrics import MetricsCollector, get_metrics
from assetpipe.observability.tracing import get_tracer
from assetpipe.queue.base import JobQueue
from assetpipe.storage.base import ObjectStore
from assetpipe.types.job import Delivery, ProcessingContext
from assetpipe.types.result import ProcessResult
from assetpipe.worker.policy import Resolution, RetryPolicy
from assetpipe.worker.processors import ProcessFn

logger = logging.getLogger(__name__)


@dataclass
class DrainReport:
    """Outcome of stopping the pool."""

    in_flight: int = 0
    resolved: int = 0
    abandoned: list[str] = field(default_factory=list)


class WorkerPool:
    """
    Bounded pool of asyncio workers.

    Features:
    - Explicit lease/ack/nack loop per worker
    - Duplicate suppression through the idempotency ledger
    - Bounded exponential backoff and dead-lettering via RetryPolicy
    - Optional heartbeat extending the lease of long-running deliveries
    - Graceful drain on stop, abandoning what does not finish in time
    """

    def __init__(
        self,
        queue: JobQueue,
        ledger: IdempotencyLedger,
        store: ObjectStore,
        settings: Settings,
        *,
        clock: Clock | None = None,
        policy: RetryPolicy | None = None,
        metrics: MetricsCollector | None = None,
        pool_id: str | None = None,
    ):
        """
        Initialize the pool.

        Args:
            queue: Queue to lease jobs from.
            ledger: Idempotency ledger consulted before every invocation.
            store: Object store handed to processing functions.
            settings: Application settings.
            clock: Time source; defaults to wall-clock time.
            policy: Retry policy; defaults to one built from settings.
            metrics: Metrics collector; defaults to the process-wide one.
            pool_id: Identifier used in logs and metrics. Defaults to hostname + PID.
        """
        self._queue = queue
        self._ledger = ledger
        self._store = store
        self._clock = clock or SystemClock()
        self._policy = policy or RetryPolicy.from_settings(settings)
        self._metrics = metrics or get_metrics()

        self.pool_id = pool_id or f"{os.uname().nodename}-{os.getpid()}"
        self.visibility_timeout = settings.visibility_timeout_seconds
        self.lease_wait = settings.worker_lease_wait_seconds
        self.heartbeat_interval = settings.worker_heartbeat_interval_seconds
        self.error_backoff = settings.queue_poll_interval_seconds

        self._accepting = False
        self._stopping: asyncio.Event | None = None
        self._process_fn: ProcessFn | None = None
        self._workers: list[asyncio.Task] = []
        self._in_flight: dict[str, Delivery] = {}

    @property
    def accepting_work(self) -> bool:
        """True while the pool is leasing new jobs."""
        return self._accepting

    @property
    def in_flight(self) -> int:
        """Number of deliveries currently being handled."""
        return len(self._in_flight)

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    async def start(self, concurrency: int, process_fn: ProcessFn) -> None:
        """
        Start ``concurrency`` worker loops running ``process_fn``.

        Returns once the loops are scheduled; use ``stop`` to end them.
        """
        if self._workers:
            raise RuntimeError("Worker pool is already running")
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        self._process_fn = process_fn
        self._stopping = asyncio.Event()
        self._accepting = True
        self._metrics.set_accepting_work(True)

        self._workers = [
            asyncio.create_task(
                self._worker_loop(f"{self.pool_id}-{index}"),
                name=f"assetpipe-worker-{index}",
            )
            for index in range(concurrency)
        ]

        logger.info(
            "Worker pool started",
            extra={"pool_id": self.pool_id, "concurrency": concurrency},
        )

    async def stop(self, drain_timeout: float) -> DrainReport:
        """
        Stop leasing and drain in-flight deliveries.

        Waits up to ``drain_timeout`` seconds for in-flight deliveries to be
        resolved, then cancels the rest. Cancelled deliveries are left
        unresolved and come back through visibility-timeout expiry.
        """
        if not self._workers:
            return DrainReport()

        self._accepting = False
        self._metrics.set_accepting_work(False)
        self._stopping.set()

        seen = set(self._in_flight)
        logger.info(
            "Worker pool stopping",
            extra={"pool_id": self.pool_id, "in_flight": len(seen)},
        )

        _, pending = await asyncio.wait(self._workers, timeout=drain_timeout)

        abandoned = dict(self._in_flight)
        seen.update(abandoned)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        self._workers = []
        report = DrainReport(
            in_flight=len(seen),
            resolved=len(seen) - len(abandoned),
            abandoned=[delivery.job_id for delivery in abandoned.values()],
        )

        if report.abandoned:
            logger.warning(
                "Abandoned deliveries after drain timeout",
                extra={"pool_id": self.pool_id, "job_ids": report.abandoned},
            )
        logger.info(
            "Worker pool stopped",
            extra={
                "pool_id": self.pool_id,
                "resolved": report.resolved,
                "abandoned": len(report.abandoned),
            },
        )
        return report

    async def _unless_stopping(self, awaitable: Awaitable[Any]) -> asyncio.Future | None:
        """
        Run ``awaitable`` until it finishes or stop begins, whichever is first.

        Returns:
            The finished future, or None if it was cancelled because of stop.
        """
        task = asyncio.ensure_future(awaitable)
        stopping = asyncio.ensure_future(self._stopping.wait())
        try:
            await asyncio.wait({task, stopping}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopping.cancel()
            if not task.done():
                task.cancel()
        return task if task.done() and not task.cancelled() else None

    async def _worker_loop(self, worker_id: str) -> None:
        logger.debug("Worker loop started", extra={"worker_id": worker_id})

        while self._accepting:
            leased = await self._unless_stopping(
                self._queue.lease(self.visibility_timeout, wait_timeout=self.lease_wait)
            )
            if leased is None:
                break

            try:
                delivery = leased.result()
            except Exception:
                logger.exception("Failed to lease a job", extra={"worker_id": worker_id})
                await self._unless_stopping(self._clock.sleep(self.error_backoff))
                continue

            if delivery is None:
                continue

            self._metrics.record_lease_acquired(worker_id)
            await self._handle(delivery, worker_id)

        logger.debug("Worker loop exited", extra={"worker_id": worker_id})

    async def _handle(self, delivery: Delivery, worker_id: str) -> None:
        """Process one delivery and make sure it is resolved or logged."""
        job = delivery.job
        self._in_flight[delivery.receipt] = delivery
        self._metrics.set_in_flight(len(self._in_flight))
        bind_job_context(job.id, job.attempt)

        heartbeat = None
        if self.heartbeat_interval > 0:
            heartbeat = asyncio.create_task(self._heartbeat(delivery))

        start_time = time.monotonic()
        try:
            with get_tracer().start_as_current_span(SPAN_PROCESS_JOB) as span:
                span.set_attribute("job_id", job.id)
                span.set_attribute("attempt", job.attempt)
                span.set_attribute("worker_id", worker_id)

                outcome = await self._process(delivery)
                span.set_attribute("outcome", outcome)

            self._metrics.record_resolution(outcome, time.monotonic() - start_time)

        except asyncio.CancelledError:
            logger.warning(
                "Delivery abandoned before resolution",
                extra={"job_id": job.id, "worker_id": worker_id},
            )
            raise
        except Exception:
            # Unresolved deliveries come back after the visibility timeout
            logger.exception(
                "Failed to resolve delivery",
                extra={"job_id": job.id, "worker_id": worker_id},
            )
        finally:
            if heartbeat is not None:
                heartbeat.cancel()
            self._in_flight.pop(delivery.receipt, None)
            self._metrics.set_in_flight(len(self._in_flight))
            clear_job_context()

    async def _process(self, delivery: Delivery) -> str:
        """
        Run the state machine for one delivery.

        Returns:
            Outcome label for metrics.
        """
        job = delivery.job

        if await self._ledger.has_completed(job.id):
            logger.info(
                "Job already completed, acknowledging duplicate delivery",
                extra={"job_id": job.id, "attempt": job.attempt},
            )
            await self._queue.ack(delivery)
            self._metrics.record_duplicate()
            return "duplicate"

        if self._policy.is_poison(job.attempt):
            error = f"exceeded {self._policy.max_attempts} attempts"
            if delivery.last_error:
                error = f"{error}; last error: {delivery.last_error}"
            await self._dead_letter(delivery, DeadLetterReason.POISON_PILL, error)
            return JobState.DEAD_LETTERED.value

        logger.info(
            "Processing job",
            extra={"job_id": job.id, "object_key": job.object_key, "attempt": job.attempt},
        )
        result = await self._invoke(delivery)
        resolution = self._policy.resolve(job, result)

        if resolution.state == JobState.COMPLETED:
            try:
                await self._complete(delivery, result)
                return JobState.COMPLETED.value
            except Exception as e:
                logger.warning(
                    "Could not record completion, treating as transient",
                    extra={"job_id": job.id, "error": str(e)},
                )
                resolution = self._policy.resolve(
                    job, ProcessResult.transient(f"completion failed: {e}")
                )

        await self._apply(delivery, resolution)
        return resolution.state.value

    async def _invoke(self, delivery: Delivery) -> ProcessResult:
        """Call the processing function and normalize what comes back."""
        context = ProcessingContext(
            job=delivery.job,
            store=self._store,
            max_attempts=self._policy.max_attempts,
            lease_expires_at=delivery.lease_expires_at,
        )

        try:
            result = await self._process_fn(context)
        except Exception as e:
            logger.exception(
                "Processing function raised",
                extra={"job_id": delivery.job_id, "error": str(e)},
            )
            return ProcessResult.unknown(f"{type(e).__name__}: {e}")

        if not isinstance(result, ProcessResult):
            return ProcessResult.unknown(
                f"processing function returned {type(result).__name__}"
            )
        if result.succeeded and not result.result_key:
            return ProcessResult.unknown("processing function succeeded without a result key")
        return result

    async def _complete(self, delivery: Delivery, result: ProcessResult) -> None:
        job = delivery.job

        if result.output is not None:
            await self._store.put(result.result_key, result.output)

        created = await self._ledger.record_completion(job.id, result.result_key)
        if not created:
            logger.info(
                "Completion was already recorded by another delivery",
                extra={"job_id": job.id},
            )

        if not await self._queue.ack(delivery):
            logger.warning(
                "Ack ignored, lease expired before completion",
                extra={"job_id": job.id},
            )

        logger.info(
            "Job completed",
            extra={"job_id": job.id, "result_key": result.result_key},
        )

    async def _apply(self, delivery: Delivery, resolution: Resolution) -> None:
        job = delivery.job

        if resolution.state == JobState.RETRY_SCHEDULED:
            applied = await self._queue.nack(
                delivery, resolution.delay, error=resolution.error
            )
            self._metrics.record_retry(resolution.delay)
            logger.warning(
                "Job failed, retry scheduled",
                extra={
                    "job_id": job.id,
                    "attempt": job.attempt,
                    "delay": resolution.delay,
                    "error": resolution.error,
                    "applied": applied,
                },
            )
            return

        await self._dead_letter(delivery, resolution.reason, resolution.error)

    async def _dead_letter(
        self,
        delivery: Delivery,
        reason: DeadLetterReason,
        error: str | None,
    ) -> None:
        applied = await self._queue.dead_letter(delivery, f"{reason}: {error}")
        self._metrics.record_dead_letter(reason.value)
        logger.warning(
            "Job dead-lettered",
            extra={
                "job_id": delivery.job_id,
                "attempt": delivery.job.attempt,
                "reason": reason.value,
                "error": error,
                "applied": applied,
            },
        )

    async def _heartbeat(self, delivery: Delivery) -> None:
        """
        Periodically extend the lease of a running delivery.

        Stops once the queue no longer recognizes the receipt.
        """
        while True:
            await self._clock.sleep(self.heartbeat_interval)
            try:
                extended = await self._queue.extend(delivery, self.visibility_timeout)
            except Exception:
                logger.exception(
                    "Error extending lease", extra={"job_id": delivery.job_id}
                )
                continue

            if not extended:
                logger.warning("Lease lost", extra={"job_id": delivery.job_id})
                return
            logger.debug("Extended lease", extra={"job_id": delivery.job_id})
