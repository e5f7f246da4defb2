"""
Job producer.

The producer is fire-and-forget: it stages the input object, enqueues a job
that references it and returns the job id without waiting for processing.
Only enqueue-time failures reach the caller.
"""

import logging
from typing import Any

from assetpipe.clock import Clock, SystemClock
from assetpipe.constants import SPAN_ENQUEUE_JOB
from assetpipe.exceptions import ObjectNotFoundError
from assetpipe.observability.metrics import MetricsCollector, get_metrics
from assetpipe.observability.tracing import get_tracer
from assetpipe.queue.base import JobQueue
from assetpipe.storage.base import ObjectStore
from assetpipe.types.job import Job, new_job_id

logger = logging.getLogger(__name__)


class Producer:
    """Entry point that turns stored objects into queued jobs."""

    def __init__(
        self,
        queue: JobQueue,
        store: ObjectStore,
        clock: Clock | None = None,
        metrics: MetricsCollector | None = None,
    ):
        self._queue = queue
        self._store = store
        self._clock = clock or SystemClock()
        self._metrics = metrics or get_metrics()

    async def submit(
        self,
        object_key: str,
        payload: dict[str, Any] | None = None,
        *,
        data: bytes | None = None,
        job_id: str | None = None,
    ) -> str:
        """
        Enqueue a job for ``object_key``.

        Args:
            object_key: Key of the input object.
            payload: Processor metadata carried unchanged with the job.
            data: When given, written to the store under ``object_key`` first.
            job_id: Caller-chosen id; resubmitting a pending id is a no-op.

        Returns:
            The job id.

        Raises:
            ObjectNotFoundError: If no data is given and the object does not exist.
            QueueUnavailableError: If the queue rejects the job.
        """
        if data is not None:
            await self._store.put(object_key, data)
        elif not await self._store.exists(object_key):
            raise ObjectNotFoundError(object_key)

        job = Job(
            id=job_id or new_job_id(),
            object_key=object_key,
            attempt=0,
            enqueued_at=self._clock.utcnow(),
            payload=payload or {},
        )

        with get_tracer().start_as_current_span(SPAN_ENQUEUE_JOB) as span:
            span.set_attribute("job_id", job.id)
            span.set_attribute("object_key", object_key)
            enqueued_id = await self._queue.enqueue(job)

        self._metrics.record_job_enqueued()
        logger.info(
            "Job submitted",
            extra={"job_id": enqueued_id, "object_key": object_key},
        )
        return enqueued_id
