"""
Job queue contract.
"""

from abc import ABC, abstractmethod

from assetpipe.types.job import DeadLetterRecord, Delivery, Job


class JobQueue(ABC):
    """
    Durable, at-least-once delivery channel for jobs.

    A leased job stays invisible to other leasers until its delivery is
    acked, nacked or dead-lettered, or until the visibility timeout expires.
    Expiry counts as an implicit nack with zero delay, so the next delivery
    carries ``attempt + 1``.

    Resolution calls take the Delivery returned by ``lease``. A delivery
    whose receipt is no longer current (already resolved, expired, or
    superseded by a later lease) is stale: resolving it is a no-op that
    returns False, never an error.

    Delivery order across jobs is not guaranteed.
    """

    @abstractmethod
    async def enqueue(self, job: Job) -> str:
        """
        Add a job to the queue.

        Enqueuing an id that is already pending is a no-op.

        Returns:
            The job id.

        Raises:
            QueueUnavailableError: If the queue cannot accept the job.
        """

    @abstractmethod
    async def lease(
        self,
        visibility_timeout: float,
        wait_timeout: float | None = None,
    ) -> Delivery | None:
        """
        Lease the next visible job.

        Args:
            visibility_timeout: Seconds the job stays hidden from other leasers.
            wait_timeout: Seconds to wait for a job; None waits indefinitely.

        Returns:
            A Delivery, or None if nothing became visible in time.
        """

    @abstractmethod
    async def ack(self, delivery: Delivery) -> bool:
        """Remove the job for good. Returns False for a stale delivery."""

    @abstractmethod
    async def nack(
        self,
        delivery: Delivery,
        delay: float,
        error: str | None = None,
    ) -> bool:
        """
        Return the job to the queue, visible no sooner than ``delay`` seconds
        from now, with its attempt count incremented.
        """

    @abstractmethod
    async def extend(self, delivery: Delivery, visibility_timeout: float) -> bool:
        """Push the lease expiry to ``visibility_timeout`` seconds from now."""

    @abstractmethod
    async def dead_letter(self, delivery: Delivery, reason: str) -> bool:
        """
        Remove the job from the main queue permanently and write a
        dead-letter record with ``reason`` as its last error.
        """

    @abstractmethod
    async def list_dead_letters(self, limit: int = 100) -> list[DeadLetterRecord]:
        """List dead-letter records, newest first."""

    @abstractmethod
    async def get_dead_letter(self, job_id: str) -> DeadLetterRecord | None:
        """Look up the dead-letter record of a job."""

    @abstractmethod
    async def replay_dead_letter(
        self,
        job_id: str,
        reset_attempts: bool = True,
    ) -> Job | None:
        """
        Move a dead-lettered job back to the main queue.

        Returns:
            The re-queued job, or None if no dead-letter record exists.
        """

    @abstractmethod
    async def is_pending(self, job_id: str) -> bool:
        """Check whether the job is queued, delayed or leased."""

    @abstractmethod
    async def depth(self) -> int:
        """Number of jobs held by the main queue, leased ones included."""

    @abstractmethod
    async def requeue_expired(self) -> int:
        """
        Return every job whose lease has expired to the queue.

        Returns:
            Number of jobs returned.
        """

    async def close(self) -> None:
        """Release backend resources."""
