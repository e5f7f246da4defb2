"""
Retry and dead-letter policy.

Maps the classification returned by a processing function to the next
state of the delivery. The policy has no clock of its own: delays are
plain numbers handed to the queue, and jitter comes from an injectable
random source, so every decision is reproducible in tests.
"""

import random
from dataclasses import dataclass

from assetpipe.config import Settings
from assetpipe.constants import DeadLetterReason, JobState, ResultKind
from assetpipe.types.job import Job
from assetpipe.types.result import ProcessResult


@dataclass(frozen=True)
class Resolution:
    """What the worker should do with a delivery."""

    state: JobState
    delay: float = 0.0
    reason: DeadLetterReason | None = None
    error: str | None = None


class RetryPolicy:
    """
    Bounded exponential backoff with dead-lettering.

    ``max_attempts`` is the total number of processing invocations a job
    may receive. Attempts are numbered from 0, so a job whose attempt has
    reached ``max_attempts`` is a poison pill.
    """

    def __init__(
        self,
        max_attempts: int,
        base_delay: float,
        max_delay: float,
        jitter: float = 0.0,
        rng: random.Random | None = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if not 0.0 <= jitter <= 1.0:
            raise ValueError("jitter must be between 0 and 1")
        if max_delay < base_delay:
            raise ValueError("max_delay must not be below base_delay")

        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self._rng = rng or random.Random()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        rng: random.Random | None = None,
    ) -> "RetryPolicy":
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.backoff_base_seconds,
            max_delay=settings.backoff_max_seconds,
            jitter=settings.backoff_jitter,
            rng=rng,
        )

    def backoff(self, attempt: int) -> float:
        """
        Delay before redelivering a job that failed on ``attempt``.

        ``base * 2**attempt`` capped at ``max_delay``. Jitter only shortens
        the delay (by up to ``jitter`` of it), so the cap always holds.
        """
        # Past this exponent the cap always wins; avoids float overflow
        exponent = min(attempt, 64)
        delay = min(self.max_delay, self.base_delay * (2 ** exponent))
        if self.jitter:
            delay -= delay * self.jitter * self._rng.random()
        return delay

    def is_poison(self, attempt: int) -> bool:
        """Check whether a job on ``attempt`` has used up its invocations."""
        return attempt >= self.max_attempts

    def resolve(self, job: Job, result: ProcessResult) -> Resolution:
        """Decide the transition out of PROCESSING for ``job``."""
        if result.kind == ResultKind.SUCCEEDED:
            return Resolution(state=JobState.COMPLETED)

        error = result.error or f"{result.kind} failure"

        if result.kind == ResultKind.PERMANENT:
            return Resolution(
                state=JobState.DEAD_LETTERED,
                reason=DeadLetterReason.PERMANENT,
                error=error,
            )

        # TRANSIENT and UNKNOWN are retried
        if self.is_poison(job.attempt + 1):
            return Resolution(
                state=JobState.DEAD_LETTERED,
                reason=DeadLetterReason.POISON_PILL,
                error=error,
            )

        return Resolution(
            state=JobState.RETRY_SCHEDULED,
            delay=self.backoff(job.attempt),
            error=error,
        )
