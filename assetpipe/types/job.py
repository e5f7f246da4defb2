"""
Job-related type definitions.

Job is the queue wire message; Delivery, LedgerEntry and DeadLetterRecord
are the records the queue and ledger hand back to callers.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from assetpipe.storage.base import ObjectStore


def new_job_id() -> str:
    """Generate a fresh job identifier."""
    return uuid4().hex


class Job(BaseModel):
    """
    A unit of asynchronous work referencing a stored object.

    ``id`` is stable across redeliveries and ``attempt`` only ever grows.
    On the wire the message uses camelCase keys; unknown top-level keys are
    ignored and the payload is carried through untouched.
    """

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        extra="ignore",
    )

    id: str = Field(default_factory=new_job_id, min_length=1)
    object_key: str = Field(..., alias="objectKey", min_length=1)
    attempt: int = Field(default=0, ge=0)
    enqueued_at: datetime = Field(..., alias="enqueuedAt")
    payload: dict[str, Any] = Field(default_factory=dict)

    def to_message(self) -> bytes:
        """Serialize to the queue wire format."""
        return self.model_dump_json(by_alias=True).encode("utf-8")

    @classmethod
    def from_message(cls, message: bytes | str) -> "Job":
        """Parse a queue wire message."""
        return cls.model_validate_json(message)

    def redelivered(self, attempt: int) -> "Job":
        """Return the copy handed out on a later delivery; the payload is not shared."""
        if attempt < self.attempt:
            raise ValueError(
                f"attempt must not decrease (job {self.id}: {self.attempt} -> {attempt})"
            )
        return self.model_copy(update={"attempt": attempt}, deep=True)


@dataclass(frozen=True)
class Delivery:
    """
    Ownership token for one lease of a job.

    The receipt is unique per lease and is the only way to ack, nack,
    extend or dead-letter this particular delivery.
    """

    job: Job
    receipt: str
    leased_at: datetime
    lease_expires_at: datetime
    last_error: str | None = None

    @property
    def job_id(self) -> str:
        return self.job.id


@dataclass(frozen=True)
class LedgerEntry:
    """Completion record written once per job id."""

    job_id: str
    completed_at: datetime
    result_key: str


@dataclass(frozen=True)
class DeadLetterRecord:
    """Terminal record for a job that will not be processed again automatically."""

    job_id: str
    object_key: str
    attempt: int
    last_error: str | None
    dead_lettered_at: datetime
    payload: dict[str, Any]
    enqueued_at: datetime | None = None


@dataclass
class ProcessingContext:
    """
    Context passed to processing functions during execution.
    Contains the job, the object store and retry bookkeeping.
    """

    job: Job
    store: "ObjectStore"
    max_attempts: int
    lease_expires_at: datetime

    @property
    def attempt(self) -> int:
        return self.job.attempt

    @property
    def is_last_attempt(self) -> bool:
        """Check if this is the last retry attempt."""
        return self.job.attempt + 1 >= self.max_attempts

    @property
    def remaining_attempts(self) -> int:
        """Get remaining invocations after this one."""
        return max(0, self.max_attempts - self.job.attempt - 1)
