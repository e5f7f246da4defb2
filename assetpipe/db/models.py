"""
SQLAlchemy database models.
Defines the queue, dead-letter and ledger tables.
"""

from datetime import datetime

from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from assetpipe.constants import QueueRecordState
from assetpipe.types.job import DeadLetterRecord, Job, LedgerEntry


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class QueuedJob(Base):
    """
    A job held by the persistent queue.

    A row exists from enqueue until ack or dead-letter. ``receipt`` and
    ``lease_expires_at`` are set while the job is leased; a leased row whose
    lease has expired is eligible for leasing again with ``attempt + 1``.
    """

    __tablename__ = "pipeline_jobs"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    object_key: Mapped[str] = mapped_column(Text, nullable=False)
    attempt: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    payload: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    enqueued_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    state: Mapped[QueueRecordState] = mapped_column(
        Enum(
            QueueRecordState,
            name="queue_record_state",
            create_constraint=True,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=QueueRecordState.QUEUED,
    )
    visible_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    # Lease management
    receipt: Mapped[str | None] = mapped_column(String(64), nullable=True)
    leased_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    lease_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        Index(
            "ix_pipeline_jobs_lease_poll",
            "visible_at",
            postgresql_where=(Column("state") == QueueRecordState.QUEUED.value),
        ),
        Index(
            "ix_pipeline_jobs_lease_expiry",
            "lease_expires_at",
            postgresql_where=(Column("state") == QueueRecordState.LEASED.value),
        ),
    )

    def to_job(self) -> Job:
        return Job(
            id=self.id,
            object_key=self.object_key,
            attempt=self.attempt,
            enqueued_at=self.enqueued_at,
            payload=self.payload or {},
        )

    def __repr__(self) -> str:
        return (
            f"QueuedJob(id={self.id}, state={self.state}, attempt={self.attempt})"
        )


class DeadLetter(Base):
    """Terminal record of a job removed from the main queue."""

    __tablename__ = "pipeline_dead_letters"

    job_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    object_key: Mapped[str] = mapped_column(Text, nullable=False)
    attempt: Mapped[int] = mapped_column(Integer, nullable=False)
    payload: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    enqueued_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    dead_lettered_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )

    def to_record(self) -> DeadLetterRecord:
        return DeadLetterRecord(
            job_id=self.job_id,
            object_key=self.object_key,
            attempt=self.attempt,
            last_error=self.last_error,
            dead_lettered_at=self.dead_lettered_at,
            payload=self.payload or {},
            enqueued_at=self.enqueued_at,
        )


class LedgerRecord(Base):
    """Idempotency ledger row, inserted once per completed job id."""

    __tablename__ = "pipeline_ledger"

    job_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    result_key: Mapped[str] = mapped_column(Text, nullable=False)
    completed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )

    def to_entry(self) -> LedgerEntry:
        return LedgerEntry(
            job_id=self.job_id,
            completed_at=self.completed_at,
            result_key=self.result_key,
        )
