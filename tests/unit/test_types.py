"""
Unit tests for the job wire format and records.
"""

import json
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from assetpipe.constants import ResultKind
from assetpipe.storage.memory import InMemoryObjectStore
from assetpipe.types.job import Job, ProcessingContext
from assetpipe.types.result import ProcessResult


class TestJobMessage:
    """Tests for Job serialization."""

    def test_message_uses_wire_field_names(self):
        job = Job(
            id="a1",
            object_key="in/a1.png",
            attempt=2,
            enqueued_at=datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
            payload={"processor": "thumbnail"},
        )

        message = json.loads(job.to_message())

        assert message["id"] == "a1"
        assert message["objectKey"] == "in/a1.png"
        assert message["attempt"] == 2
        assert message["enqueuedAt"].startswith("2026-01-02T03:04:05")
        assert message["payload"] == {"processor": "thumbnail"}

    def test_from_message_tolerates_unknown_fields(self):
        """Unknown top-level fields are ignored and payload fields kept."""
        raw = json.dumps({
            "id": "b2",
            "objectKey": "in/b2.jpg",
            "attempt": 0,
            "enqueuedAt": "2026-03-01T12:00:00+00:00",
            "payload": {"size": 64, "futureField": {"nested": True}},
            "priority": "high",
        })

        job = Job.from_message(raw)

        assert job.id == "b2"
        assert job.object_key == "in/b2.jpg"
        assert job.payload["futureField"] == {"nested": True}

    def test_rejects_negative_attempt(self):
        with pytest.raises(ValidationError):
            Job(object_key="k", attempt=-1, enqueued_at=datetime.now(timezone.utc))

    def test_job_is_immutable(self, make_job):
        job = make_job()

        with pytest.raises(ValidationError):
            job.attempt = 3

    def test_id_assigned_when_missing(self):
        job = Job(object_key="k", enqueued_at=datetime.now(timezone.utc))

        assert job.id


class TestRedelivery:
    """Tests for attempt handling across redeliveries."""

    def test_redelivered_keeps_id_and_payload(self, make_job):
        job = make_job(payload={"processor": "copy"})

        again = job.redelivered(job.attempt + 1)

        assert again.id == job.id
        assert again.payload == job.payload
        assert again.attempt == 1
        assert job.attempt == 0

    def test_redelivered_payload_is_independent(self, make_job):
        job = make_job(payload={"processor": "thumbnail", "options": {"size": 64}})

        again = job.redelivered(1)
        again.payload["options"]["size"] = 8

        assert job.payload["options"]["size"] == 64

    def test_redelivered_rejects_lower_attempt(self, make_job):
        job = make_job(attempt=3)

        with pytest.raises(ValueError):
            job.redelivered(2)


class TestProcessingContext:
    """Tests for ProcessingContext."""

    def test_is_last_attempt(self, make_job):
        context = ProcessingContext(
            job=make_job(attempt=4),
            store=InMemoryObjectStore(),
            max_attempts=5,
            lease_expires_at=datetime.now(timezone.utc),
        )

        assert context.is_last_attempt is True
        assert context.remaining_attempts == 0

    def test_remaining_attempts(self, make_job):
        context = ProcessingContext(
            job=make_job(attempt=1),
            store=InMemoryObjectStore(),
            max_attempts=5,
            lease_expires_at=datetime.now(timezone.utc),
        )

        assert context.attempt == 1
        assert context.is_last_attempt is False
        assert context.remaining_attempts == 3


class TestProcessResult:
    """Tests for ProcessResult constructors."""

    def test_constructors(self):
        assert ProcessResult.success("out/k").kind == ResultKind.SUCCEEDED
        assert ProcessResult.success("out/k").succeeded is True
        assert ProcessResult.transient("x").kind == ResultKind.TRANSIENT
        assert ProcessResult.permanent("x").kind == ResultKind.PERMANENT
        assert ProcessResult.unknown("x").kind == ResultKind.UNKNOWN
        assert ProcessResult.permanent("x").succeeded is False
