"""
Integration tests for the PostgreSQL queue and ledger.

These require a running PostgreSQL database; they are skipped unless
TEST_DATABASE_URL is set.
"""

import asyncio

import pytest

from assetpipe.ledger.postgres import PostgresLedger
from assetpipe.queue.postgres import PostgresJobQueue

VISIBILITY = 30.0


@pytest.fixture
def pg_queue(session_factory, clock, metrics) -> PostgresJobQueue:
    return PostgresJobQueue(session_factory, clock=clock, poll_interval=0.5, metrics=metrics)


@pytest.fixture
def pg_ledger(session_factory, clock) -> PostgresLedger:
    return PostgresLedger(session_factory, retention_seconds=3600, clock=clock)


class TestPostgresQueue:
    """Tests for PostgresJobQueue."""

    @pytest.mark.asyncio
    async def test_enqueue_lease_ack(self, pg_queue, make_job):
        job = make_job(payload={"processor": "thumbnail", "size": 64})

        await pg_queue.enqueue(job)
        delivery = await pg_queue.lease(VISIBILITY, wait_timeout=0)

        assert delivery.job_id == job.id
        assert delivery.job.payload == job.payload
        assert delivery.job.attempt == 0
        assert await pg_queue.ack(delivery) is True
        assert await pg_queue.depth() == 0

    @pytest.mark.asyncio
    async def test_enqueue_is_idempotent(self, pg_queue, make_job):
        job = make_job(job_id="dup")

        await pg_queue.enqueue(job)
        await pg_queue.enqueue(job)

        assert await pg_queue.depth() == 1

    @pytest.mark.asyncio
    async def test_concurrent_leases_are_exclusive(self, pg_queue, make_job):
        """SKIP LOCKED hands each job to exactly one leaser."""
        for index in range(5):
            await pg_queue.enqueue(make_job(job_id=f"c{index}"))

        deliveries = await asyncio.gather(
            *[pg_queue.lease(VISIBILITY, wait_timeout=0) for _ in range(8)]
        )

        leased = [delivery.job_id for delivery in deliveries if delivery is not None]
        assert len(leased) == len(set(leased))

        # A leaser that lost a race may come back empty; the rest are still there
        while (delivery := await pg_queue.lease(VISIBILITY, wait_timeout=0)) is not None:
            leased.append(delivery.job_id)
        assert sorted(leased) == [f"c{index}" for index in range(5)]

    @pytest.mark.asyncio
    async def test_expired_lease_is_reclaimed(self, pg_queue, clock, make_job):
        await pg_queue.enqueue(make_job(job_id="e1"))
        stale = await pg_queue.lease(VISIBILITY, wait_timeout=0)

        clock.advance(VISIBILITY + 1)
        current = await pg_queue.lease(VISIBILITY, wait_timeout=0)

        assert current.job_id == "e1"
        assert current.job.attempt == 1
        assert await pg_queue.ack(stale) is False
        assert await pg_queue.ack(current) is True

    @pytest.mark.asyncio
    async def test_nack_delays_and_increments(self, pg_queue, clock, make_job):
        await pg_queue.enqueue(make_job(job_id="n1"))
        delivery = await pg_queue.lease(VISIBILITY, wait_timeout=0)

        assert await pg_queue.nack(delivery, 2.0, error="store timeout") is True
        assert await pg_queue.lease(VISIBILITY, wait_timeout=0) is None

        clock.advance(2.0)
        again = await pg_queue.lease(VISIBILITY, wait_timeout=0)

        assert again.job.attempt == 1
        assert again.last_error == "store timeout"

    @pytest.mark.asyncio
    async def test_dead_letter_and_replay(self, pg_queue, make_job):
        job = make_job(job_id="d1", payload={"processor": "copy"})
        await pg_queue.enqueue(job)
        delivery = await pg_queue.lease(VISIBILITY, wait_timeout=0)

        assert await pg_queue.dead_letter(delivery, "permanent: bad input") is True
        assert await pg_queue.is_pending("d1") is False

        await pg_queue.enqueue(job)
        assert await pg_queue.is_pending("d1") is False

        record = await pg_queue.get_dead_letter("d1")
        assert record.last_error == "permanent: bad input"
        assert record.payload == {"processor": "copy"}

        replayed = await pg_queue.replay_dead_letter("d1")
        assert replayed.attempt == 0
        assert await pg_queue.is_pending("d1") is True
        assert await pg_queue.list_dead_letters() == []

    @pytest.mark.asyncio
    async def test_requeue_expired(self, pg_queue, clock, make_job):
        await pg_queue.enqueue(make_job(job_id="r1"))
        await pg_queue.lease(5.0, wait_timeout=0)

        clock.advance(6.0)

        assert await pg_queue.requeue_expired() == 1
        delivery = await pg_queue.lease(VISIBILITY, wait_timeout=0)
        assert delivery.job.attempt == 1


class TestPostgresLedger:
    """Tests for PostgresLedger."""

    @pytest.mark.asyncio
    async def test_record_once(self, pg_ledger):
        assert await pg_ledger.record_completion("a1", "out/a1.png") is True
        assert await pg_ledger.record_completion("a1", "out/other.png") is False

        entry = await pg_ledger.get("a1")
        assert entry.result_key == "out/a1.png"
        assert await pg_ledger.has_completed("a1") is True

    @pytest.mark.asyncio
    async def test_concurrent_records(self, pg_ledger):
        results = await asyncio.gather(
            *[pg_ledger.record_completion("race", f"out/{index}") for index in range(5)]
        )

        assert sorted(results) == [False, False, False, False, True]

    @pytest.mark.asyncio
    async def test_purge_expired(self, pg_ledger, clock):
        await pg_ledger.record_completion("old", "out/old")

        clock.advance(3601)

        assert await pg_ledger.purge_expired() == 1
        assert await pg_ledger.has_completed("old") is False
