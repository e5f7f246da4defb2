"""
Unit tests for the job producer.
"""

import pytest

from assetpipe.exceptions import ObjectNotFoundError
from assetpipe.producer import Producer


@pytest.fixture
def producer(queue, store, clock, metrics) -> Producer:
    return Producer(queue, store, clock=clock, metrics=metrics)


class TestProducer:
    """Tests for Producer.submit."""

    @pytest.mark.asyncio
    async def test_submit_with_data(self, producer, queue, store, clock):
        job_id = await producer.submit(
            "in/a1.png", {"processor": "thumbnail"}, data=b"png-bytes"
        )

        assert await store.get("in/a1.png") == b"png-bytes"
        delivery = await queue.lease(30.0, wait_timeout=0)
        assert delivery.job_id == job_id
        assert delivery.job.attempt == 0
        assert delivery.job.object_key == "in/a1.png"
        assert delivery.job.payload == {"processor": "thumbnail"}
        assert delivery.job.enqueued_at == clock.utcnow()

    @pytest.mark.asyncio
    async def test_submit_existing_object(self, producer, queue, store):
        await store.put("in/b2.jpg", b"jpeg")

        job_id = await producer.submit("in/b2.jpg")

        assert await queue.is_pending(job_id) is True

    @pytest.mark.asyncio
    async def test_submit_missing_object_raises(self, producer, queue):
        with pytest.raises(ObjectNotFoundError):
            await producer.submit("in/missing.png")

        assert await queue.depth() == 0

    @pytest.mark.asyncio
    async def test_resubmit_same_id_is_noop(self, producer, queue):
        first = await producer.submit("in/a1.png", data=b"x", job_id="fixed")
        second = await producer.submit("in/a1.png", data=b"x", job_id="fixed")

        assert first == second == "fixed"
        assert await queue.depth() == 1

    @pytest.mark.asyncio
    async def test_generated_ids_are_unique(self, producer):
        ids = {await producer.submit("in/a1.png", data=b"x") for _ in range(20)}

        assert len(ids) == 20

    @pytest.mark.asyncio
    async def test_records_metric(self, producer, metrics):
        await producer.submit("in/a1.png", data=b"x")

        assert metrics.jobs_enqueued._value.get() == 1
