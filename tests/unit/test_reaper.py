"""
Unit tests for the maintenance reaper.
"""

import pytest

from assetpipe.reaper.main import Reaper


class TestReaper:
    """Tests for Reaper.run_once."""

    @pytest.mark.asyncio
    async def test_requeues_expired_leases(
        self, queue, ledger, test_settings, clock, metrics, make_job
    ):
        job = make_job()
        await queue.enqueue(job)
        await queue.lease(10.0, wait_timeout=0)
        reaper = Reaper(queue, ledger, test_settings, clock=clock, metrics=metrics)

        clock.advance(11.0)
        result = await reaper.run_once()

        assert result.leases_requeued == 1
        delivery = await queue.lease(10.0, wait_timeout=0)
        assert delivery.job.attempt == 1
        assert metrics.leases_expired._value.get() == 1

    @pytest.mark.asyncio
    async def test_purges_ledger(self, queue, ledger, test_settings, clock, metrics):
        await ledger.record_completion("a1", "out/a1")
        reaper = Reaper(queue, ledger, test_settings, clock=clock, metrics=metrics)

        clock.advance(test_settings.ledger_retention_seconds + 1)
        result = await reaper.run_once()

        assert result.ledger_purged == 1
        assert await ledger.has_completed("a1") is False
        assert metrics.ledger_purged._value.get() == 1

    @pytest.mark.asyncio
    async def test_idle_sweep(self, queue, ledger, test_settings, clock, metrics):
        reaper = Reaper(queue, ledger, test_settings, clock=clock, metrics=metrics)

        result = await reaper.run_once()

        assert result.leases_requeued == 0
        assert result.ledger_purged == 0
