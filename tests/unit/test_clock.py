"""
Unit tests for the manual clock.
"""

import asyncio

import pytest

from assetpipe.clock import ManualClock


async def settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


class TestManualClock:
    """Tests for ManualClock."""

    def test_advance_and_set(self):
        clock = ManualClock(start=100.0)

        clock.advance(5.0)
        assert clock.time() == 105.0

        clock.set(200.0)
        assert clock.time() == 200.0
        assert clock.utcnow().timestamp() == 200.0

    def test_time_cannot_go_backwards(self):
        clock = ManualClock(start=100.0)

        with pytest.raises(ValueError):
            clock.advance(-1.0)
        with pytest.raises(ValueError):
            clock.set(99.0)

    @pytest.mark.asyncio
    async def test_sleep_parks_until_advanced(self):
        clock = ManualClock(start=100.0)
        sleeper = asyncio.create_task(clock.sleep(10.0))
        await settle()

        assert not sleeper.done()
        assert clock.time() == 100.0
        assert clock.next_wakeup() == 110.0

        clock.advance(9.0)
        await settle()
        assert not sleeper.done()

        clock.advance(1.0)
        await asyncio.wait_for(sleeper, timeout=1.0)
        assert clock.sleeper_count == 0

    @pytest.mark.asyncio
    async def test_non_positive_sleep_only_yields(self):
        clock = ManualClock(start=100.0)

        await clock.sleep(0)
        await clock.sleep(-3.0)

        assert clock.time() == 100.0
        assert clock.sleeper_count == 0

    @pytest.mark.asyncio
    async def test_advance_to_next_wakeup(self):
        clock = ManualClock(start=100.0)
        early = asyncio.create_task(clock.sleep(2.0))
        late = asyncio.create_task(clock.sleep(7.0))
        await settle()

        assert clock.advance_to_next_wakeup() is True
        await asyncio.wait_for(early, timeout=1.0)

        assert clock.time() == 102.0
        assert not late.done()

        late.cancel()
        await asyncio.gather(late, return_exceptions=True)
        assert clock.sleeper_count == 0
        assert clock.advance_to_next_wakeup() is False
