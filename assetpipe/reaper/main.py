"""
Maintenance reaper.

Runs periodically to:
1. Return jobs whose leases expired to the queue (worker crash recovery)
2. Purge idempotency ledger entries past the retention window

The postgres queue also reclaims expired leases while leasing; the sweep
keeps expiry visible in metrics even while no worker is leasing.
"""

import asyncio
import logging
import signal
from dataclasses import dataclass

from assetpipe.clock import Clock, SystemClock
from assetpipe.config import Settings, get_settings
from assetpipe.db import create_engine, create_session_factory
from assetpipe.ledger import create_ledger
from assetpipe.ledger.base import IdempotencyLedger
from assetpipe.observability.logging import setup_logging
from assetpipe.observability.metrics import MetricsCollector, get_metrics
from assetpipe.queue import create_job_queue
from assetpipe.queue.base import JobQueue

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    """Counts from one reaper pass."""

    leases_requeued: int = 0
    ledger_purged: int = 0


class Reaper:
    """Periodic expired-lease sweep and ledger garbage collection."""

    def __init__(
        self,
        queue: JobQueue,
        ledger: IdempotencyLedger,
        settings: Settings,
        clock: Clock | None = None,
        metrics: MetricsCollector | None = None,
    ):
        """
        Initialize the reaper.

        Args:
            queue: Queue to sweep for expired leases.
            ledger: Ledger to garbage-collect.
            settings: Application settings.
            clock: Time source for the sweep interval.
            metrics: Metrics collector; defaults to the process-wide one.
        """
        self.interval = settings.reaper_interval_seconds
        self._queue = queue
        self._ledger = ledger
        self._clock = clock or SystemClock()
        self._metrics = metrics or get_metrics()
        self._running = False

    async def start(self) -> None:
        """Start the reaper loop."""
        logger.info(f"Reaper starting with interval {self.interval}s")
        self._running = True

        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                logger.exception(f"Error in reaper loop: {e}")

            await self._clock.sleep(self.interval)

        logger.info("Reaper stopped")

    async def stop(self) -> None:
        """Stop the reaper."""
        logger.info("Reaper stopping")
        self._running = False

    async def run_once(self) -> SweepResult:
        """
        Run one sweep (for testing or cron-style execution).

        Returns:
            Counts of requeued leases and purged ledger entries.
        """
        result = SweepResult(
            leases_requeued=await self._queue.requeue_expired(),
            ledger_purged=await self._ledger.purge_expired(),
        )

        if result.ledger_purged > 0:
            self._metrics.record_ledger_purged(result.ledger_purged)
        if result.leases_requeued > 0:
            logger.info(f"Recovered {result.leases_requeued} expired leases")

        return result


async def run_async() -> None:
    """Run the reaper asynchronously."""
    settings = get_settings()
    setup_logging(settings)

    engine = None
    session_factory = None
    if "postgres" in (settings.queue_backend, settings.ledger_backend):
        engine = create_engine(settings)
        session_factory = create_session_factory(engine)

    queue = create_job_queue(settings, session_factory=session_factory)
    ledger = create_ledger(settings, session_factory=session_factory)
    reaper = Reaper(queue, ledger, settings)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(reaper.stop())
        )

    try:
        await reaper.start()
    finally:
        await queue.close()
        await ledger.close()
        if engine is not None:
            await engine.dispose()


def run() -> None:
    """Run the reaper."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
