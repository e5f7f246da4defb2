"""
Worker process entry point.

Builds every component from one Settings object, starts the worker pool
and an in-process reaper, and drains the pool on SIGTERM/SIGINT.
"""

import asyncio
import logging
import signal

from assetpipe.config import Settings, get_settings
from assetpipe.db import create_engine, create_session_factory
from assetpipe.ledger import create_ledger
from assetpipe.observability.logging import setup_logging
from assetpipe.observability.metrics import setup_metrics
from assetpipe.observability.tracing import instrument_sqlalchemy, setup_tracing
from assetpipe.queue import create_job_queue
from assetpipe.reaper.main import Reaper
from assetpipe.storage import create_object_store
from assetpipe.worker.pool import WorkerPool
from assetpipe.worker.processors import build_process_fn

logger = logging.getLogger(__name__)


async def run_async(settings: Settings | None = None) -> None:
    """Run the worker asynchronously."""
    settings = settings or get_settings()
    setup_logging(settings)
    setup_tracing(settings)
    metrics = setup_metrics(settings.prometheus_port if settings.prometheus_enabled else None)

    engine = None
    session_factory = None
    if "postgres" in (settings.queue_backend, settings.ledger_backend):
        engine = create_engine(settings)
        session_factory = create_session_factory(engine)
        if settings.otel_enabled:
            instrument_sqlalchemy(engine.sync_engine)

    store = create_object_store(settings)
    queue = create_job_queue(settings, session_factory=session_factory, metrics=metrics)
    ledger = create_ledger(settings, session_factory=session_factory)

    pool = WorkerPool(queue, ledger, store, settings, metrics=metrics)
    reaper = Reaper(queue, ledger, settings, metrics=metrics)

    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown.set)

    await pool.start(settings.worker_concurrency, build_process_fn())
    reaper_task = asyncio.create_task(reaper.start())

    try:
        await shutdown.wait()
        logger.info("Shutdown signal received")
        report = await pool.stop(settings.drain_timeout_seconds)
        logger.info(
            "Drain finished",
            extra={"resolved": report.resolved, "abandoned": report.abandoned},
        )
    finally:
        await reaper.stop()
        reaper_task.cancel()
        try:
            await reaper_task
        except asyncio.CancelledError:
            pass
        await queue.close()
        await ledger.close()
        if engine is not None:
            await engine.dispose()


def run() -> None:
    """Run the worker."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
