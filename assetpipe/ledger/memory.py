"""
In-process idempotency ledger.
"""

import logging
from datetime import timedelta

from assetpipe.clock import Clock, SystemClock
from assetpipe.ledger.base import IdempotencyLedger
from assetpipe.types.job import LedgerEntry

logger = logging.getLogger(__name__)


class InMemoryLedger(IdempotencyLedger):
    """Dictionary-backed ledger; writes never await, so they are atomic per event loop."""

    def __init__(self, retention_seconds: float, clock: Clock | None = None):
        self._retention = timedelta(seconds=retention_seconds)
        self._clock = clock or SystemClock()
        self._entries: dict[str, LedgerEntry] = {}

    async def has_completed(self, job_id: str) -> bool:
        return job_id in self._entries

    async def record_completion(self, job_id: str, result_key: str) -> bool:
        existing = self._entries.get(job_id)
        if existing is not None:
            logger.info(
                "Completion already recorded",
                extra={"job_id": job_id, "result_key": existing.result_key},
            )
            return False

        self._entries[job_id] = LedgerEntry(
            job_id=job_id,
            completed_at=self._clock.utcnow(),
            result_key=result_key,
        )
        return True

    async def get(self, job_id: str) -> LedgerEntry | None:
        return self._entries.get(job_id)

    async def purge_expired(self) -> int:
        cutoff = self._clock.utcnow() - self._retention
        expired = [
            job_id
            for job_id, entry in self._entries.items()
            if entry.completed_at < cutoff
        ]
        for job_id in expired:
            del self._entries[job_id]

        if expired:
            logger.info(f"Purged {len(expired)} ledger entries")
        return len(expired)
