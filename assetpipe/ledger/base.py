"""
Idempotency ledger contract.
"""

from abc import ABC, abstractmethod

from assetpipe.types.job import LedgerEntry


class IdempotencyLedger(ABC):
    """
    Keyed record of completed job ids.

    Workers read it before processing every delivery and write it once on
    first success. Entries are immutable and may be purged after the
    retention window, after which a redelivered job could be processed
    again.
    """

    @abstractmethod
    async def has_completed(self, job_id: str) -> bool:
        """Check whether a completion has been recorded for ``job_id``."""

    @abstractmethod
    async def record_completion(self, job_id: str, result_key: str) -> bool:
        """
        Record the completion of ``job_id``.

        Safe under concurrent calls for the same id: the first writer wins
        and later writers see the existing entry.

        Returns:
            True if this call created the entry, False if one already existed.
        """

    @abstractmethod
    async def get(self, job_id: str) -> LedgerEntry | None:
        """Fetch the entry for ``job_id``."""

    @abstractmethod
    async def purge_expired(self) -> int:
        """
        Remove entries older than the retention window.

        Returns:
            Number of entries removed.
        """

    async def close(self) -> None:
        """Release backend resources."""
