"""
Type definitions for the asset pipeline.
Contains the job wire message, delivery and ledger records, and results.
"""

from assetpipe.types.job import (
    DeadLetterRecord,
    Delivery,
    Job,
    LedgerEntry,
    ProcessingContext,
    new_job_id,
)
from assetpipe.types.result import ProcessResult

__all__ = [
    # Job types
    "Job",
    "Delivery",
    "LedgerEntry",
    "DeadLetterRecord",
    "ProcessingContext",
    "new_job_id",
    # Result types
    "ProcessResult",
]
