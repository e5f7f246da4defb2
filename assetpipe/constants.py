"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class JobState(StrEnum):
    """
    Per-delivery processing states.

    State transitions:
    - RECEIVED -> PROCESSING (ledger check passed)
    - PROCESSING -> COMPLETED (success, ledger recorded, acked)
    - PROCESSING -> RETRY_SCHEDULED (transient failure, nacked with backoff)
    - PROCESSING -> DEAD_LETTERED (permanent failure or attempts exhausted)
    - RETRY_SCHEDULED -> RECEIVED (delay elapsed, handled by the queue)

    COMPLETED and DEAD_LETTERED are terminal per job id.
    """

    RECEIVED = "received"
    PROCESSING = "processing"
    COMPLETED = "completed"
    RETRY_SCHEDULED = "retry_scheduled"
    DEAD_LETTERED = "dead_lettered"


class ResultKind(StrEnum):
    """Three-way failure classification returned by processing functions."""

    SUCCEEDED = "succeeded"
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


class DeadLetterReason(StrEnum):
    """Why a job ended up in the dead-letter sink."""

    PERMANENT = "permanent"
    POISON_PILL = "poison_pill"


class QueueRecordState(StrEnum):
    """Row state of a job held by the persistent queue."""

    QUEUED = "queued"
    LEASED = "leased"


# Default values
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_BACKOFF_BASE_SECONDS = 1.0
DEFAULT_BACKOFF_MAX_SECONDS = 30.0
DEFAULT_VISIBILITY_TIMEOUT_SECONDS = 30.0
DEFAULT_CONCURRENCY = 4

# Object key conventions used by the built-in processors
INPUT_KEY_PREFIX = "in/"
OUTPUT_KEY_PREFIX = "out/"

# Metrics names
METRIC_JOBS_ENQUEUED = "pipeline_jobs_enqueued_total"
METRIC_LEASES_ACQUIRED = "pipeline_leases_acquired_total"
METRIC_JOBS_RESOLVED = "pipeline_jobs_resolved_total"
METRIC_PROCESS_DURATION = "pipeline_process_duration_seconds"
METRIC_RETRY_DELAY = "pipeline_retry_delay_seconds"
METRIC_DEAD_LETTERS = "pipeline_dead_letters_total"
METRIC_DUPLICATES_SUPPRESSED = "pipeline_duplicate_deliveries_total"
METRIC_LEASES_EXPIRED = "pipeline_leases_expired_total"
METRIC_LEDGER_PURGED = "pipeline_ledger_entries_purged_total"
METRIC_IN_FLIGHT = "pipeline_in_flight_jobs"
METRIC_ACCEPTING_WORK = "pipeline_accepting_work"

# Trace span names
SPAN_ENQUEUE_JOB = "enqueue_job"
SPAN_LEASE_JOB = "lease_job"
SPAN_PROCESS_JOB = "process_job"
SPAN_RESOLVE_JOB = "resolve_job"
