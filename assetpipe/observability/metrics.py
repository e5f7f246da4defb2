"""
Prometheus metrics collection.
"""

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    start_http_server,
)

from assetpipe.constants import (
    METRIC_ACCEPTING_WORK,
    METRIC_DEAD_LETTERS,
    METRIC_DUPLICATES_SUPPRESSED,
    METRIC_IN_FLIGHT,
    METRIC_JOBS_ENQUEUED,
    METRIC_JOBS_RESOLVED,
    METRIC_LEASES_ACQUIRED,
    METRIC_LEASES_EXPIRED,
    METRIC_LEDGER_PURGED,
    METRIC_PROCESS_DURATION,
    METRIC_RETRY_DELAY,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the asset pipeline.

    Collects metrics for:
    - Enqueues and lease acquisitions
    - Delivery resolutions by outcome and processing duration
    - Retry delays and dead letters by reason
    - Duplicate deliveries suppressed by the ledger
    - Worker pool in-flight count and readiness
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.jobs_enqueued = Counter(
            METRIC_JOBS_ENQUEUED,
            "Total number of jobs enqueued",
            registry=self._registry,
        )

        self.leases_acquired = Counter(
            METRIC_LEASES_ACQUIRED,
            "Total number of leases acquired",
            ["worker_id"],
            registry=self._registry,
        )

        self.jobs_resolved = Counter(
            METRIC_JOBS_RESOLVED,
            "Total number of deliveries resolved",
            ["outcome"],
            registry=self._registry,
        )

        self.process_duration = Histogram(
            METRIC_PROCESS_DURATION,
            "Processing function duration in seconds",
            ["outcome"],
            buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
            registry=self._registry,
        )

        self.retry_delay = Histogram(
            METRIC_RETRY_DELAY,
            "Backoff delay applied to nacked deliveries",
            buckets=(0.5, 1.0, 2.0, 4.0, 8.0, 16.0, 32.0, 64.0),
            registry=self._registry,
        )

        self.dead_letters = Counter(
            METRIC_DEAD_LETTERS,
            "Total number of dead-lettered jobs",
            ["reason"],
            registry=self._registry,
        )

        self.duplicates_suppressed = Counter(
            METRIC_DUPLICATES_SUPPRESSED,
            "Deliveries acked without processing because the ledger had them",
            registry=self._registry,
        )

        self.leases_expired = Counter(
            METRIC_LEASES_EXPIRED,
            "Total number of leases returned to the queue after expiry",
            registry=self._registry,
        )

        self.ledger_purged = Counter(
            METRIC_LEDGER_PURGED,
            "Ledger entries removed after the retention window",
            registry=self._registry,
        )

        self.in_flight = Gauge(
            METRIC_IN_FLIGHT,
            "Deliveries currently being processed",
            registry=self._registry,
        )

        self.accepting_work = Gauge(
            METRIC_ACCEPTING_WORK,
            "1 while the worker pool is leasing new jobs",
            registry=self._registry,
        )

    def record_job_enqueued(self) -> None:
        """Record a job submission."""
        self.jobs_enqueued.inc()

    def record_lease_acquired(self, worker_id: str, count: int = 1) -> None:
        """Record lease acquisition."""
        self.leases_acquired.labels(worker_id=worker_id).inc(count)

    def record_resolution(self, outcome: str, duration_seconds: float | None = None) -> None:
        """Record how a delivery was resolved."""
        self.jobs_resolved.labels(outcome=outcome).inc()
        if duration_seconds is not None:
            self.process_duration.labels(outcome=outcome).observe(duration_seconds)

    def record_retry(self, delay_seconds: float) -> None:
        """Record a nack with backoff."""
        self.retry_delay.observe(delay_seconds)

    def record_dead_letter(self, reason: str) -> None:
        """Record a dead-lettered job."""
        self.dead_letters.labels(reason=reason).inc()

    def record_duplicate(self) -> None:
        """Record a redelivery short-circuited by the ledger."""
        self.duplicates_suppressed.inc()

    def record_leases_expired(self, count: int) -> None:
        """Record leases swept back into the queue."""
        self.leases_expired.inc(count)

    def record_ledger_purged(self, count: int) -> None:
        """Record ledger garbage collection."""
        self.ledger_purged.inc(count)

    def set_in_flight(self, count: int) -> None:
        self.in_flight.set(count)

    def set_accepting_work(self, accepting: bool) -> None:
        self.accepting_work.set(1 if accepting else 0)

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)


def setup_metrics(port: int | None = None) -> MetricsCollector:
    """
    Set up and return the process-wide metrics collector.

    Args:
        port: When given, expose the default registry over HTTP on this port.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
        if port is not None:
            start_http_server(port)
    return _metrics


def get_metrics() -> MetricsCollector:
    """Get the process-wide metrics collector, creating it if needed."""
    if _metrics is None:
        return setup_metrics()
    return _metrics
