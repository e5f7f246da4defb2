"""
Observability module.
Contains logging, metrics, and tracing setup.
"""

from assetpipe.observability.logging import (
    bind_job_context,
    clear_job_context,
    setup_logging,
)
from assetpipe.observability.metrics import (
    MetricsCollector,
    get_metrics,
    setup_metrics,
)
from assetpipe.observability.tracing import get_tracer, setup_tracing

__all__ = [
    "setup_logging",
    "bind_job_context",
    "clear_job_context",
    "setup_metrics",
    "get_metrics",
    "MetricsCollector",
    "setup_tracing",
    "get_tracer",
]
