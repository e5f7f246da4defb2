"""
Unit tests for logging context and metrics.
"""

import logging

import pytest
import structlog

from assetpipe.observability.logging import (
    bind_job_context,
    clear_job_context,
    setup_logging,
)


@pytest.fixture
def restore_root_logger():
    root_logger = logging.getLogger()
    handlers, level = root_logger.handlers[:], root_logger.level
    yield
    root_logger.handlers = handlers
    root_logger.setLevel(level)
    structlog.reset_defaults()


class TestLogging:
    """Tests for structured logging setup."""

    def test_job_context_binding(self):
        bind_job_context("a1", 2)

        assert structlog.contextvars.get_contextvars() == {"job_id": "a1", "attempt": 2}

        clear_job_context()
        assert "job_id" not in structlog.contextvars.get_contextvars()

    def test_json_output_includes_extra_and_context(
        self, test_settings, restore_root_logger, capsys
    ):
        settings = test_settings.model_copy(update={"log_format": "json", "log_level": "INFO"})
        setup_logging(settings)

        bind_job_context("a1", 0)
        try:
            logging.getLogger("assetpipe.test").info(
                "Job completed", extra={"result_key": "out/a1.png"}
            )
        finally:
            clear_job_context()

        output = capsys.readouterr().out
        assert '"event": "Job completed"' in output
        assert '"result_key": "out/a1.png"' in output
        assert '"job_id": "a1"' in output


class TestMetrics:
    """Tests for MetricsCollector."""

    def test_resolution_and_dead_letters(self, metrics):
        metrics.record_resolution("completed", 0.2)
        metrics.record_resolution("completed", 0.4)
        metrics.record_dead_letter("poison_pill")

        assert metrics.jobs_resolved.labels(outcome="completed")._value.get() == 2
        assert metrics.dead_letters.labels(reason="poison_pill")._value.get() == 1

    def test_gauges(self, metrics):
        metrics.set_in_flight(3)
        metrics.set_accepting_work(True)

        assert metrics.in_flight._value.get() == 3
        assert metrics.accepting_work._value.get() == 1

    def test_exposition(self, metrics):
        metrics.record_job_enqueued()
        metrics.record_retry(4.0)

        output = metrics.get_metrics().decode()

        assert "pipeline_jobs_enqueued_total 1.0" in output
        assert "pipeline_retry_delay_seconds_count 1.0" in output
