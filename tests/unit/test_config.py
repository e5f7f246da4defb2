"""
Unit tests for settings and backend factories.
"""

import pytest
from pydantic import ValidationError

from assetpipe.config import Settings
from assetpipe.exceptions import ConfigurationError
from assetpipe.ledger import create_ledger
from assetpipe.ledger.memory import InMemoryLedger
from assetpipe.queue import create_job_queue
from assetpipe.queue.memory import InMemoryJobQueue


class TestSettings:
    """Tests for Settings."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("MAX_ATTEMPTS", raising=False)

        settings = Settings(_env_file=None)

        assert settings.max_attempts == 5
        assert settings.backoff_base_seconds == 1.0
        assert settings.backoff_max_seconds == 30.0
        assert settings.queue_backend == "memory"

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("MAX_ATTEMPTS", "8")
        monkeypatch.setenv("VISIBILITY_TIMEOUT_SECONDS", "120")

        settings = Settings(_env_file=None)

        assert settings.max_attempts == 8
        assert settings.visibility_timeout_seconds == 120.0

    def test_backoff_bounds_validated(self):
        with pytest.raises(ValidationError):
            Settings(backoff_base_seconds=10.0, backoff_max_seconds=1.0)

    @pytest.mark.parametrize(
        "field,value",
        [
            ("max_attempts", 0),
            ("visibility_timeout_seconds", 0),
            ("worker_concurrency", 0),
            ("backoff_jitter", 1.5),
        ],
    )
    def test_rejects_out_of_range(self, field, value):
        with pytest.raises(ValidationError):
            Settings(**{field: value})


class TestFactories:
    """Tests for create_job_queue and create_ledger."""

    def test_memory_backends(self, test_settings, clock):
        assert isinstance(create_job_queue(test_settings, clock=clock), InMemoryJobQueue)
        assert isinstance(create_ledger(test_settings, clock=clock), InMemoryLedger)

    def test_postgres_backends_need_session_factory(self, test_settings):
        settings = test_settings.model_copy(
            update={"queue_backend": "postgres", "ledger_backend": "postgres"}
        )

        with pytest.raises(ConfigurationError):
            create_job_queue(settings)
        with pytest.raises(ConfigurationError):
            create_ledger(settings)
