"""
Unit tests for structured logging setup.
"""

import io
import json
import logging

import pytest
import structlog

from clipworker.config import Settings
from clipworker.observability.logging import setup_logging


@pytest.fixture
def restore_logging():
    """Put the root logger and structlog back the way the test found them."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers = handlers
    root.setLevel(level)
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_json_lines_carry_worker_identity(self, test_settings: Settings, restore_logging):
        """Test that stdlib records with extra fields render as JSON with the worker identity."""
        settings = test_settings.model_copy(update={"log_format": "json", "log_level": "INFO"})
        stream = io.StringIO()

        setup_logging(settings, stream=stream)
        logging.getLogger("clipworker.worker.claim").info("Record claimed", extra={"queue": "render"})

        line = json.loads(stream.getvalue().strip().splitlines()[-1])
        assert line["event"] == "Record claimed"
        assert line["queue"] == "render"
        assert line["level"] == "info"
        assert line["worker_id"] == "test-worker"
        assert line["worker_type"] == "combined"
        assert "timestamp" in line
        assert "trace_id" not in line

    def test_level_filters_records(self, test_settings: Settings, restore_logging):
        settings = test_settings.model_copy(update={"log_format": "json", "log_level": "WARNING"})
        stream = io.StringIO()

        setup_logging(settings, stream=stream)
        logging.getLogger("clipworker.worker.retry").info("Retrying record after backoff")
        logging.getLogger("clipworker.worker.retry").warning("Record attempt failed")

        lines = stream.getvalue().strip().splitlines()
        assert [json.loads(line)["event"] for line in lines] == ["Record attempt failed"]
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
