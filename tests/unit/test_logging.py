"""
Unit tests for structured logging setup.
"""

import json
import logging

import pytest
import structlog

from jobcore.config import Settings
from jobcore.observability.logging import bind_context, setup_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers = handlers
    root.setLevel(level)
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()


@pytest.mark.usefixtures("restore_root_logger")
class TestSetupLogging:
    """Tests for routing stdlib records through structlog."""

    def test_json_output_carries_extra_and_context(self, capsys):
        setup_logging(Settings(log_format="json", log_level="INFO"))
        bind_context(job_id="abc", queue="bulk")

        logging.getLogger("jobcore.test").info("Executing job", extra={"attempt": 2})

        record = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert record["event"] == "Executing job"
        assert record["level"] == "info"
        assert record["attempt"] == 2
        assert record["job_id"] == "abc"
        assert record["queue"] == "bulk"
        assert "timestamp" in record

    def test_level_filters_debug(self, capsys):
        setup_logging(Settings(log_format="json", log_level="INFO"))

        logging.getLogger("jobcore.test").debug("hidden")

        assert capsys.readouterr().out == ""

    def test_third_party_loggers_quietened(self):
        setup_logging(Settings(log_format="console", log_level="DEBUG"))

        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
        assert logging.getLogger().level == logging.DEBUG
