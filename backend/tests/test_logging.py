"""Tests for the structlog setup."""

import io
import json
import logging

import pytest
import structlog

from app.config import Settings
from core.logging_config import _CronflowHandler, setup_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()


@pytest.mark.unit
@pytest.mark.usefixtures("restore_root_logger")
class TestSetupLogging:

    def test_json_lines_carry_app_context(self):
        stream = io.StringIO()
        setup_logging(Settings(LOG_FORMAT="json", APP_NAME="cronflow-test", ENVIRONMENT="testing"), stream)

        structlog.get_logger("workflow.engine").info("Workflow run started", steps=3)
        logging.getLogger("services.job_service").warning("Job %s paused", "j1")

        first, second = [json.loads(line) for line in stream.getvalue().splitlines()]
        assert first["event"] == "Workflow run started"
        assert first["steps"] == 3
        assert first["level"] == "info"
        assert first["app"] == "cronflow-test"
        assert first["environment"] == "testing"
        assert second["event"] == "Job j1 paused"
        assert second["logger"] == "services.job_service"

    def test_repeated_setup_keeps_one_handler(self):
        setup_logging(Settings(LOG_FORMAT="text"), io.StringIO())
        setup_logging(Settings(LOG_FORMAT="text"), io.StringIO())
        installed = [h for h in logging.getLogger().handlers if isinstance(h, _CronflowHandler)]
        assert len(installed) == 1

    def test_text_format_and_levels(self):
        stream = io.StringIO()
        setup_logging(Settings(LOG_FORMAT="text", LOG_LEVEL="WARNING"), stream)

        logging.getLogger("triggers.manager").info("hidden")
        logging.getLogger("triggers.manager").warning("shown")

        output = stream.getvalue()
        assert "shown" in output
        assert "hidden" not in output
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_unknown_format_is_rejected(self):
        with pytest.raises(ValueError, match="LOG_FORMAT"):
            setup_logging(Settings(LOG_FORMAT="xml"), io.StringIO())
