"""Tests for structured logging configuration."""

import json
import logging
import sys
from unittest.mock import patch

from solvegate.app.core.logging import (
    ContextFilter,
    JSONFormatter,
    get_log_context,
    get_logger,
    get_logging_config,
)


def _record(msg: str = "Test message", exc_info=None) -> logging.LogRecord:
    return logging.LogRecord(
        name="test",
        level=logging.INFO,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )


class TestJSONFormatter:
    """Test JSON formatter for structured logging."""

    def test_basic_json_format(self):
        data = json.loads(JSONFormatter().format(_record()))

        assert data["level"] == "INFO"
        assert data["logger"] == "test"
        assert data["message"] == "Test message"
        assert "timestamp" in data
        assert data["source"]["file"] == "test.py"
        assert data["source"]["line"] == 1

    def test_json_format_with_context(self):
        record = _record("Solve request completed")
        record.request_id = "req-123"
        record.user_id = 7
        record.provider = "openai"

        data = json.loads(JSONFormatter().format(record))

        assert data["request_id"] == "req-123"
        assert data["user_id"] == 7
        assert data["provider"] == "openai"
        assert "extra" not in data

    def test_extra_fields_are_nested(self):
        record = _record()
        record.tokens_used = 412
        record.cost_cents = 1

        data = json.loads(JSONFormatter().format(record))

        assert data["extra"] == {"tokens_used": 412, "cost_cents": 1}

    def test_exception_is_included(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = _record(exc_info=sys.exc_info())

        data = json.loads(JSONFormatter().format(record))

        assert any("ValueError: boom" in line for line in data["exception"])


class TestContextFilter:
    """Test the context defaults filter."""

    def test_adds_missing_fields(self):
        record = _record()

        assert ContextFilter().filter(record) is True
        assert record.request_id is None
        assert record.user_id is None

    def test_keeps_existing_fields(self):
        record = _record()
        record.request_id = "abc"

        ContextFilter().filter(record)

        assert record.request_id == "abc"


class TestLoggingConfig:
    """Test dictConfig generation."""

    def test_json_format_selected(self):
        with patch("solvegate.app.core.logging.settings") as mock_settings:
            mock_settings.log_format = "json"
            mock_settings.log_level = "debug"
            config = get_logging_config()

        assert config["handlers"]["console"]["formatter"] == "json"
        assert config["loggers"]["solvegate"]["level"] == "DEBUG"
        assert config["loggers"]["solvegate"]["propagate"] is False

    def test_text_format_selected(self):
        with patch("solvegate.app.core.logging.settings") as mock_settings:
            mock_settings.log_format = "text"
            mock_settings.log_level = "INFO"
            config = get_logging_config()

        assert config["handlers"]["console"]["formatter"] == "standard"
        assert "json" not in config["formatters"]


class TestHelpers:
    """Test get_logger and get_log_context."""

    def test_get_logger_default_name(self):
        assert get_logger().name == "solvegate"

    def test_log_context_drops_none(self):
        context = get_log_context(request_id="abc", user_id=None, tokens_used=412)

        assert context == {"request_id": "abc", "tokens_used": 412}
