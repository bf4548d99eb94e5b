"""
Tests for logging_setup module.

Verifies:
- JSON structured logging format
- Component and severity tagging
- Session ID correlation
- PII-aware logging helpers
- Latency rendering
- Log level configuration
"""
import json
import logging
from io import StringIO
from datetime import datetime

import pytest

from logging_setup import (
    setup_logging,
    get_logger,
    format_latency,
    Component,
    JSONFormatter,
)


@pytest.fixture
def capture_logs():
    """Capture log output to a string buffer."""
    buffer = StringIO()
    handler = logging.StreamHandler(buffer)
    handler.setFormatter(JSONFormatter())

    logger = logging.getLogger()
    logger.handlers = []
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)

    yield buffer

    logger.handlers = []


def _single_entry(buffer: StringIO) -> dict:
    return json.loads(buffer.getvalue().strip())


def test_json_formatter_basic(capture_logs):
    logger = get_logger(Component.GATEWAY)
    logger.info("Test message", extra_field="value")

    log_entry = _single_entry(capture_logs)

    assert log_entry["severity"] == "info"
    assert log_entry["component"] == "gateway"
    assert log_entry["message"] == "Test message"
    assert log_entry["extra_field"] == "value"
    assert "timestamp" in log_entry


def test_json_formatter_timestamp_format(capture_logs):
    """Timestamp is ISO8601."""
    logger = get_logger(Component.STT)
    logger.info("Timestamp test")

    timestamp = _single_entry(capture_logs)["timestamp"]
    assert datetime.fromisoformat(timestamp.replace("Z", "+00:00")) is not None


def test_session_id_correlation(capture_logs):
    logger = get_logger(Component.ORCHESTRATOR, session_id="3f2a0c7e-0000-4000-8000-000000000001")
    logger.info("Session test")

    assert _single_entry(capture_logs)["session_id"] == "3f2a0c7e-0000-4000-8000-000000000001"


def test_session_id_absent_when_not_provided(capture_logs):
    logger = get_logger(Component.STT)
    logger.info("No session")

    assert "session_id" not in _single_entry(capture_logs)


def test_explicit_session_id_kwarg_wins(capture_logs):
    logger = get_logger(Component.SESSION_STORE, session_id="bound")
    logger.info("Override", session_id="explicit")

    assert _single_entry(capture_logs)["session_id"] == "explicit"


def test_with_session_creates_new_logger(capture_logs):
    base_logger = get_logger(Component.GATEWAY)
    session_logger = base_logger.with_session("sess_456")

    session_logger.info("With session")

    log_entry = _single_entry(capture_logs)
    assert log_entry["session_id"] == "sess_456"
    assert log_entry["component"] == "gateway"
    assert base_logger.session_id is None


def test_pii_logging(capture_logs):
    """PII goes into its own field."""
    logger = get_logger(Component.ORCHESTRATOR, session_id="sess_789")
    logger.info_pii("Transcript received", transcript="hello there")

    log_entry = _single_entry(capture_logs)
    assert log_entry["pii"] == {"transcript": "hello there"}
    assert log_entry["message"] == "Transcript received"
    assert "transcript" not in log_entry


def test_severity_levels(capture_logs):
    logger = get_logger(Component.TTS)

    logger.debug("Debug message")
    logger.info("Info message")
    logger.warning("Warning message")
    logger.error("Error message")
    logger.critical("Critical message")

    lines = [line for line in capture_logs.getvalue().strip().split("\n") if line]
    severities = [json.loads(line)["severity"] for line in lines]
    assert severities == ["debug", "info", "warning", "error", "critical"]


def test_component_enum():
    assert Component.GATEWAY.value == "gateway"
    assert Component.AUTH.value == "auth"
    assert Component.SESSION_STORE.value == "session_store"
    assert Component.STT.value == "stt"
    assert Component.RETRIEVAL.value == "retrieval"
    assert Component.LLM.value == "llm"
    assert Component.TTS.value == "tts"


def test_component_string_fallback(capture_logs):
    logger = get_logger("custom_component")
    logger.info("Test")

    assert _single_entry(capture_logs)["component"] == "custom_component"


def test_multiple_extra_fields(capture_logs):
    logger = get_logger(Component.GATEWAY)
    logger.info(
        "Complex log",
        field1="value1",
        field2=123,
        field3=True,
        field4={"nested": "object"},
    )

    log_entry = _single_entry(capture_logs)
    assert log_entry["field1"] == "value1"
    assert log_entry["field2"] == 123
    assert log_entry["field3"] is True
    assert log_entry["field4"] == {"nested": "object"}


def test_latency_rendered_with_unit(capture_logs, monkeypatch):
    monkeypatch.setenv("NO_COLOR", "1")
    logger = get_logger(Component.LLM)
    logger.info("LLM reply generated", latency_ms=412)

    assert '"latency_ms": 412 ms' in capture_logs.getvalue()


def test_format_latency_colors_unless_disabled(monkeypatch):
    line = '{"latency_ms": 7}'

    monkeypatch.delenv("NO_COLOR", raising=False)
    assert format_latency(line, "<c>", "</c>") == '{"latency_ms": <c>7 ms</c>}'

    monkeypatch.setenv("NO_COLOR", "true")
    assert format_latency(line, "<c>", "</c>") == '{"latency_ms": 7 ms}'


def test_setup_logging_json():
    setup_logging(level="DEBUG", use_json=True)

    root_logger = logging.getLogger()
    assert root_logger.level == logging.DEBUG
    assert len(root_logger.handlers) == 1
    assert isinstance(root_logger.handlers[0].formatter, JSONFormatter)


def test_setup_logging_text():
    setup_logging(level="INFO", use_json=False)

    root_logger = logging.getLogger()
    assert root_logger.level == logging.INFO
    assert len(root_logger.handlers) == 1
    assert not isinstance(root_logger.handlers[0].formatter, JSONFormatter)


def test_exception_logging(capture_logs):
    logger = get_logger(Component.GATEWAY)

    try:
        raise ValueError("Test exception")
    except ValueError:
        logger.exception("Exception occurred")

    log_entry = _single_entry(capture_logs)
    assert log_entry["severity"] == "error"
    assert "ValueError: Test exception" in log_entry["exception"]


def test_debug_pii_method(capture_logs):
    logger = get_logger(Component.LLM)
    logger.debug_pii("Reply generated", reply="Hi there!")

    log_entry = _single_entry(capture_logs)
    assert log_entry["severity"] == "debug"
    assert log_entry["pii"]["reply"] == "Hi there!"
