"""Tests for core/logging_config: redaction, StructuredFormatter, setup_logging."""

import json
import logging

from prompt_feedback.core.logging_config import StructuredFormatter, _redact, setup_logging


def _record(msg: str, level: int = logging.INFO, **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="test", level=level, pathname="", lineno=0, msg=msg, args=(), exc_info=None
    )
    for k, v in extra.items():
        setattr(record, k, v)
    return record


def test_redact_values_and_keys():
    assert _redact("bearer abc123") == "[REDACTED]"
    assert _redact("sk-live-123") == "[REDACTED]"
    assert _redact("hello") == "hello"
    assert _redact({"api_key": "plain", "chat_id": "c1"}) == {
        "api_key": "[REDACTED]",
        "chat_id": "c1",
    }
    assert _redact(["token=xyz", "ok"]) == ["[REDACTED]", "ok"]


def test_structured_formatter_json_inlines_extra():
    fmt = StructuredFormatter(use_json=True)
    out = fmt.format(_record("stream published", stream_id="s1", authorization="Bearer x"))
    data = json.loads(out)
    assert data["message"] == "stream published"
    assert data["level"] == "INFO"
    assert data["stream_id"] == "s1"
    assert data["authorization"] == "[REDACTED]"
    assert "msg" not in data


def test_structured_formatter_key_value():
    fmt = StructuredFormatter(use_json=False)
    out = fmt.format(_record("warn", level=logging.WARNING))
    assert "warn" in out
    assert "WARNING" in out


def test_structured_formatter_with_exc_info():
    fmt = StructuredFormatter(use_json=True)
    try:
        raise ValueError("test error")
    except ValueError:
        exc_info = __import__("sys").exc_info()
    record = _record("failed", level=logging.ERROR)
    record.exc_info = exc_info
    data = json.loads(fmt.format(record))
    assert "ValueError" in data["exception"]


def test_setup_logging():
    setup_logging(level="DEBUG", use_json=True)
    setup_logging(level="INFO", use_json=True)
    root = logging.getLogger()
    assert root.level == logging.INFO
    structured = [
        h for h in root.handlers if isinstance(getattr(h, "formatter", None), StructuredFormatter)
    ]
    assert len(structured) == 1
    assert logging.getLogger("httpx").level == logging.WARNING
    root.removeHandler(structured[0])
