"""Tests for structured logging helpers."""

import json
import logging
import sys

import pytest

from agentcore_bridge.logging_config import (
    BODY_PREVIEW_LIMIT,
    JsonFormatter,
    body_preview,
    configure_logging,
)


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in list(root.handlers):
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)


class TestJsonFormatter:
    def test_extra_fields_are_folded_in(self):
        record = logging.LogRecord("agentcore_bridge.main", logging.INFO, __file__, 1, "hello %s", ("world",), None)
        record.path = "/invocations"
        record.client = object()

        payload = json.loads(JsonFormatter().format(record))

        assert payload["message"] == "hello world"
        assert payload["level"] == "INFO"
        assert payload["logger"] == "agentcore_bridge.main"
        assert payload["path"] == "/invocations"
        assert payload["client"].startswith("<object object")
        assert "args" not in payload

    def test_exception_is_rendered(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())

        payload = json.loads(JsonFormatter().format(record))
        assert "RuntimeError: boom" in payload["exc_info"]


class TestBodyPreview:
    def test_short_bodies_are_unchanged(self):
        assert body_preview(b"abc") == "abc"
        assert body_preview("abc") == "abc"

    def test_long_bodies_are_truncated(self):
        assert body_preview(b"x" * (BODY_PREVIEW_LIMIT + 10)) == "x" * BODY_PREVIEW_LIMIT + "..."
        assert body_preview("y" * 20, limit=5) == "yyyyy..."

    def test_invalid_utf8_is_replaced(self):
        assert body_preview(b"\xff\xfeok") == "��ok"


def test_configure_logging(monkeypatch, tmp_path, restore_root_logger):
    log_file = tmp_path / "logs" / "bridge.log"
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("LOG_FILE", str(log_file))

    configure_logging()
    logging.getLogger("agentcore_bridge.test").info("written", extra={"listener": "bridge"})
    for handler in restore_root_logger.handlers:
        handler.flush()

    assert restore_root_logger.level == logging.DEBUG
    assert all(isinstance(h.formatter, JsonFormatter) for h in restore_root_logger.handlers)
    assert logging.getLogger("httpx").level == logging.WARNING
    assert logging.getLogger("uvicorn.error").handlers == []
    line = json.loads(log_file.read_text().splitlines()[-1])
    assert line["message"] == "written"
    assert line["listener"] == "bridge"


def test_catch_all_logs_request(bridge_client, caplog):
    caplog.set_level(logging.WARNING, logger="agentcore_bridge.main")

    bridge_client.post("/nowhere", content=b"z" * 600, headers={"content-type": "text/plain"})

    record = next(r for r in caplog.records if r.getMessage() == "Unmatched request on http bridge")
    assert record.method == "POST"
    assert record.path == "/nowhere"
    assert record.content_type == "text/plain"
    assert record.body_size == 600
    assert record.body_preview == "z" * BODY_PREVIEW_LIMIT + "..."
