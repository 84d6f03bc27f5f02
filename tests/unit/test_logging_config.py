"""Unit tests for git_engine.logging_config."""

import json
import logging

from git_engine.logging_config import (
    JSONFormatter,
    LogContext,
    TextFormatter,
    clear_context,
    generate_trace_id,
    get_context,
    set_context,
    setup_logging,
)


def _record(msg="hello", **extra):
    record = logging.LogRecord(
        name="git_engine.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=10,
        msg=msg,
        args=(),
        exc_info=None,
        func="test_func",
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestContext:
    """Correlation id context handling."""

    def test_set_and_get(self):
        set_context(tenant_id="acme", trace_id="t-1", request_kind="cli")
        assert get_context() == {"tenant_id": "acme", "trace_id": "t-1", "request_kind": "cli"}

    def test_clear(self):
        set_context(tenant_id="acme")
        clear_context()
        assert get_context() == {}

    def test_log_context_restores_previous(self):
        set_context(tenant_id="outer")
        with LogContext(tenant_id="inner", session_id="s1"):
            assert get_context()["tenant_id"] == "inner"
            assert get_context()["session_id"] == "s1"
        assert get_context() == {"tenant_id": "outer"}

    def test_log_context_restores_on_exception(self):
        try:
            with LogContext(trace_id="t-2"):
                raise RuntimeError("boom")
        except RuntimeError:
            pass
        assert "trace_id" not in get_context()

    def test_generate_trace_id_unique(self):
        assert generate_trace_id() != generate_trace_id()


class TestFormatters:
    """JSON and text output."""

    def test_json_includes_context_and_extra(self):
        formatter = JSONFormatter(include_timestamp=False)
        with LogContext(tenant_id="acme", trace_id="t-9"):
            output = json.loads(formatter.format(_record(git_operation="status")))
        assert output["message"] == "hello"
        assert output["level"] == "INFO"
        assert output["tenant_id"] == "acme"
        assert output["trace_id"] == "t-9"
        assert output["git_operation"] == "status"
        assert output["location"].endswith(":10:test_func")
        assert "timestamp" not in output

    def test_json_timestamp_format(self):
        output = json.loads(JSONFormatter().format(_record()))
        assert output["timestamp"].endswith("Z")
        assert "T" in output["timestamp"]

    def test_text_format(self):
        formatter = TextFormatter(include_timestamp=False)
        with LogContext(tenant_id="acme", session_id="s1"):
            line = formatter.format(_record())
        assert line == "INFO [git_engine.test] [acme/s1] hello"


class TestSetupLogging:
    """Root logger configuration."""

    def test_setup_json(self):
        root = logging.getLogger()
        saved_handlers, saved_level = list(root.handlers), root.level
        try:
            setup_logging(level="DEBUG", format_type="json")
            assert root.level == logging.DEBUG
            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0].formatter, JSONFormatter)
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)

    def test_setup_text_from_env(self, monkeypatch):
        monkeypatch.setenv("LOG_FORMAT", "text")
        monkeypatch.setenv("LOG_LEVEL", "ERROR")
        root = logging.getLogger()
        saved_handlers, saved_level = list(root.handlers), root.level
        try:
            setup_logging()
            assert root.level == logging.ERROR
            assert isinstance(root.handlers[0].formatter, TextFormatter)
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
