"""Structured JSON logging configuration.

This module provides the logging configuration for git-engine, with support for:
- JSON-formatted log output for machine parsing
- Correlation IDs (tenant_id, session_id, trace_id) for request tracing
- Configurable log levels via environment variables

Usage:
    from git_engine.logging_config import setup_logging, get_logger, LogContext

    # Initialize logging at application startup
    setup_logging()

    logger = get_logger(__name__)

    with LogContext(tenant_id="acme", session_id="s1", trace_id="t-123"):
        logger.info("Running git status")
    # Output: {"timestamp": "...", "level": "INFO", "message": "Running git status",
    #          "tenant_id": "acme", "session_id": "s1", "trace_id": "t-123", ...}

Nothing is configured at import time; library users keep control of the
root logger until they call ``setup_logging()``.
"""

from __future__ import annotations

import json
import logging
import os
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Any, Optional

# Context variables for correlation IDs (thread-safe)
_tenant_id: ContextVar[Optional[str]] = ContextVar("tenant_id", default=None)
_session_id: ContextVar[Optional[str]] = ContextVar("session_id", default=None)
_trace_id: ContextVar[Optional[str]] = ContextVar("trace_id", default=None)
_extra_context: ContextVar[dict] = ContextVar("extra_context", default={})

_CONTEXT_VARS: dict[str, ContextVar] = {
    "tenant_id": _tenant_id,
    "session_id": _session_id,
    "trace_id": _trace_id,
}

# Standard LogRecord attributes, never copied as extra fields
_STANDARD_ATTRS = frozenset({
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "message", "taskName",
})


def set_context(
    tenant_id: Optional[str] = None,
    session_id: Optional[str] = None,
    trace_id: Optional[str] = None,
    **extra: Any,
) -> None:
    """Set correlation context for the current async context / thread.

    Args:
        tenant_id: Tenant the current operation runs for.
        session_id: Session the current operation belongs to.
        trace_id: Per-call trace identifier.
        **extra: Additional context fields to include in logs.
    """
    values = {"tenant_id": tenant_id, "session_id": session_id, "trace_id": trace_id}
    for name, value in values.items():
        if value is not None:
            _CONTEXT_VARS[name].set(value)
    if extra:
        current = _extra_context.get()
        _extra_context.set({**current, **extra})


def get_context() -> dict[str, Any]:
    """Get the current correlation context.

    Returns:
        Dictionary with tenant_id, session_id, trace_id (when set) and any
        extra context.
    """
    context: dict[str, Any] = {}
    for name, var in _CONTEXT_VARS.items():
        value = var.get()
        if value:
            context[name] = value
    extra = _extra_context.get()
    if extra:
        context.update(extra)
    return context


def clear_context() -> None:
    """Clear all correlation context for the current async context / thread."""
    for var in _CONTEXT_VARS.values():
        var.set(None)
    _extra_context.set({})


def _format_timestamp(record: logging.LogRecord) -> str:
    return time.strftime(
        "%Y-%m-%dT%H:%M:%S",
        time.gmtime(record.created),
    ) + f".{int(record.msecs * 1000):06d}Z"


class JSONFormatter(logging.Formatter):
    """JSON log formatter with correlation ID support.

    Produces logs in the format:
    {
        "timestamp": "2024-01-15T10:30:00.123456Z",
        "level": "INFO",
        "logger": "git_engine.provider",
        "message": "Something happened",
        "tenant_id": "acme",
        "trace_id": "0b6f...",
        "location": "provider.py:42:execute",
        "extra_field": "extra_value"
    }
    """

    def __init__(
        self,
        include_timestamp: bool = True,
        include_location: bool = True,
    ):
        super().__init__()
        self.include_timestamp = include_timestamp
        self.include_location = include_location

    def format(self, record: logging.LogRecord) -> str:
        log_dict: dict[str, Any] = {}

        if self.include_timestamp:
            log_dict["timestamp"] = _format_timestamp(record)

        log_dict["level"] = record.levelname
        log_dict["logger"] = record.name
        log_dict["message"] = record.getMessage()

        log_dict.update(get_context())

        if self.include_location:
            log_dict["location"] = f"{record.filename}:{record.lineno}:{record.funcName}"

        if record.exc_info:
            log_dict["exception"] = self.formatException(record.exc_info)

        # Extra fields from the log call
        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and not key.startswith("_"):
                log_dict[key] = value

        return json.dumps(log_dict, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable text formatter with correlation ID support.

    Produces logs in the format:
    2024-01-15T10:30:00.123456Z INFO [git_engine.provider] [acme/s1/0b6f...] Something happened
    """

    def __init__(
        self,
        include_timestamp: bool = True,
        include_location: bool = False,
    ):
        super().__init__()
        self.include_timestamp = include_timestamp
        self.include_location = include_location

    def format(self, record: logging.LogRecord) -> str:
        parts = []

        if self.include_timestamp:
            parts.append(_format_timestamp(record))

        parts.append(record.levelname)
        parts.append(f"[{record.name}]")

        context = get_context()
        ctx_parts = [context[name] for name in _CONTEXT_VARS if name in context]
        if ctx_parts:
            parts.append(f"[{'/'.join(ctx_parts)}]")

        parts.append(record.getMessage())

        if self.include_location:
            parts.append(f"({record.filename}:{record.lineno})")

        result = " ".join(parts)

        if record.exc_info:
            result += "\n" + self.formatException(record.exc_info)

        return result


def setup_logging(
    level: Optional[str] = None,
    format_type: Optional[str] = None,
    include_timestamp: Optional[bool] = None,
    include_location: Optional[bool] = None,
) -> None:
    """Configure the root logger with the specified settings.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
               Defaults to LOG_LEVEL environment variable or INFO.
        format_type: Log format ("json" or "text").
                     Defaults to LOG_FORMAT environment variable or "json".
        include_timestamp: Include timestamp in logs.
                          Defaults to LOG_INCLUDE_TIMESTAMP env var or True.
        include_location: Include source location in logs.
                         Defaults to LOG_INCLUDE_LOCATION env var or True.
    """
    level = level or os.environ.get("LOG_LEVEL", "INFO")
    format_type = format_type or os.environ.get("LOG_FORMAT", "json")
    if include_timestamp is None:
        include_timestamp = os.environ.get("LOG_INCLUDE_TIMESTAMP", "true").lower() == "true"
    if include_location is None:
        include_location = os.environ.get("LOG_INCLUDE_LOCATION", "true").lower() == "true"

    if format_type.lower() == "json":
        formatter: logging.Formatter = JSONFormatter(
            include_timestamp=include_timestamp,
            include_location=include_location,
        )
    else:
        formatter = TextFormatter(
            include_timestamp=include_timestamp,
            include_location=include_location,
        )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Remove existing handlers to avoid duplicates
    root_logger.handlers.clear()
    root_logger.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the specified name."""
    return logging.getLogger(name)


class LogContext:
    """Context manager for setting correlation context.

    Usage:
        with LogContext(tenant_id="acme", trace_id="t-1"):
            logger.info("Processing")  # Will include tenant_id and trace_id
        # Previous context restored after the block
    """

    def __init__(
        self,
        tenant_id: Optional[str] = None,
        session_id: Optional[str] = None,
        trace_id: Optional[str] = None,
        **extra: Any,
    ):
        self.values = {
            "tenant_id": tenant_id,
            "session_id": session_id,
            "trace_id": trace_id,
        }
        self.extra = extra
        self._saved: dict[str, Any] = {}

    def __enter__(self) -> "LogContext":
        for name, var in _CONTEXT_VARS.items():
            self._saved[name] = var.get()
        self._saved["extra"] = _extra_context.get()

        set_context(**self.values, **self.extra)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        for name, var in _CONTEXT_VARS.items():
            var.set(self._saved.get(name))
        _extra_context.set(self._saved.get("extra", {}))


def generate_trace_id() -> str:
    """Generate a unique trace ID (UUID4 format)."""
    return str(uuid.uuid4())
