"""Logging for the knowledge-base assistant.

Log lines carry the identifiers of the work they belong to: the HTTP request,
the background job, the document being ingested and the chat session. Those
are bound per task with ``bind_log_context`` and rendered by both formatters,
so a failed ingestion attempt or an aborted stream can be traced end to end.
"""

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Iterator, Optional

from kb_assistant.config import Settings, get_settings

ROOT_LOGGER = "kb_assistant"

# Field name -> short label used by the human-readable formatter
CONTEXT_FIELDS = {
    "request_id": "req",
    "job_id": "job",
    "document_id": "doc",
    "session_id": "session",
}

_log_context: ContextVar[Dict[str, Any]] = ContextVar("kb_log_context", default={})

# Libraries that are chatty at INFO
_QUIET_LOGGERS = ("uvicorn.access", "httpx", "openai", "LiteLLM", "litellm", "aiosqlite")

_configured = False


def current_log_context() -> Dict[str, Any]:
    return dict(_log_context.get())


@contextmanager
def bind_log_context(**fields: Any) -> Iterator[Dict[str, Any]]:
    """Attach identifiers to every log line emitted inside the block."""
    merged = {**_log_context.get(), **{k: v for k, v in fields.items() if v is not None}}
    token = _log_context.set(merged)
    try:
        yield merged
    finally:
        _log_context.reset(token)


def set_request_id(request_id: str) -> None:
    """Bind the request id for the rest of the current task."""
    _log_context.set({**_log_context.get(), "request_id": request_id})


class JSONFormatter(logging.Formatter):
    """One JSON object per line, used in production."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(_log_context.get())
        entry.update(getattr(record, "fields", {}))
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Readable single-line format for development."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s %(levelname)-7s %(name)s [%(context)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        bound = _log_context.get()
        parts = [f"{label}={bound[name]}" for name, label in CONTEXT_FIELDS.items() if name in bound]
        record.context = " ".join(parts) or "-"
        return super().format(record)


def setup_logging(settings: Optional[Settings] = None, force: bool = False) -> logging.Logger:
    """Configure the package logger once; JSON output in production."""
    global _configured

    logger = logging.getLogger(ROOT_LOGGER)
    if _configured and not force:
        return logger

    settings = settings or get_settings()
    level = getattr(logging, settings.log_level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if settings.is_production else ConsoleFormatter())

    logger.handlers.clear()
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.INFO if settings.debug else logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.database.echo else logging.WARNING
    )

    _configured = True
    logger.info(
        f"Logging configured: level={settings.log_level}, environment={settings.environment.value}"
    )
    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Get a logger under the package namespace."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}" if name else ROOT_LOGGER)


def log_request(method: str, path: str, status_code: int, duration_ms: float, **fields: Any) -> None:
    """Access log line for one HTTP request."""
    get_logger("http").info(
        f"{method} {path} - {status_code} - {duration_ms:.2f}ms",
        extra={
            "fields": {
                "method": method,
                "path": path,
                "status_code": status_code,
                "duration_ms": round(duration_ms, 2),
                **fields,
            }
        },
    )


def log_error(error: BaseException, context: Optional[Dict[str, Any]] = None, **fields: Any) -> None:
    """
    Log an exception with its application error code when it has one.

    Args:
        error: The exception
        context: Where it happened (method, path, attempt...)
        **fields: Extra identifiers such as ``document_id`` or ``job_id``
    """
    code = getattr(error, "code", None)
    get_logger("error").error(
        f"{type(error).__name__}: {getattr(error, 'message', None) or error}",
        exc_info=error,
        extra={
            "fields": {
                "error_type": type(error).__name__,
                "error_code": code,
                "context": context or {},
                **fields,
            }
        },
    )
