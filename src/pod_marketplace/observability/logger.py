"""Structured JSON logging with request_id support.

Uses structlog for structured logging with JSON output.
Every log entry includes a request_id so the lines of one HTTP request, or
of one deferred task, can be correlated.  Ids and other per-task fields
live in structlog's context variables and are merged into each entry.
"""

from __future__ import annotations

import logging
import sys
import uuid
from typing import Any

import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars, get_contextvars


def get_request_id() -> str:
    """Get current request ID, binding a fresh one if none is bound."""
    rid = get_contextvars().get("request_id")
    if not rid:
        rid = new_request_id()
    return rid


def set_request_id(request_id: str) -> None:
    """Bind *request_id* for the current context."""
    bind_contextvars(request_id=request_id)


def new_request_id() -> str:
    """Generate and bind a new request ID."""
    rid = str(uuid.uuid4())
    bind_contextvars(request_id=rid)
    return rid


def bind_task_context(request_id: str, **fields: Any) -> None:
    """Replace the bound context with one deferred task's identity.

    Fields from the previous task do not leak into this one.
    """
    clear_contextvars()
    bind_contextvars(request_id=request_id, **fields)


def _ensure_request_id(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Structlog processor: every entry carries a request_id."""
    if "request_id" not in event_dict:
        event_dict["request_id"] = get_request_id()
    return event_dict


def setup_logging(
    level: str = "INFO",
    format: str = "json",
) -> None:
    """Configure structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR).
        format: "json" for production, "console" for development.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    shared: list[Any] = [
        structlog.contextvars.merge_contextvars,
        _ensure_request_id,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if format == "json":
        renderer: Any = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Route plain ``logging.getLogger(__name__)`` records through the same
    # renderer so library modules need not import structlog.
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(log_level)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger for a module."""
    return structlog.get_logger(name)
