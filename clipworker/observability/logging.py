"""
Structured logging for the worker process.

Modules log through the standard library (``logging.getLogger(__name__)``
with ``extra={...}``); records are rendered by structlog as JSON lines or
console output, carrying the worker identity and the active trace ids.
"""

import logging
import sys
from typing import Any, TextIO

import structlog
from opentelemetry import trace

from clipworker.config import Settings

# Chatty libraries kept at WARNING regardless of LOG_LEVEL
QUIET_LOGGERS = ("sqlalchemy.engine", "httpx", "httpcore", "aiosqlite")


def add_trace_context(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Stamp the current span's trace and span ids, when a span is recording."""
    span = trace.get_current_span()
    if span.is_recording():
        ctx = span.get_span_context()
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    return event_dict


def _renderer(log_format: str) -> Any:
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=False)


def setup_logging(settings: Settings, stream: TextIO | None = None) -> None:
    """
    Route all worker logging through structlog.

    The worker identity is bound once into structlog contextvars, so every
    record (including those from the claim and retry paths) carries
    ``worker_id`` and ``worker_type``.

    Args:
        settings: Source of LOG_LEVEL, LOG_FORMAT and the worker identity.
        stream: Output stream, stdout by default.
    """
    pre_chain: list[Any] = [
        structlog.contextvars.merge_contextvars,
        add_trace_context,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.ExtraAdder(),
    ]

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(settings.log_format),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.contextvars.bind_contextvars(
        worker_id=settings.worker_id,
        worker_type=settings.worker_type,
    )
