"""
Structured logging for the worker and admin API processes.

Modules keep logging through logging.getLogger(__name__) with extra=...;
setup_logging() routes those records through structlog so job_id, queue,
worker_id and attempt come out as top-level keys.
"""

import logging
import sys
from typing import Any

import structlog
from opentelemetry import trace

from jobcore.config import Settings, get_settings

# Chatty at INFO; job logs are what matter.
QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "asyncpg")


def add_trace_context(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Attach the active span's trace and span ids, if a span is recording."""
    span = trace.get_current_span()
    if span.is_recording():
        ctx = span.get_span_context()
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    return event_dict


def _renderers(log_format: str) -> list[Any]:
    if log_format == "console":
        return [structlog.dev.ConsoleRenderer(colors=True)]
    return [
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ]


def setup_logging(settings: Settings | None = None) -> None:
    """
    Install a structlog formatter on the root logger.

    Args:
        settings: Source of log_level and log_format ("json" or "console").
            Defaults to the process settings.
    """
    settings = settings or get_settings()

    pre_chain: list[Any] = [
        structlog.contextvars.merge_contextvars,
        add_trace_context,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ExtraAdder(),
    ]

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                *_renderers(settings.log_format),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def bind_context(**kwargs: Any) -> None:
    """
    Bind fields to every later log record in the current task.

    asyncio tasks copy the context on creation, so fields bound inside a
    job's dispatch task do not leak into the poller loop.
    """
    structlog.contextvars.bind_contextvars(**kwargs)
