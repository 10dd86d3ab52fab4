"""Structured logging for teamcal.

All modules keep using ``logging.getLogger(__name__)``; structlog's
``ProcessorFormatter`` sits on the stdlib handlers and renders every record
either as colored console text (``fmt="text"``) or as JSON lines
(``fmt="json"``).

Each record carries the request scope it was emitted under: the ``viewer``
the API resolved from the identity header and, for feed requests, the feed
``scope`` (``self``, ``team:<org>``, ``project:<id>``).  When an OpenTelemetry
span is active its ``trace_id``/``span_id`` are attached as well.

With ``log_root`` set, JSON copies are also written to::

    {log_root}/teamcal/{process}.log    application records
    {log_root}/uvicorn/{process}.log    HTTP server and driver records
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar
from pathlib import Path

import structlog
from opentelemetry import trace

_viewer_context: ContextVar[str | None] = ContextVar("teamcal_viewer", default=None)
_scope_context: ContextVar[str | None] = ContextVar("teamcal_feed_scope", default=None)

# Third-party loggers capped at WARNING on the console and routed to the
# server log file.
_NOISE_LOGGERS = ("uvicorn.access", "uvicorn.error", "asyncpg")

_APP_LOG_DIR = "teamcal"
_SERVER_LOG_DIR = "uvicorn"


def set_viewer_context(viewer_id: str | None) -> None:
    _viewer_context.set(viewer_id)


def get_viewer_context() -> str | None:
    return _viewer_context.get()


def set_feed_scope(scope: str | None) -> None:
    """Tag subsequent records in this task with the feed being composed."""
    _scope_context.set(scope)


def add_request_context(logger, method_name, event_dict: dict) -> dict:  # noqa: ARG001
    """Processor: attach ``viewer`` and, when set, the feed ``scope``."""
    event_dict["viewer"] = _viewer_context.get()
    scope = _scope_context.get()
    if scope is not None:
        event_dict["scope"] = scope
    return event_dict


def add_trace_ids(logger, method_name, event_dict: dict) -> dict:  # noqa: ARG001
    """Processor: attach OTel ids when a valid span context is current."""
    ctx = trace.get_current_span().get_span_context()
    if ctx.is_valid:
        event_dict["trace_id"] = trace.format_trace_id(ctx.trace_id)
        event_dict["span_id"] = trace.format_span_id(ctx.span_id)
    return event_dict


def _pre_chain(timestamp_fmt: str) -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt=timestamp_fmt, utc=True),
        add_request_context,
        add_trace_ids,
        structlog.stdlib.ExtraAdder(),
    ]


def _formatter(
    renderer: structlog.types.Processor, pre_chain: list[structlog.types.Processor]
) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        foreign_pre_chain=pre_chain,
    )


def _json_file_handler(path: Path) -> logging.FileHandler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path)
    handler.setFormatter(_formatter(structlog.processors.JSONRenderer(), _pre_chain("iso")))
    handler.setLevel(logging.DEBUG)
    return handler


def _resolve_level(level: str) -> int:
    return logging.getLevelNamesMapping().get(level.upper(), logging.INFO)


def configure_logging(
    level: str = "INFO",
    fmt: str = "text",
    log_root: Path | str | None = None,
    process_name: str = "teamcal",
) -> None:
    """Install console (and optional file) handlers on the root logger.

    Safe to call more than once; previously installed root handlers are
    replaced.  *process_name* (``api``, ``scheduler``, ``batch``, ...) names
    the log files under *log_root*.
    """
    if fmt == "json":
        pre_chain = _pre_chain("iso")
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        pre_chain = _pre_chain("%H:%M:%S")
        renderer = structlog.dev.ConsoleRenderer()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(_formatter(renderer, pre_chain))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)
    root.setLevel(_resolve_level(level))

    server_handler = None
    if log_root is not None:
        log_root = Path(log_root)
        root.addHandler(_json_file_handler(log_root / _APP_LOG_DIR / f"{process_name}.log"))
        server_handler = _json_file_handler(
            log_root / _SERVER_LOG_DIR / f"{process_name}.log"
        )

    for name in _NOISE_LOGGERS:
        noisy = logging.getLogger(name)
        noisy.setLevel(logging.WARNING)
        if server_handler is not None:
            noisy.addHandler(server_handler)

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
