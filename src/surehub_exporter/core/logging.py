"""Structured logging for the exporter process.

Every module logs through ``logging.getLogger(__name__)`` with ``extra=``
fields. ``configure_logging`` puts a structlog ``ProcessorFormatter`` on the
root handler so those records come out as key/value console lines (``text``)
or JSON lines (``json``), each tagged with the service name and the trace
and span ids of the poll cycle that emitted it.

With a log directory, JSON copies go to ``surehub-exporter.log``, and warnings
from the HTTP server and HTTP client loggers are also copied to ``uvicorn.log``.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import structlog
from opentelemetry import trace
from structlog.types import EventDict, Processor, WrappedLogger

DEFAULT_SERVICE_NAME = "surehub-exporter"

# uvicorn and httpx log every request at INFO; the exporter logs its own
# request and API-call lines instead
_TRANSPORT_LOGGERS = ("uvicorn.access", "uvicorn.error", "httpx", "httpcore")

_NO_TRACE_ID = "0" * 32
_NO_SPAN_ID = "0" * 16


def add_otel_context(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
    """Add ``trace_id``/``span_id`` of the active span (zeros outside a span)."""
    ctx = trace.get_current_span().get_span_context()
    if ctx.is_valid:
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    else:
        event_dict["trace_id"] = _NO_TRACE_ID
        event_dict["span_id"] = _NO_SPAN_ID
    return event_dict


def service_tagger(service_name: str) -> Processor:
    """Build a processor that stamps every event with *service_name*."""

    def add_service(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", service_name)
        return event_dict

    return add_service


def _pre_chain(service_name: str, *, timestamp_fmt: str) -> list[Processor]:
    return [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt=timestamp_fmt),
        service_tagger(service_name),
        add_otel_context,
        structlog.stdlib.ExtraAdder(),
    ]


def _formatter(renderer: Processor, pre_chain: list[Processor]) -> logging.Formatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        foreign_pre_chain=pre_chain,
    )


def _json_file_handler(path: Path, service_name: str) -> logging.FileHandler:
    handler = logging.FileHandler(path)
    handler.setFormatter(
        _formatter(
            structlog.processors.JSONRenderer(),
            _pre_chain(service_name, timestamp_fmt="iso"),
        )
    )
    return handler


def verbosity_to_level(verbose: int, default: str = "INFO") -> str:
    """Map a ``-v`` count onto a log level; any ``-v`` means DEBUG."""
    return "DEBUG" if verbose > 0 else default


def configure_logging(
    level: str = "INFO",
    fmt: str = "text",
    log_root: Path | None = None,
    service_name: str = DEFAULT_SERVICE_NAME,
) -> None:
    """Route all stdlib logging through structlog renderers.

    Safe to call again: existing root handlers are replaced.
    """
    if fmt == "json":
        console = _formatter(
            structlog.processors.JSONRenderer(),
            _pre_chain(service_name, timestamp_fmt="iso"),
        )
    else:
        console = _formatter(
            structlog.dev.ConsoleRenderer(),
            _pre_chain(service_name, timestamp_fmt="%H:%M:%S"),
        )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(console)

    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    root.addHandler(console_handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    transport_handler = None
    if log_root is not None:
        log_root = Path(log_root)
        log_root.mkdir(parents=True, exist_ok=True)
        root.addHandler(_json_file_handler(log_root / f"{service_name}.log", service_name))
        transport_handler = _json_file_handler(log_root / "uvicorn.log", service_name)

    for name in _TRANSPORT_LOGGERS:
        transport_logger = logging.getLogger(name)
        transport_logger.setLevel(logging.WARNING)
        for handler in transport_logger.handlers[:]:
            transport_logger.removeHandler(handler)
            handler.close()
        if transport_handler is not None:
            transport_logger.addHandler(transport_handler)
