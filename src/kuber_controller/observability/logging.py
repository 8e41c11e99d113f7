"""Structured logging configuration."""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from opentelemetry import trace


def configure_logging(service_name: str, log_level: str, json_logs: bool = True) -> None:
    """Configure stdlib logging + structlog for the controller process."""

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        _add_service_name(service_name),
        _add_trace_context,
    ]

    renderer: structlog.types.Processor
    if json_logs:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.processors.EventRenamer("message"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(log_level)
        ),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=logging.getLevelName(log_level),
        force=True,
    )
    # The kubernetes client logs every request at DEBUG.
    logging.getLogger("kubernetes").setLevel(max(logging.INFO, logging.getLevelName(log_level)))


def _add_service_name(service_name: str) -> structlog.types.Processor:
    def processor(logger: Any, name: str, event: Any) -> Any:
        if isinstance(event, dict):
            event.setdefault("service", service_name)
        return event

    return processor


def _add_trace_context(logger: Any, name: str, event: Any) -> Any:
    span = trace.get_current_span()
    if isinstance(event, dict) and span.is_recording():
        context = span.get_span_context()
        event.setdefault("trace_id", format(context.trace_id, "032x"))
        event.setdefault("span_id", format(context.span_id, "016x"))
    return event
