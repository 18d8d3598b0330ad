"""
Logging setup for resolver processes.

Resolver modules log through ``logging.getLogger(__name__)``. This module only
decides where records go and what context they carry: the service name, the
target a resolver loop is working on, and the active trace span if any.
"""

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime

from opentelemetry import trace

DEFAULT_LOG_FORMAT = (
    "%(asctime)s - %(levelname)s - [%(service_name)s] - [%(target)s] - "
    "[%(name)s] - %(message)s"
)

TRACE_LOG_FORMAT = (
    "%(asctime)s - %(levelname)s - [%(service_name)s] - [%(target)s] - "
    "[%(trace_id)s:%(span_id)s] - [%(name)s] - %(message)s"
)

LOG_LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
    "NOTSET": logging.NOTSET,
}

DEFAULT_LOG_LEVEL = "INFO"
LOG_OFF_LEVEL = "OFF"

# Set by each resolver loop so records emitted on its behalf name the target.
current_target: ContextVar[str] = ContextVar("kuberesolver_target", default="-")

_STANDARD_ATTRS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "taskName",
    "exc_info",
    "exc_text",
    "stack_info",
    "service_name",
    "target",
    "trace_id",
    "span_id",
}


class ServiceNameFilter(logging.Filter):
    """Filter to inject service name into log records."""

    def __init__(self, service_name: str) -> None:
        super().__init__()
        self.service_name = service_name

    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = self.service_name  # type: ignore[attr-defined]
        return True


class TargetContextFilter(logging.Filter):
    """Filter to inject the resolver target of the current task."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.target = current_target.get()  # type: ignore[attr-defined]
        return True


class TraceContextFilter(logging.Filter):
    """Filter to inject trace context into log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            record.trace_id = format(span_context.trace_id, "032x")  # type: ignore[attr-defined]
            record.span_id = format(span_context.span_id, "016x")  # type: ignore[attr-defined]
        else:
            record.trace_id = "0" * 32  # type: ignore[attr-defined]
            record.span_id = "0" * 16  # type: ignore[attr-defined]
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def __init__(self, include_trace: bool = True):
        super().__init__()
        self.include_trace = include_trace

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "service": getattr(record, "service_name", "unknown"),
            "target": getattr(record, "target", "-"),
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if self.include_trace:
            trace_id = getattr(record, "trace_id", None)
            span_id = getattr(record, "span_id", None)
            if trace_id and span_id:
                log_entry["trace_id"] = trace_id
                log_entry["span_id"] = span_id

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info),
            }

        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and key not in log_entry:
                log_entry[key] = value

        return json.dumps(log_entry, default=str, ensure_ascii=False)


def configure_logging(
    service_name: str = "kuberesolver",
    log_level: str = DEFAULT_LOG_LEVEL,
    json_format: bool = False,
    include_trace: bool = False,
    logger_name: str = "kuberesolver",
    stream=None,
) -> logging.Logger:
    """Attach a console handler to the ``kuberesolver`` logger hierarchy.

    Calling it again replaces the handler rather than stacking another one.
    """
    logger = logging.getLogger(logger_name)
    logger.handlers.clear()

    if log_level.upper() == LOG_OFF_LEVEL:
        logger.setLevel(logging.CRITICAL + 1)
    else:
        logger.setLevel(LOG_LEVELS.get(log_level.upper(), logging.INFO))

    handler = logging.StreamHandler(stream or sys.stderr)
    if json_format:
        handler.setFormatter(JSONFormatter(include_trace=include_trace))
    else:
        handler.setFormatter(
            logging.Formatter(TRACE_LOG_FORMAT if include_trace else DEFAULT_LOG_FORMAT)
        )

    handler.addFilter(ServiceNameFilter(service_name))
    handler.addFilter(TargetContextFilter())
    if include_trace:
        handler.addFilter(TraceContextFilter())

    logger.addHandler(handler)
    logger.propagate = False
    return logger
