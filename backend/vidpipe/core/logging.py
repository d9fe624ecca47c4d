"""Structured logging with per-job correlation IDs.

Every log line emitted while a processing job runs carries the job's video id
(as the correlation id) and the job id, so one video's history can be pulled
out of an interleaved worker log.
"""

import logging
import sys
import traceback
import json
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional, Any
from contextvars import ContextVar

from vidpipe.core.tracing import get_trace_id, get_span_id

correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
job_id_var: ContextVar[Optional[str]] = ContextVar("job_id", default=None)

# LogRecord attributes that are not user supplied extras
_RESERVED_ATTRS = frozenset((
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "message", "taskName", "correlation_id", "job_id",
))


def get_correlation_id() -> str:
    """Get the current correlation ID, generating one when unset."""
    cid = correlation_id_var.get()
    if cid is None:
        trace_id = get_trace_id()
        if trace_id:
            return trace_id
        cid = str(uuid.uuid4())
        correlation_id_var.set(cid)
    return cid


@contextmanager
def job_log_context(video_id: str, job_id: Optional[str] = None) -> Iterator[None]:
    """Bind a job's identifiers to every log record in the enclosed block.

    Args:
        video_id: Video being processed, used as the correlation id
        job_id: Identifier of the processing job
    """
    cid_token = correlation_id_var.set(video_id)
    job_token = job_id_var.set(job_id)
    try:
        yield
    finally:
        correlation_id_var.reset(cid_token)
        job_id_var.reset(job_token)


class StructuredFormatter(logging.Formatter):
    """JSON structured log formatter with correlation ID support."""

    def __init__(
        self,
        include_stack_trace: bool = True,
        include_extra_fields: bool = True,
    ):
        super().__init__()
        self.include_stack_trace = include_stack_trace
        self.include_extra_fields = include_extra_fields

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None) or get_correlation_id(),
        }

        job_id = getattr(record, "job_id", None)
        if job_id:
            log_data["job_id"] = job_id

        trace_id = get_trace_id()
        span_id = get_span_id()
        if trace_id:
            log_data["trace_id"] = trace_id
        if span_id:
            log_data["span_id"] = span_id

        log_data["source"] = {
            "file": record.pathname,
            "line": record.lineno,
            "function": record.funcName,
        }

        if record.exc_info and self.include_stack_trace:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "stack_trace": self._format_stack_trace(record.exc_info),
            }

        if self.include_extra_fields:
            extra_fields = {}
            for key, value in record.__dict__.items():
                if key in _RESERVED_ATTRS:
                    continue
                try:
                    json.dumps(value)
                    extra_fields[key] = value
                except (TypeError, ValueError):
                    extra_fields[key] = str(value)

            if extra_fields:
                log_data["extra"] = extra_fields

        return json.dumps(log_data, default=str)

    def _format_stack_trace(self, exc_info) -> Optional[list[str]]:
        if not exc_info or not exc_info[2]:
            return None
        return traceback.format_exception(*exc_info)


class CorrelationIdFilter(logging.Filter):
    """Logging filter that stamps job identifiers on all records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id()
        record.job_id = job_id_var.get() or "-"
        return True


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    include_stack_trace: bool = True,
) -> None:
    """Set up worker logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON structured logging
        include_stack_trace: Include stack traces in error logs
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, level.upper()))
    console_handler.addFilter(CorrelationIdFilter())

    if json_format:
        formatter = StructuredFormatter(include_stack_trace=include_stack_trace)
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - "
            "[%(correlation_id)s/%(job_id)s] - %(message)s"
        )

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Quiet down chatty client libraries
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)


def log_error(
    logger: logging.Logger,
    message: str,
    exception: Optional[BaseException] = None,
    **extra: Any,
) -> None:
    """Log an error with correlation ID and optional exception."""
    extra["correlation_id"] = get_correlation_id()

    if exception:
        logger.error(message, exc_info=exception, extra=extra)
    else:
        logger.error(message, extra=extra)


def log_warning(
    logger: logging.Logger,
    message: str,
    **extra: Any,
) -> None:
    """Log a warning with correlation ID."""
    extra["correlation_id"] = get_correlation_id()
    logger.warning(message, extra=extra)


def log_info(
    logger: logging.Logger,
    message: str,
    **extra: Any,
) -> None:
    """Log info with correlation ID."""
    extra["correlation_id"] = get_correlation_id()
    logger.info(message, extra=extra)
