"""
Structured Logging Service

Correlation context for the acquisition engine, so a single grab can be
followed from the HTTP request (or scheduler job) through the client
submission and the later sync/import steps.

Features:
- request_id (X-Request-ID), download_id and scheduler job context
- Context propagation via contextvars (survives asyncio task switches)
- JSON formatter for machine-parseable output (LOG_JSON=true)
- Plain-text filter appending the same correlation ids
"""

import json
import logging
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional


request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
download_id_var: ContextVar[Optional[int]] = ContextVar('download_id', default=None)
job_var: ContextVar[Optional[str]] = ContextVar('job', default=None)
extra_context_var: ContextVar[Dict[str, Any]] = ContextVar('extra_context', default={})


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def set_request_id(request_id: Optional[str]) -> None:
    request_id_var.set(request_id)


def get_download_id() -> Optional[int]:
    return download_id_var.get()


def get_job() -> Optional[str]:
    return job_var.get()


def clear_context() -> None:
    """Reset every correlation variable (end of an HTTP request)."""
    request_id_var.set(None)
    download_id_var.set(None)
    job_var.set(None)
    extra_context_var.set({})


def generate_request_id() -> str:
    """Short request id for requests without X-Request-ID."""
    return uuid.uuid4().hex[:8]


def correlation_fields() -> Dict[str, Any]:
    """Current correlation ids, unset ones omitted."""
    fields: Dict[str, Any] = {}
    if request_id_var.get():
        fields["request_id"] = request_id_var.get()
    if download_id_var.get():
        fields["download_id"] = download_id_var.get()
    if job_var.get():
        fields["job"] = job_var.get()
    extra = extra_context_var.get()
    if extra:
        fields["context"] = dict(extra)
    return fields


class JSONLogFormatter(logging.Formatter):
    """One JSON object per line, with the correlation ids of the emitting task."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "line": record.lineno,
        }
        log_data.update(correlation_fields())

        if record.exc_info and record.exc_info[0]:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
            }
        return json.dumps(log_data, default=str)


class CorrelationFilter(logging.Filter):
    """
    Adds a `correlation` attribute to every record for plain-text formats,
    e.g. " [req=1a2b3c4d download=42]", or "" outside any context.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        parts = []
        if request_id_var.get():
            parts.append(f"req={request_id_var.get()}")
        if job_var.get():
            parts.append(f"job={job_var.get()}")
        if download_id_var.get():
            parts.append(f"download={download_id_var.get()}")
        record.correlation = f" [{' '.join(parts)}]" if parts else ""
        return True


class CorrelationContext:
    """
    Set correlation ids for the duration of a block.

    Usage:
        with CorrelationContext(download_id=42, stage="import"):
            logger.info("Importing")   # carries download_id=42

    Values not given are inherited from the enclosing context; everything is
    restored on exit.
    """

    def __init__(self, request_id: Optional[str] = None, download_id: Optional[int] = None,
                 job: Optional[str] = None, **extra_context):
        self.values = {
            request_id_var: request_id,
            download_id_var: download_id,
            job_var: job,
        }
        self.extra_context = extra_context
        self._tokens = []

    def __enter__(self):
        for var, value in self.values.items():
            if value is not None:
                self._tokens.append((var, var.set(value)))
        if self.extra_context:
            merged = {**extra_context_var.get(), **self.extra_context}
            self._tokens.append((extra_context_var, extra_context_var.set(merged)))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens = []
        return False


def setup_json_logging(
    logger_name: Optional[str] = None,
    level: int = logging.INFO,
    json_output: bool = True
) -> logging.Handler:
    """
    Attach a stream handler carrying correlation ids.

    Args:
        logger_name: Logger name (None for root logger)
        level: Minimum log level
        json_output: JSON lines (True) or plain text with a correlation suffix

    Returns:
        The configured handler
    """
    logger = logging.getLogger(logger_name) if logger_name else logging.getLogger()

    handler = logging.StreamHandler()
    handler.setLevel(level)

    if json_output:
        handler.setFormatter(JSONLogFormatter())
    else:
        handler.addFilter(CorrelationFilter())
        handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)s] %(name)s%(correlation)s - %(message)s'
        ))

    logger.addHandler(handler)
    return handler
