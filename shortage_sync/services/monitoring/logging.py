"""
Structured Logging
JSON logging with correlation IDs for stdlib loggers, structlog configuration
for sync jobs, and per-job capture of log events as run output
"""

import logging
import os
import sys
import threading
from collections import deque
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

import structlog
from asgi_correlation_id.context import correlation_id
from pythonjsonlogger import jsonlogger


class CorrelationJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter with automatic correlation ID injection.

    Adds correlation_id (from the request context set by CorrelationIdMiddleware),
    service and environment to every record.
    """

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        log_record['correlation_id'] = correlation_id.get() or 'none'
        log_record['service'] = 'shortage-sync'
        log_record['environment'] = os.getenv('ENVIRONMENT', 'development')


def setup_logging(level: int = logging.INFO):
    """
    Configure structured JSON logging to stdout for stdlib loggers.

    Returns:
        logging.Handler: The configured handler (for testing)
    """
    handler = logging.StreamHandler(sys.stdout)

    formatter = CorrelationJsonFormatter(
        '%(timestamp)s %(level)s %(name)s %(message)s',
        rename_fields={
            'timestamp': 'asctime',
            'level': 'levelname'
        }
    )
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    return handler


class JobOutputBuffer:
    """Bounded tail of rendered log lines for one job run"""

    def __init__(self, max_lines: int = 500):
        self._lines = deque(maxlen=max_lines)
        self._lock = threading.Lock()

    def append(self, line: str) -> None:
        with self._lock:
            self._lines.append(line)

    def lines(self) -> list:
        with self._lock:
            return list(self._lines)

    def text(self, max_chars: Optional[int] = None) -> str:
        output = "\n".join(self.lines())
        if max_chars is not None and len(output) > max_chars:
            return output[-max_chars:]
        return output


_capture_lock = threading.Lock()
_active_captures: Dict[str, JobOutputBuffer] = {}

_RESERVED_KEYS = ("event", "timestamp", "level", "job")


def format_output_line(event_dict: dict) -> str:
    """Render one structlog event as a compact 'ts level event k=v' line"""
    parts = [
        str(event_dict.get("timestamp", "")),
        str(event_dict.get("level", "")).upper(),
        str(event_dict.get("event", "")),
    ]
    parts.extend(
        f"{key}={value}" for key, value in event_dict.items() if key not in _RESERVED_KEYS
    )
    return " ".join(part for part in parts if part)


def capture_job_output_processor(logger, method_name, event_dict):
    """structlog processor: copy events bound to a captured job into its buffer"""
    job = event_dict.get("job")
    if job is not None:
        buffer = _active_captures.get(job)
        if buffer is not None:
            buffer.append(format_output_line(event_dict))
    return event_dict


@contextmanager
def capture_job_output(job: str, max_lines: int = 500) -> Iterator[JobOutputBuffer]:
    """
    Capture log events carrying job=<job> for the duration of the block.

    Events reach the buffer only if structlog was configured with
    configure_structlog() and the job name is bound in the context.
    """
    buffer = JobOutputBuffer(max_lines=max_lines)
    with _capture_lock:
        _active_captures[job] = buffer
    try:
        yield buffer
    finally:
        with _capture_lock:
            if _active_captures.get(job) is buffer:
                del _active_captures[job]


def configure_structlog(json_output: bool = True) -> None:
    """
    Configure structlog for the API process, scheduler threads and scripts.
    """
    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer(colors=False)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            capture_job_output_processor,
            renderer,
        ]
    )
