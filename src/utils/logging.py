"""Structured logging for the image generation backend.

Modules log through ``logging.getLogger(__name__)``; the root handler
renders every record with structlog. Records carry the request id bound
by the HTTP middleware (structlog contextvars) and, inside a background
generation, the id of the task being worked on.
"""

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

import structlog

current_task_id: ContextVar[str | None] = ContextVar("current_task_id", default=None)

# Client libraries that log every request at INFO
NOISY_LOGGERS = (
    "httpx",
    "httpcore",
    "google_genai",
    "google_genai.models",
    "botocore",
    "boto3",
    "urllib3.connectionpool",
    "aiosqlite",
)


def add_task_id(_logger, _method_name, event_dict):
    """Structlog processor to inject task_id into all log events."""
    task_id = current_task_id.get()
    if task_id:
        event_dict["task_id"] = task_id
    return event_dict


def build_formatter(json_output: bool = False) -> structlog.stdlib.ProcessorFormatter:
    """Formatter that renders stdlib records through the structlog chain."""
    pre_chain = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_task_id,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )


def setup_logging(log_level: str = "INFO", json_output: bool = False) -> None:
    """Install the structlog-rendering handler on the root logger.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_output: JSON lines for log aggregation instead of console output
    """
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(build_formatter(json_output))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)


@contextmanager
def task_context(task_id: str) -> Iterator[None]:
    """Tag log records emitted inside the block with ``task_id``."""
    token = current_task_id.set(task_id)
    try:
        yield
    finally:
        current_task_id.reset(token)
