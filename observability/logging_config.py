"""
Logging Configuration

Structlog-based logging for the intent pipeline. JSON output by default,
console rendering for local debugging. Conversation ids are carried in
contextvars so every event logged while resolving a conversation's query
is tagged with it.
"""

import logging
import os
import sys
from contextlib import contextmanager
from functools import lru_cache
from typing import Iterator

import structlog


def configure_logging(level: str = "INFO", format_json: bool = True):
    """
    Configure structlog logging to stdout.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        format_json: Use JSON format (True) or console (False)
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper()),
        force=True,
    )

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if format_json:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


@lru_cache
def get_logger(name: str = None) -> structlog.stdlib.BoundLogger:
    """Logger for a module (usually __name__)."""
    return structlog.get_logger(name or "intent")


# Configure on import; LOG_LEVEL / LOG_FORMAT override the defaults
configure_logging(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format_json=os.getenv("LOG_FORMAT", "json").lower() == "json",
)


@contextmanager
def log_context(**fields) -> Iterator[None]:
    """
    Bind fields to every log entry emitted inside the block.

    Empty values (None or "") are not bound. Previous values of the same keys
    are restored on exit.
    """
    bound = {key: value for key, value in fields.items() if value not in (None, "")}
    with structlog.contextvars.bound_contextvars(**bound):
        yield
