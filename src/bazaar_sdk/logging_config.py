"""
Structured logging configuration for the CLI agents.

Library modules log through the standard ``logging`` module. The agents route
those records through structlog to stderr so stdout carries only the JSON
step summaries.
"""

import logging
import os
import sys
from typing import List, Optional

import structlog


def setup_logging(log_level: Optional[str] = None) -> None:
    """Configure structlog for the agents.

    Args:
        log_level: Override log level (default: LOG_LEVEL env var, then INFO)
    """
    name = (log_level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    level = getattr(logging, name, logging.INFO)
    is_dev = level == logging.DEBUG

    shared_processors: List[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if is_dev:
        renderer = structlog.dev.ConsoleRenderer()
    else:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("httpcore", "httpx"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
