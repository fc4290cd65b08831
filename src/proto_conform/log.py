"""
Structured logging for proto-conform.

Log output goes to stderr so that the report printed on stdout stays
machine-readable.

Configuration via environment:
- PROTO_CONFORM_LOG_LEVEL: debug/info/warning/error (default: warning)
- PROTO_CONFORM_LOG_FORMAT: console/json (default: console)
"""

import logging
import os
import sys
from typing import Optional

import structlog

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "silent": logging.CRITICAL + 10,
}

_configured = False


def configure_logging(
    level: Optional[str] = None,
    format: Optional[str] = None,
    force: bool = False,
) -> None:
    """
    Configure structlog on top of the standard library logging backend.

    Args:
        level: Log level name (falls back to PROTO_CONFORM_LOG_LEVEL)
        format: "console" or "json" (falls back to PROTO_CONFORM_LOG_FORMAT)
        force: Reconfigure even if logging was already set up
    """
    global _configured

    if _configured and not force:
        return

    if level is None:
        level = os.environ.get("PROTO_CONFORM_LOG_LEVEL", "warning")
    if format is None:
        format = os.environ.get("PROTO_CONFORM_LOG_FORMAT", "console")

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=_LEVELS.get(level.lower(), logging.WARNING),
        force=True,
    )

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if format == "json":
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(colors=False),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    _configured = True
