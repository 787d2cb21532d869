"""
Logging configuration for sqlh.

This module sets up structured logging with structlog.
"""

import logging
import sys
from typing import Any, MutableMapping, Optional

import structlog
from structlog.stdlib import LoggerFactory

from sqlh.core.config import Config


def configure_logging(level: Optional[str] = None) -> None:
    """
    Configure structured logging for the application.

    Sets up structlog with console output and appropriate log levels.

    Args:
        level: Log level name. If None, uses Config.LOG_LEVEL.
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, (level or Config.LOG_LEVEL).upper(), logging.INFO),
    )

    # Configure structlog
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Optional name for the logger. If None, uses the calling module's name.

    Returns:
        Configured structured logger instance.
    """
    return structlog.get_logger(name)


def _drop_event(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    raise structlog.DropEvent


def get_null_logger() -> Any:
    """
    Get a logger that discards every event.

    Used when a caller does not hand a logger to the database helper.
    """
    return structlog.wrap_logger(
        structlog.ReturnLogger(),
        processors=[_drop_event],
        wrapper_class=structlog.BoundLogger,
    )


# Configure logging when module is imported
configure_logging()
