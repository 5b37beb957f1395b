"""Structured logging setup via structlog."""

import logging
from typing import Any, List, Optional

import structlog

LOGGER_NAME = "storefront"


def get_logger(name: Optional[str] = None) -> Any:
    """Return a structlog logger bound to ``storefront`` or a child name.

    Example:
        >>> logger = get_logger("wishlist")
        >>> logger.info("wishlist_refreshed", count=3)
    """
    return structlog.get_logger(f"{LOGGER_NAME}.{name}" if name else LOGGER_NAME)


def configure_logging(*, log_level: str = "INFO", json_format: bool = False, add_timestamp: bool = True) -> None:
    """Configure structlog on top of the stdlib logging module.

    Args:
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_format: If True, output JSON. If False, output human-readable lines.
        add_timestamp: If True, add an ISO timestamp to each entry.
    """
    processors: List[Any] = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if add_timestamp:
        processors.insert(0, structlog.processors.TimeStamper(fmt="iso"))

    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper()),
    )
