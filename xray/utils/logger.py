"""Structured logging for the X-Ray SDK.

Every module grabs its logger with ``get_logger(__name__)``. Call
``setup_logging()`` once at process start to pick the renderer; until then
structlog's defaults apply.
"""

import logging
import sys
from typing import Any, Dict, List, Optional

import structlog

from xray.config import get_settings


def _add_component(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Structlog processor: tag every entry with the SDK name."""
    event_dict.setdefault("component", "xray")
    return event_dict


def setup_logging(level: Optional[str] = None, format: Optional[str] = None) -> None:
    """
    Configure structlog on top of stdlib logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR). Defaults to XRAY_LOG_LEVEL.
        format: "json" for machine-readable output, "console" for development.
            Defaults to XRAY_LOG_FORMAT.
    """
    settings = get_settings()
    level = level or settings.log_level
    format = format or settings.log_format
    log_level = getattr(logging, level.upper(), logging.INFO)

    processors: List[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        _add_component,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if format == "json":
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
        stream=sys.stderr,
        level=log_level,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger for a module."""
    return structlog.get_logger(name)
