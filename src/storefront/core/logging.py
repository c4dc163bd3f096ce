"""Logging configuration for the storefront processes."""

import logging
import sys
from typing import Optional

import structlog
from structlog.typing import Processor

from storefront.core.config import Settings, get_settings

# Client libraries that log every backend call at INFO; the proxy engine
# already records each forwarded request
QUIET_LOGGERS = ("httpx", "httpcore", "pymongo")


def setup_logging(settings: Optional[Settings] = None) -> None:
    """Setup structured logging for the gateway or a backend service."""
    settings = settings or get_settings()
    level = getattr(logging, settings.LOG_LEVEL)

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
            _get_renderer(settings.LOG_FORMAT),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def _get_renderer(log_format: str) -> Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    # Colors only on a terminal, so redirected output stays plain text
    return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
