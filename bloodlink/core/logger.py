"""structlog setup for bloodlink processes (the alert worker, embedding apps)."""
import logging
import sys
from typing import Any

import structlog

from bloodlink.core.config import get_settings


def setup_logging() -> None:
    """Configure structlog once at process start.

    Every event carries the service name and an ISO UTC timestamp. The
    console renderer is used in development, JSON lines everywhere else.
    """
    settings = get_settings()
    level = logging.getLevelName(settings.log_level.upper())

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.dev.ConsoleRenderer() if settings.environment == "development"
            else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )
    structlog.contextvars.bind_contextvars(service=settings.service_name)

    # sqlalchemy and redis log through stdlib logging
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)


def get_logger(name: str) -> Any:
    return structlog.get_logger(name)
