"""
Loguru setup.

Modules log snake_case events with structured context:

    logger = get_logger(__name__)
    logger.bind(automation_id=str(automation.id)).info("automation_dispatch_started")
"""

import logging
import sys
from typing import Any

from loguru import logger

from crmflow.config import get_settings

# Polled endpoints, only logged at DEBUG
QUIET_PATHS = ("/health", "/api/automations/scheduler/tick")

# Third-party loggers routed through loguru
INTERCEPTED_LOGGERS = (
    "uvicorn",
    "uvicorn.error",
    "uvicorn.access",
    "sqlalchemy.engine",
    "apscheduler",
)

_DEBUG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level> | {extra}"
)
_PLAIN_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {extra[name]}:{function}:{line} | "
    "{message} | {extra}"
)


class InterceptHandler(logging.Handler):
    """Forward stdlib log records to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Walk back to the frame that called the stdlib logger
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back  # type: ignore[assignment]
            depth += 1

        logger.bind(name=record.name).opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def _quiet_paths_filter(record: dict[str, Any]) -> bool:
    """Drop access logs of polled endpoints unless at DEBUG."""
    message = record.get("message", "")
    if any(path in message for path in QUIET_PATHS):
        return bool(record["level"].no <= logging.DEBUG)
    return True


def setup_logging() -> None:
    """Configure loguru for the API, the CLI and the background scheduler."""
    settings = get_settings()

    logger.remove()
    logger.configure(extra={"name": "crmflow"})

    if settings.debug:
        logger.add(
            sys.stderr,
            level="DEBUG",
            format=_DEBUG_FORMAT,
            backtrace=True,
            diagnose=True,
        )
    else:
        logger.add(
            sys.stderr,
            level=settings.log_level.upper(),
            format=_PLAIN_FORMAT,
            filter=_quiet_paths_filter,
            backtrace=True,
            diagnose=False,
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in INTERCEPTED_LOGGERS:
        logging.getLogger(name).handlers = [InterceptHandler()]


def get_logger(name: str) -> Any:
    """Get a loguru logger carrying the module name in its context."""
    return logger.bind(name=name)
