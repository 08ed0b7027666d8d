"""
Structured logging configuration using structlog.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.typing import Processor

# Chatty libraries that log every request or statement at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "aiosqlite", "sqlalchemy.engine", "asyncio")

LOG_FORMATS = ("auto", "json", "console")


def _use_console(log_format: str) -> bool:
    if log_format == "console":
        return True
    if log_format == "json":
        return False
    return sys.stderr.isatty()


def setup_logging(log_level: str = "INFO", log_format: str = "auto") -> None:
    """
    Configure structlog and the standard library root logger.

    `log_format` is "json", "console", or "auto" (console on a TTY,
    JSON otherwise).
    """
    if log_format not in LOG_FORMATS:
        raise ValueError(f"Unknown log format: {log_format}")

    level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if _use_console(log_format):
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))
    else:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """Get a logger, bound to `module=name` when a name is given."""
    logger = structlog.get_logger()
    if name:
        logger = logger.bind(module=name)
    return logger


class LoggerMixin:
    """Gives a class a `log` property bound to its class name."""

    @property
    def log(self) -> structlog.BoundLogger:
        if not hasattr(self, "_logger"):
            self._logger = get_logger(self.__class__.__name__)
        return self._logger


def log_context(**kwargs: Any):
    """
    Bind key/values to every log line emitted in the block.

    Used per trade so nested service calls carry team and competition ids.
    """
    return structlog.contextvars.bound_contextvars(**kwargs)
