"""
Configures structured logging for the indexer using structlog.
"""
from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING, Any, List

import structlog

if TYPE_CHECKING:
    from salesindex.config.config import MonitoringConfig


def _shared_processors() -> List[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]


def _handler(handler: logging.Handler, renderer: Any) -> logging.Handler:
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=renderer,
            foreign_pre_chain=_shared_processors(),
        )
    )
    return handler


def configure_logging(config: MonitoringConfig) -> None:
    """
    Sets up structlog to handle all logging for the indexer.

    Console output is always human readable. When ``log_file`` is set the same
    events are also appended to it as JSON lines, which serves as the build log.
    """
    handlers: List[logging.Handler] = [
        _handler(logging.StreamHandler(sys.stdout), structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))
    ]
    if config.log_file:
        handlers.append(_handler(logging.FileHandler(config.log_file, encoding="utf-8"), structlog.processors.JSONRenderer()))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(config.log_level.upper())

    structlog.configure(
        processors=_shared_processors() + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logger = structlog.get_logger("salesindex.logging")
    logger.debug("Logging configured", level=config.log_level, log_file=config.log_file)


def flush_logging() -> None:
    """Flush every handler on the root logger."""
    for handler in logging.getLogger().handlers:
        handler.flush()
