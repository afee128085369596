"""
Structured logging for cadence_kernel, structlog over stdlib.

Events go through the ``cadence_kernel`` stdlib logger, so a host that
already configures logging keeps control: nothing here touches the root
logger. setup_logging() is optional and only needed when the host wants
cadence_kernel to emit on its own.

Environment:
    CADENCE_LOG_LEVEL   level name (default WARNING)
    CADENCE_LOG_FORMAT  "json" for one JSON object per line, console otherwise

Usage:
    from cadence_kernel.logging_config import get_logger, setup_logging
    setup_logging()
    logger = get_logger(__name__)
    logger.warning("rrule_missing", task_id="task-1")
"""

from __future__ import annotations

import logging
import os
import sys
from typing import TextIO

import structlog

PACKAGE_LOGGER = "cadence_kernel"
DEFAULT_LEVEL = "WARNING"


def setup_logging(
    level: str | None = None,
    json_output: bool | None = None,
    stream: TextIO | None = None,
) -> logging.Logger:
    """
    Attach a single handler to the package logger and return it.
    Calling again replaces the handler from the previous call.
    Unknown level names fall back to WARNING.
    """
    if level is None:
        level = os.environ.get("CADENCE_LOG_LEVEL", DEFAULT_LEVEL)

    if json_output is None:
        json_output = os.environ.get("CADENCE_LOG_FORMAT", "").lower() == "json"

    if stream is None:
        stream = sys.stderr

    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.WARNING

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    if json_output:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer(sort_keys=True)
        shared_processors.append(structlog.processors.dict_tracebacks)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=stream.isatty())

    # Loggers are not cached so structlog.testing.capture_logs keeps working
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
    )

    handler = logging.StreamHandler(stream)
    handler.set_name(PACKAGE_LOGGER)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    for existing in list(package_logger.handlers):
        if existing.get_name() == PACKAGE_LOGGER:
            package_logger.removeHandler(existing)
    package_logger.addHandler(handler)
    package_logger.setLevel(numeric_level)
    package_logger.propagate = False
    return package_logger


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


__all__ = ["DEFAULT_LEVEL", "PACKAGE_LOGGER", "get_logger", "setup_logging"]
