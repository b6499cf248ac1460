"""Structured logging setup shared by the board server, its worker and the poller."""

from __future__ import annotations

import logging
from typing import TextIO

import structlog


def resolve_level(level: str) -> int:
    """Map a level name such as ``"info"`` or ``"WARNING"`` to its numeric value."""
    try:
        return logging.getLevelNamesMapping()[level.upper()]
    except KeyError:
        raise ValueError(f"Unknown log level: {level!r}") from None


def configure_logging(level: str = "info", fmt: str = "json", stream: TextIO | None = None) -> None:
    """
    Configure structlog with the given level and ``json`` or ``text`` output.

    Lines go to ``stream``, or to stdout when it is not given.
    """
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
    ]
    if fmt == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(resolve_level(level)),
        logger_factory=structlog.PrintLoggerFactory(stream),
        cache_logger_on_first_use=False,
    )
