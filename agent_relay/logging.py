"""Logging configuration for Agent Relay."""

import logging
import sys
from pathlib import Path
from typing import TextIO

import structlog

from agent_relay.config import get_config

_log_file: TextIO | None = None


def _open_log_file(path: str) -> TextIO:
    """Open the append-only log file, replacing any previously opened one."""
    global _log_file
    if _log_file is not None and not _log_file.closed:
        _log_file.close()
    target = Path(path).expanduser()
    target.parent.mkdir(parents=True, exist_ok=True)
    _log_file = target.open("a", encoding="utf-8", buffering=1)
    return _log_file


def configure_logging(level: str | None = None) -> None:
    """Configure structlog from the active config.

    Agent output owns stdout, so log lines go to stderr or, when
    ``logging.file`` is set, to that file.

    Args:
        level: Optional level name overriding ``logging.level``
    """
    config = get_config().logging
    log_level = getattr(logging, (level or config.level).upper(), logging.INFO)

    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if config.format == "console":
        processors.append(structlog.dev.ConsoleRenderer(colors=not config.file))
    else:
        processors.append(structlog.processors.JSONRenderer())

    sink = _open_log_file(config.file) if config.file else sys.stderr
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sink),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """Get a logger instance.

    Args:
        name: Optional logger name (usually __name__)
    """
    if name:
        return structlog.get_logger(name)
    return structlog.get_logger()


log = get_logger(__name__)
