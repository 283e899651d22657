"""Logging for acpsessions.

All loggers hang off the ``acpsessions`` logger. Two extra levels sit
between the standard ones: VERBOSE (15) for per-event diagnostics such as
ignored status changes, and TRACE (5) for skipped wire payloads and
unreadable stored records.

Output goes to the configured file (``logging.file`` or ``ACPS_LOG``), or
to stderr when stderr is an interactive console. Nothing is printed when
the host pipes stderr.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import MutableMapping
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from acpsessions.config.schema import LoggingConfig

TRACE = 5
VERBOSE = 15

logging.addLevelName(TRACE, "TRACE")
logging.addLevelName(VERBOSE, "VERBOSE")

ROOT_NAME = "acpsessions"

logger = logging.getLogger(ROOT_NAME)

# --verbose count: 0 errors only ... 4 everything
VERBOSITY_LEVELS = (logging.ERROR, logging.WARNING, logging.INFO, VERBOSE, TRACE)

_NAMED_LEVELS = {
    "trace": TRACE,
    "debug": logging.DEBUG,
    "verbose": VERBOSE,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}

_handlers: list[logging.Handler] = []


class _Formatter(logging.Formatter):
    """``12:00:01 warning store: message`` with the package prefix dropped."""

    def format(self, record: logging.LogRecord) -> str:
        record.levelname = record.levelname.lower()
        record.component = record.name.removeprefix(ROOT_NAME).lstrip(".") or ROOT_NAME
        return super().format(record)


def resolve_level(config: LoggingConfig | None) -> int:
    """Effective level for ``config``; ``verbose`` wins over ``level``."""
    if config is None:
        return logging.INFO
    if config.verbose is not None:
        index = min(max(config.verbose, 0), len(VERBOSITY_LEVELS) - 1)
        return VERBOSITY_LEVELS[index]
    if config.level:
        return _NAMED_LEVELS.get(config.level.lower(), logging.INFO)
    return logging.INFO


def setup_logging(config: LoggingConfig | None = None) -> None:
    """Attach handlers to the package logger.

    Only the first call has an effect until :func:`reset_logging` runs.
    """
    if _handlers:
        return

    level = resolve_level(config)
    logger.setLevel(level)
    formatter = _Formatter("%(asctime)s %(levelname)s %(component)s: %(message)s", datefmt="%H:%M:%S")

    path = (config.file if config else None) or os.environ.get("ACPS_LOG")
    handler: logging.Handler | None = None
    if path:
        try:
            handler = logging.FileHandler(os.path.expanduser(path), mode="a", encoding="utf-8")
        except OSError as e:
            if sys.stderr.isatty():
                print(f"[acpsessions] Failed to open log file: {e}", file=sys.stderr)
    if handler is None and sys.stderr.isatty():
        handler = logging.StreamHandler(sys.stderr)
    if handler is None:
        # Mark as configured so later calls stay no-ops
        handler = logging.NullHandler()

    handler.setLevel(level)
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    _handlers.append(handler)


def reset_logging() -> None:
    """Detach and close the handlers added by :func:`setup_logging`."""
    while _handlers:
        handler = _handlers.pop()
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)


def get_logger(name: str | None = None) -> logging.Logger:
    """Package logger, or its child ``name`` (e.g. ``"store"``)."""
    return logger.getChild(name) if name else logger


class SessionLogAdapter(logging.LoggerAdapter):
    """Prefixes every message with the session key it concerns."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        return f"[{self.extra['session']}] {msg}", kwargs


def session_logger(name: str, key: object) -> SessionLogAdapter:
    """Logger for one session, e.g. ``[task-1:claude] Cancel failed``."""
    return SessionLogAdapter(get_logger(name), {"session": str(key)})
