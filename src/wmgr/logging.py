"""Logging helpers for wmgr."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

_LOGGER_NAME = "wmgr"


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a module-scoped logger under the wmgr hierarchy."""
    full_name = f"{_LOGGER_NAME}.{name}" if name else _LOGGER_NAME
    return logging.getLogger(full_name)


def configure_logging(*, verbose: bool = False, level: str | None = None) -> logging.Logger:
    """Send wmgr log records to stderr through rich.

    ``verbose`` forces DEBUG; otherwise ``level`` (a level name such as
    ``"INFO"``) is used, falling back to WARNING so normal runs only show
    the rendered report.
    """
    if verbose:
        resolved = logging.DEBUG
    elif level:
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            resolved = logging.WARNING
    else:
        resolved = logging.WARNING

    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(resolved)
    logger.propagate = False

    # Reset handlers so repeated CLI invocations in one process do not duplicate output.
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = RichHandler(
        console=Console(stderr=True),
        show_path=False,
        show_time=verbose,
        markup=False,
    )
    handler.setLevel(resolved)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    return logger


__all__ = ["configure_logging", "get_logger"]
