"""Logging utilities for termopt.

Every module logs through ``get_logger(__name__)``. Loggers live under the
``termopt`` namespace, do not propagate to the root logger, and share one
level, format and output stream that :func:`configure_logging` can change at
any time, including for loggers created later.
"""

from __future__ import annotations

import logging
import sys
from typing import IO, Optional

_FORMAT = "[%(levelname)s] %(name)s: %(message)s"

# Settings applied to every termopt logger, existing or future.
_level: int = logging.WARNING
_format: str = _FORMAT
_stream: Optional[IO[str]] = None

_loggers: dict[str, logging.Logger] = {}


def _to_level(level: int | str) -> int:
    if isinstance(level, str):
        return getattr(logging, level.upper(), logging.WARNING)
    return level


def _qualified(name: Optional[str]) -> str:
    if name is None or name == "termopt":
        return "termopt"
    if name.startswith("termopt."):
        return name
    return f"termopt.{name}"


def _attach_handler(logger: logging.Logger) -> None:
    handler = logging.StreamHandler(_stream if _stream is not None else sys.stderr)
    handler.setLevel(_level)
    handler.setFormatter(logging.Formatter(_format))
    logger.addHandler(handler)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Get or create a logger for the given module name.

    Args:
        name: Logger name, typically ``__name__``. Names outside the
            ``termopt`` namespace are prefixed with ``termopt.``. If None,
            returns the package logger.

    Returns:
        Cached logger instance.

    Example:
        >>> from termopt.logging import get_logger
        >>> logger = get_logger(__name__)
        >>> logger.info("Allocating local storage")
    """
    logger_name = _qualified(name)
    cached = _loggers.get(logger_name)
    if cached is not None:
        return cached

    logger = logging.getLogger(logger_name)
    if not logger.handlers:
        logger.setLevel(_level)
        _attach_handler(logger)
        logger.propagate = False

    _loggers[logger_name] = logger
    return logger


def set_log_level(level: int | str) -> None:
    """Set the level of all termopt loggers and their handlers.

    Args:
        level: A ``logging`` level or its name ('DEBUG', 'INFO', ...).
    """
    global _level
    _level = _to_level(level)
    for logger in _loggers.values():
        logger.setLevel(_level)
        for handler in logger.handlers:
            handler.setLevel(_level)


def configure_logging(
    level: int | str = logging.WARNING,
    format_string: Optional[str] = None,
    stream: Optional[IO[str]] = None,
) -> None:
    """Reconfigure level, format and destination of termopt logging.

    Handlers of existing loggers are replaced. Loggers created afterwards
    use the same settings.

    Args:
        level: Logging level (default: WARNING).
        format_string: Custom format string. If None, uses the default
            ``[LEVEL] name: message`` layout.
        stream: Output stream (default: sys.stderr).
    """
    global _level, _format, _stream
    _level = _to_level(level)
    _format = format_string or _FORMAT
    _stream = stream

    for logger in _loggers.values():
        logger.setLevel(_level)
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
        _attach_handler(logger)


__all__ = ["get_logger", "set_log_level", "configure_logging"]
