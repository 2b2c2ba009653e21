"""Logging configuration for processes embedding the streaming engine.

Handlers are installed on the ``agentbridge`` package logger, not the root
logger, so a host application keeps control of its own logging. Calling
:func:`setup_logging` again replaces the handlers it installed earlier.
"""

from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path
from typing import TextIO

__all__ = ["setup_logging", "parse_level", "get_log_path", "PACKAGE_LOGGER"]

PACKAGE_LOGGER = "agentbridge"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Transport libraries log every request at DEBUG/INFO.
_NOISY_LOGGERS: tuple[str, ...] = ("httpx", "httpcore")
_HANDLER_MARKER = "_agentbridge_handler"
_LOG_PATH: Path | None = None


def parse_level(value: str | int) -> int:
    """Translate ``"debug"``, ``"WARNING"``, ``"10"`` or ``10`` into a logging level.

    Raises:
        ValueError: If the value names no known level.
    """

    if isinstance(value, int):
        return value
    text = value.strip()
    if text.isdigit():
        return int(text)
    level = logging.getLevelName(text.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {value!r}")
    return level


def setup_logging(
    level: int = logging.INFO,
    *,
    log_file: Path | str | None = None,
    console: bool = True,
    stream: TextIO | None = None,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
) -> list[logging.Handler]:
    """Attach console and optional rotating-file handlers to the package logger.

    Returns the handlers that were installed.
    """

    global _LOG_PATH
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    _remove_installed_handlers(package_logger)

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    handlers: list[logging.Handler] = []

    if console:
        handlers.append(logging.StreamHandler(stream))

    _LOG_PATH = None
    if log_file is not None:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            logging.handlers.RotatingFileHandler(
                path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
            )
        )
        _LOG_PATH = path

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        setattr(handler, _HANDLER_MARKER, True)
        package_logger.addHandler(handler)

    package_logger.setLevel(level)
    quiet_level = max(level, logging.WARNING)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)
    return handlers


def get_log_path() -> Path | None:
    """Return the active log file, if file logging is configured."""

    return _LOG_PATH


def _remove_installed_handlers(package_logger: logging.Logger) -> None:
    for handler in list(package_logger.handlers):
        if getattr(handler, _HANDLER_MARKER, False):
            package_logger.removeHandler(handler)
            handler.close()
