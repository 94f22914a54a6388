"""Centralized logging configuration for the timeline application."""

from __future__ import annotations

import logging
from logging import Logger
from pathlib import Path
from typing import Iterable, List


DEFAULT_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Transport libraries log every request at INFO; the timeline emits its own FETCH events.
NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def configure_logging(
    level: int = logging.INFO,
    *,
    handlers: Iterable[logging.Handler] | None = None,
    quiet_transports: bool = True,
) -> Logger:
    """Configure the root logger with the shared format."""

    logger = logging.getLogger()
    logger.setLevel(level)

    if handlers is None:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))
        logger.addHandler(stream_handler)
    else:
        for handler in handlers:
            logger.addHandler(handler)

    if quiet_transports:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(max(level, logging.WARNING))

    return logger


def get_log_file_path(storage_root: Path) -> Path:
    """Return the default path for the application log file."""

    return storage_root / "lecture_timeline.log"


def build_handlers(storage_root: Path, *, console: bool = True) -> List[logging.Handler]:
    """Return a file handler under *storage_root* and optionally a stream handler."""

    formatter = logging.Formatter(DEFAULT_LOG_FORMAT)
    log_file = get_log_file_path(storage_root)
    log_file.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(formatter)
    handlers: List[logging.Handler] = [file_handler]
    if console:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        handlers.append(stream_handler)
    return handlers


__all__ = [
    "DEFAULT_LOG_FORMAT",
    "NOISY_LOGGERS",
    "build_handlers",
    "configure_logging",
    "get_log_file_path",
]
