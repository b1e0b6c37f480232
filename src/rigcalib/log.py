"""
Logging setup for rigcalib.

Modules log through ``logging.getLogger(__name__)``; all of them live under the
``rigcalib`` root logger. Applications call :func:`setup_logger` once.
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from pathlib import Path

ROOT_LOGGER_NAME = "rigcalib"

MAX_LOG_BYTES = 5 * 1024 * 1024
BACKUP_COUNT = 3

_FORMAT = "%(levelname)s | %(asctime)s | %(name)s | %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"

_initialized = False


def setup_logger(level: int = logging.INFO, log_file: str | Path | None = None) -> logging.Logger:
    """
    Configure the ``rigcalib`` root logger: console output, plus a rotating file when
    ``log_file`` is given. Calling it again only updates the level.
    """
    global _initialized

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    if _initialized:
        set_log_level(level)
        return logger

    logger.setLevel(logging.DEBUG if log_file is not None else level)
    logger.propagate = False
    formatter = logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT)

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setLevel(level)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if log_file is not None:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_path,
            maxBytes=MAX_LOG_BYTES,
            backupCount=BACKUP_COUNT,
            encoding="utf-8",
        )
        # The file always keeps everything.
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    _initialized = True
    return logger


def set_log_level(level: int) -> None:
    root = logging.getLogger(ROOT_LOGGER_NAME)
    has_file = False
    for handler in root.handlers:
        if isinstance(handler, logging.handlers.RotatingFileHandler):
            has_file = True
            continue
        handler.setLevel(level)
    root.setLevel(logging.DEBUG if has_file else level)
