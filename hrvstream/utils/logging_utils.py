# hrvstream/utils/logging_utils.py
"""
Central logging utilities for hrvstream.

Goals:
    - One consistent log format for every module.
    - Log files go to settings.paths.log_dir (HRVSTREAM_LOG_DIR overrides it).
    - A module logger is configured once, no matter how often it is requested.

Usage:
    from hrvstream.utils.logging_utils import get_logger

    logger = get_logger(module_name="router", logfile_name="router.log")
    logger.info("Router started.")
    logger.error("Unexpected error", exc_info=True)
"""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from hrvstream.config.settings import settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_logger(
    module_name: str,
    logfile_name: str,
    level: int = logging.INFO,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
    log_dir: Optional[Path] = None,
) -> logging.Logger:
    """
    Return a file-backed logger for one module.

    Args:
        module_name:
            Logger name (e.g. "router", "store", "api").
        logfile_name:
            File name inside the log directory (e.g. "router.log").
        level:
            Logging level.
        max_bytes:
            Rotation size of the log file (default: 5 MB).
        backup_count:
            Number of rotated files kept (router.log.1, router.log.2, ...).
        log_dir:
            Overrides settings.paths.log_dir.
    """
    logger = logging.getLogger(f"hrvstream.{module_name}")

    if logger.handlers:
        return logger

    logger.setLevel(level)

    directory = Path(log_dir) if log_dir is not None else settings.paths.log_dir
    directory.mkdir(parents=True, exist_ok=True)

    file_handler = RotatingFileHandler(
        filename=directory / logfile_name,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(file_handler)

    # keep records out of the root logger (no duplicate lines)
    logger.propagate = False

    return logger
