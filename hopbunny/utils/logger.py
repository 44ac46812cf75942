"""Logger factory with one consistent format for the whole service."""

from __future__ import annotations

import logging
import os
import sys
from datetime import datetime
from pathlib import Path

FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _level() -> int:
    name = os.environ.get("HOPBUNNY_LOG_LEVEL", "INFO").strip().upper()
    return getattr(logging, name, logging.INFO)


def setup_logger(name: str) -> logging.Logger:
    """Return `name`'s logger, attaching handlers on first use only."""
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    level = _level()
    logger.setLevel(level)
    formatter = logging.Formatter(FORMAT, datefmt=DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    log_dir = os.environ.get("HOPBUNNY_LOG_DIR")
    if log_dir:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(
            path / f'hopbunny_{datetime.now().strftime("%Y%m%d")}.log',
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger
