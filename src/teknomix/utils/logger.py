"""Logging setup for the tekno-mix command line."""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOG_FORMAT = '%(asctime)s %(levelname)-7s %(name)s: %(message)s'
DATE_FORMAT = '%H:%M:%S'

LOG_FILE_BYTES = 5 * 1024 * 1024
LOG_FILE_BACKUPS = 2


def setup_logger(name: str = "teknomix", level: str = "INFO",
                 log_file: Optional[str] = None) -> logging.Logger:
    """
    Route the package's log records to stderr, and to a rotating file when
    log_file is given. Calling it again only changes the level.
    """
    logger = logging.getLogger(name)
    numeric_level = getattr(logging, level.upper())
    logger.setLevel(numeric_level)

    if logger.handlers:
        for handler in logger.handlers:
            handler.setLevel(numeric_level)
        return logger

    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(log_file, maxBytes=LOG_FILE_BYTES,
                                            backupCount=LOG_FILE_BACKUPS, encoding='utf-8'))

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    for handler in handlers:
        handler.setLevel(numeric_level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


def get_logger(name: str = "teknomix") -> logging.Logger:
    return logging.getLogger(name)
