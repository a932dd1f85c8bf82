"""
Logging utilities.

WHAT: Centralized logging configuration
WHY: Consistent log format and easy logger access
HOW: Python logging with console and optional file handlers
"""

import logging
import sys
from pathlib import Path

from ..core.config import Settings, settings as default_settings


CONSOLE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
FILE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(pathname)s:%(lineno)d - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

LIBRARY_LOGGER = "deepweb"


def setup_logging(settings: Settings | None = None) -> logging.Logger:
    """
    Configure the library logger.

    WHAT: Attach console (and optionally file) handlers to the "deepweb" logger
    WHY: Host applications embed the client; the root logger is theirs
    HOW: Replace our own handlers, set level from config

    Args:
        settings: Settings to read LOG_LEVEL / LOG_FILE from

    Returns:
        The configured library logger
    """
    settings = settings or default_settings

    logger = logging.getLogger(LIBRARY_LOGGER)
    logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    # Remove handlers from a previous call
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(console_handler)

    if settings.LOG_FILE:
        log_file = Path(settings.LOG_FILE)
        log_file.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(file_handler)

    logger.info(f"Logging initialized (level={settings.LOG_LEVEL}, file={settings.LOG_FILE or 'none'})")
    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for a module.

    Args:
        name: Module name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
