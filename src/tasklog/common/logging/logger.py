"""Centralized logging configuration."""

import logging
from typing import Optional


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def get_logger(name: str, level: str = "INFO") -> logging.Logger:
    """Get a configured logger instance."""
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level))

    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)

    return logger


def configure_logging(level: str = "INFO", logger_name: Optional[str] = "tasklog") -> logging.Logger:
    """Configure the package root logger once at process start.

    Child loggers created with logging.getLogger(__name__) inside the
    package propagate to it.
    """
    return get_logger(logger_name or "", level)
