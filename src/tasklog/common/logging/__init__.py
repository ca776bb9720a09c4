"""Logging helpers."""

from tasklog.common.logging.logger import LOG_FORMAT, configure_logging, get_logger

__all__ = ["LOG_FORMAT", "configure_logging", "get_logger"]
