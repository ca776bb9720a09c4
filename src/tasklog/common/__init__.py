"""Common utilities - logging, config, exceptions."""

from tasklog.common.logging.logger import get_logger
from tasklog.common.config import Config, get_config, reset_config
from tasklog.common.exceptions import (
    TaskLogException,
    ConfigurationError,
    ValidationError,
    QueryValidationError,
    LoggingError,
    StoreError,
    TransientStoreError,
    PermanentStoreError,
    DuplicateEntryError,
    QueryError,
    FormattingError,
)

__all__ = [
    # Logging
    "get_logger",
    # Config
    "Config",
    "get_config",
    "reset_config",
    # Exceptions
    "TaskLogException",
    "ConfigurationError",
    "ValidationError",
    "QueryValidationError",
    "LoggingError",
    "StoreError",
    "TransientStoreError",
    "PermanentStoreError",
    "DuplicateEntryError",
    "QueryError",
    "FormattingError",
]
