"""Custom exceptions for TaskLog.

Provides a hierarchy of exceptions for different error types.
All TaskLog exceptions inherit from TaskLogException.
"""

from typing import Any, Dict, Optional


class TaskLogException(Exception):
    """Base exception for all TaskLog errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        code: str = "TASKLOG_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(TaskLogException):
    """Raised when configuration is invalid or missing."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="CONFIG_ERROR", details=details)


class ValidationError(TaskLogException):
    """Raised when input validation fails."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        code: str = "VALIDATION_ERROR",
    ):
        super().__init__(message, code=code, details=details)


class QueryValidationError(ValidationError):
    """Raised when filter, sort or pagination input is rejected."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details=details, code="QUERY_VALIDATION_ERROR")


class LoggingError(TaskLogException):
    """Raised when an audit log operation fails."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        code: str = "LOGGING_ERROR",
    ):
        super().__init__(message, code=code, details=details)


class StoreError(LoggingError):
    """Raised by a storage tier when a read or write fails."""

    transient = False

    def __init__(
        self,
        message: str,
        tier: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        code: str = "STORE_ERROR",
    ):
        details = details or {}
        if tier is not None:
            details["tier"] = tier
        self.tier = tier
        super().__init__(message, details=details, code=code)


class TransientStoreError(StoreError):
    """Retryable failure: timeouts, refused connections, throttling."""

    transient = True

    def __init__(
        self,
        message: str,
        tier: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, tier=tier, details=details, code="TRANSIENT_STORE_ERROR")


class PermanentStoreError(StoreError):
    """Non-retryable failure: malformed data, bad schema, access denied."""

    def __init__(
        self,
        message: str,
        tier: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, tier=tier, details=details, code="PERMANENT_STORE_ERROR")


class DuplicateEntryError(PermanentStoreError):
    """The tier already holds an entry under this id.

    Raised when a conditional put finds the key taken, which after a timed
    out attempt means the earlier attempt was in fact committed.
    """

    def __init__(
        self,
        message: str,
        tier: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        StoreError.__init__(self, message, tier=tier, details=details, code="DUPLICATE_ENTRY")


class QueryError(LoggingError):
    """Raised when reading from a queryable tier fails."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details=details, code="QUERY_ERROR")


class FormattingError(TaskLogException):
    """Raised inside the formatter; never escapes LogFormatter.format."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="FORMATTING_ERROR", details=details)
