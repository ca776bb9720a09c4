"""TaskLog - Resilient audit logging for task lifecycle events."""

__version__ = "0.1.0"
__author__ = "TaskLog Team"

from tasklog.audit.schemas import LogAction, LogEntry, TierResult
from tasklog.audit.service import LogService

__all__ = [
    "LogAction",
    "LogEntry",
    "TierResult",
    "LogService",
]
