"""Log Store - Abstraction for task log persistence tiers.

This module provides the interface every storage tier implements, the
error classification shared by all tiers, and the two write-only tiers
(append-only file and process log).

Design principles:
- One interface for every tier so the writer can chain them in order
- Every tier failure is reported as Transient or Permanent StoreError
- Thread-safe operations
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from logging.handlers import SysLogHandler
from pathlib import Path
from typing import Iterator, List, Optional, Tuple, Union
from uuid import uuid4
import fcntl
import json
import logging
import os
import threading

from tasklog.audit.schemas import (
    LogCriteria,
    LogEntry,
    LogPage,
    LogQuery,
    SortDirection,
    TierResult,
)
from tasklog.common.constants import TierConstants
from tasklog.common.exceptions import (
    PermanentStoreError,
    StoreError,
    TransientStoreError,
)

logger = logging.getLogger(__name__)


def classify_store_error(exc: BaseException, tier: Optional[str] = None) -> StoreError:
    """Map any exception to a TransientStoreError or PermanentStoreError.

    Already-classified errors pass through unchanged. Timeouts, refused or
    dropped connections and throttling are transient; everything else,
    including malformed data, is permanent.
    """
    if isinstance(exc, StoreError):
        return exc

    message = str(exc) or exc.__class__.__name__
    details = {"exception": exc.__class__.__name__}

    if isinstance(exc, (TimeoutError, ConnectionError)):
        return TransientStoreError(message, tier=tier, details=details)

    lowered = message.lower()
    if any(pattern in lowered for pattern in TierConstants.TRANSIENT_PATTERNS):
        return TransientStoreError(message, tier=tier, details=details)

    return PermanentStoreError(message, tier=tier, details=details)


def _sort_key(entry: LogEntry, field: str) -> Tuple:
    value = getattr(entry, field)
    if hasattr(value, "value"):
        value = value.value
    return (value is None, value if value is not None else 0, entry.created_at)


def sort_and_paginate(entries: List[LogEntry], query: LogQuery) -> LogPage:
    """Apply a query's sort and page window to already-filtered entries."""
    ordered = sorted(
        entries,
        key=lambda e: _sort_key(e, query.sort_field.value),
        reverse=query.direction == SortDirection.DESC,
    )
    window = ordered[query.offset:query.offset + query.per_page]
    return LogPage(
        entries=window,
        total=len(ordered),
        page=query.page,
        per_page=query.per_page,
    )


class LogStore(ABC):
    """Abstract base class for task log storage tiers.

    Implementations must be safe for concurrent callers and must raise
    StoreError subclasses (never anything else) from append_entry.
    """

    tier: TierResult

    @property
    def name(self) -> str:
        return self.tier.value

    @abstractmethod
    def append_entry(self, entry: LogEntry) -> LogEntry:
        """Append a log entry to the tier.

        Args:
            entry: The entry to persist

        Returns:
            The stored entry with id and tier populated

        Raises:
            TransientStoreError: Retryable failure
            PermanentStoreError: Any other failure
        """
        pass


class QueryableLogStore(LogStore):
    """A tier that also supports filtered, sorted, paginated reads."""

    @abstractmethod
    def query(self, query: LogQuery) -> LogPage:
        """Return one page of entries matching query.criteria."""
        pass

    @abstractmethod
    def get_entry(self, entry_id: str) -> Optional[LogEntry]:
        """Fetch a single entry by tier-native id."""
        pass

    @abstractmethod
    def iter_entries(self, criteria: Optional[LogCriteria] = None) -> Iterator[LogEntry]:
        """Yield every entry matching criteria in no particular order."""
        pass

    @abstractmethod
    def delete_entries(self, criteria: LogCriteria) -> int:
        """Delete entries matching criteria; returns the number removed."""
        pass


class FileLogStore(LogStore):
    """Append-only JSONL file tier.

    Features:
    - One JSON object per line, never rewritten
    - Thread lock plus flock for cross-process appends
    - Rotation is left to external tooling
    """

    tier = TierResult.FILE

    def __init__(
        self,
        path: Union[str, Path] = TierConstants.FALLBACK_FILE,
        fsync_on_write: bool = False,
    ):
        """Initialize file log store.

        Args:
            path: JSONL file to append to. Parent directories are created.
            fsync_on_write: Whether to fsync after each write (slower but safer).
        """
        self.path = Path(path)
        self.fsync_on_write = fsync_on_write
        self._lock = threading.Lock()

        self.path.parent.mkdir(parents=True, exist_ok=True)

    def _build_line(self, entry: LogEntry) -> str:
        record = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": "error",
            "message": "Fallback task log entry",
            "tier": self.tier.value,
            "entry": entry.to_record(),
        }
        return json.dumps(record, default=str) + "\n"

    def append_entry(self, entry: LogEntry) -> LogEntry:
        """Append entry to the file with file locking."""
        stored = entry.model_copy(update={
            "id": entry.id or uuid4().hex,
            "tier": self.tier,
        })

        try:
            line = self._build_line(stored)
            with self._lock:
                fd = os.open(
                    str(self.path),
                    os.O_WRONLY | os.O_CREAT | os.O_APPEND,
                    0o600
                )
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX)
                    try:
                        os.write(fd, line.encode("utf-8"))
                        if self.fsync_on_write:
                            os.fsync(fd)
                    finally:
                        fcntl.flock(fd, fcntl.LOCK_UN)
                finally:
                    os.close(fd)
        except (OSError, TypeError, ValueError) as e:
            raise PermanentStoreError(
                f"File tier write failed: {e}",
                tier=self.name,
                details={"path": str(self.path)},
            ) from e

        return stored

    def read_entries(self) -> Iterator[LogEntry]:
        """Yield entries back from the file, skipping unreadable lines."""
        if not self.path.exists():
            return

        with open(self.path, "r") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    record = json.loads(line)
                    yield LogEntry.model_validate({**record["entry"], "tier": self.tier})
                except (json.JSONDecodeError, KeyError, ValueError) as e:
                    logger.warning(f"Skipping unreadable line in {self.path}: {e}")


class ProcessLogStore(LogStore):
    """Last-resort tier: the process error log, optionally routed to syslog.

    Best effort and write-only; nothing here is queryable.
    """

    tier = TierResult.SYSLOG

    def __init__(
        self,
        logger_name: str = TierConstants.PROCESS_LOGGER,
        syslog_address: Optional[str] = None,
    ):
        self.logger = logging.getLogger(logger_name)
        if syslog_address and not any(
            isinstance(h, SysLogHandler) for h in self.logger.handlers
        ):
            self.logger.addHandler(SysLogHandler(address=self._parse_address(syslog_address)))

    @staticmethod
    def _parse_address(address: str) -> Union[str, Tuple[str, int]]:
        """'host:port' becomes a UDP tuple; anything else is a socket path."""
        if ":" in address and not address.startswith("/"):
            host, port = address.rsplit(":", 1)
            return host, int(port)
        return address

    def append_entry(self, entry: LogEntry) -> LogEntry:
        stored = entry.model_copy(update={"tier": self.tier})
        try:
            payload = json.dumps(
                {**stored.to_record(), "all_fallbacks_failed": True}, default=str
            )
            self.logger.critical(TierConstants.PROCESS_PREFIX + payload)
        except Exception as e:
            raise PermanentStoreError(f"Process log write failed: {e}", tier=self.name) from e
        return stored
