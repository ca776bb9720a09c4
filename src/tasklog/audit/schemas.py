"""Audit schemas - type definitions for task log records, queries and reports.
"""

import json
import math
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from tasklog.common.constants import FormatConstants


class LogAction(str, Enum):
    """Task lifecycle events that produce a log entry."""
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    RESTORED = "restored"
    SOFT_DELETE = "soft_delete"
    FORCE_DELETE = "force_delete"
    STATUS_CHANGE = "status_change"
    ASSIGNMENT_CHANGE = "assignment_change"
    METADATA_UPDATE = "metadata_update"

    @property
    def display(self) -> str:
        """Human readable label, e.g. 'Status Change'."""
        return self.value.replace("_", " ").title()


class TierResult(str, Enum):
    """Which tier durably holds a record, or that none does."""
    PRIMARY = "primary"
    SECONDARY = "secondary"
    FILE = "file"
    SYSLOG = "syslog"
    DROPPED = "dropped"


CREATION_ACTIONS = frozenset({LogAction.CREATED, LogAction.RESTORED})
DELETION_ACTIONS = frozenset({
    LogAction.DELETED,
    LogAction.SOFT_DELETE,
    LogAction.FORCE_DELETE,
})
UPDATE_ACTIONS = frozenset({
    LogAction.UPDATED,
    LogAction.STATUS_CHANGE,
    LogAction.ASSIGNMENT_CHANGE,
    LogAction.METADATA_UPDATE,
})


def json_safe(value: Any, max_depth: int = FormatConstants.DEFAULT_MAX_DEPTH, _depth: int = 0) -> Any:
    """Coerce a nested value into JSON-compatible data.

    Unsupported leaves become their string form and anything nested deeper
    than max_depth is rendered as a string, so a bad field never fails a
    whole record.
    """
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else str(value)
    if isinstance(value, Decimal):
        if not value.is_finite():
            return str(value)
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, Enum):
        return json_safe(value.value, max_depth, _depth)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if _depth >= max_depth:
        return str(value)
    if isinstance(value, dict):
        return {str(k): json_safe(v, max_depth, _depth + 1) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [json_safe(v, max_depth, _depth + 1) for v in value]
    return str(value)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Return value as an aware UTC datetime; naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class LogEntry(BaseModel):
    """A single immutable task log record.

    old_data/new_data follow the action: creations carry only new_data,
    deletions only old_data, update-class actions carry both.
    """
    model_config = ConfigDict(frozen=True)

    id: Optional[str] = Field(
        default=None,
        description="Tier-native identifier, assigned when stored"
    )
    task_id: int = Field(
        ...,
        description="Task the event belongs to"
    )
    action: LogAction = Field(
        ...,
        description="Lifecycle event"
    )
    old_data: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Task state before the event"
    )
    new_data: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Task state after the event"
    )
    user_id: Optional[int] = Field(
        default=None,
        description="Acting user; absent for system-initiated events"
    )
    user_name: Optional[str] = Field(
        default=None,
        description="Acting user's display name"
    )
    description: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    request_id: Optional[str] = None
    created_at: datetime = Field(
        default_factory=utc_now,
        description="When the event was recorded (UTC)"
    )
    updated_at: Optional[datetime] = None
    original_error: Optional[str] = Field(
        default=None,
        description="Error that forced the record onto a fallback tier"
    )
    tier: Optional[TierResult] = Field(
        default=None,
        description="Tier the record was stored in or read from"
    )

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)

        if data.get("user_id") is None and not data.get("user_name"):
            data["user_name"] = FormatConstants.SYSTEM_USER_NAME

        try:
            action = LogAction(data.get("action"))
        except ValueError:
            return data  # field validation reports it

        # An empty map on the side that must stay empty is the same as absent
        if action in CREATION_ACTIONS and data.get("old_data") == {}:
            data["old_data"] = None
        if action in DELETION_ACTIONS and data.get("new_data") == {}:
            data["new_data"] = None
        return data

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        return str(value)

    @field_validator("old_data", "new_data", mode="after")
    @classmethod
    def _coerce_payload(cls, value: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if value is None:
            return None
        return json_safe(value)

    @field_validator("created_at", "updated_at", mode="after")
    @classmethod
    def _as_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    @model_validator(mode="after")
    def _check_payload_shape(self) -> "LogEntry":
        action = self.action
        if action in CREATION_ACTIONS:
            if self.new_data is None:
                raise ValueError(f"'{action.value}' requires new_data")
            if self.old_data is not None:
                raise ValueError(f"'{action.value}' must not carry old_data")
        elif action in DELETION_ACTIONS:
            if self.old_data is None:
                raise ValueError(f"'{action.value}' requires old_data")
            if self.new_data is not None:
                raise ValueError(f"'{action.value}' must not carry new_data")
        elif self.old_data is None or self.new_data is None:
            raise ValueError(f"'{action.value}' requires both old_data and new_data")
        return self

    @property
    def is_system(self) -> bool:
        return self.user_id is None

    def to_record(self) -> Dict[str, Any]:
        """JSON-mode payload handed to a storage tier (no tier marker)."""
        return self.model_dump(mode="json", exclude={"tier"})

    def to_jsonl(self) -> str:
        """Serialize entry to JSONL format."""
        return json.dumps(self.to_record(), default=str)

    @classmethod
    def from_jsonl(cls, line: str) -> "LogEntry":
        """Deserialize entry from JSONL format."""
        return cls.model_validate(json.loads(line))


class SortField(str, Enum):
    CREATED_AT = "created_at"
    ACTION = "action"
    TASK_ID = "task_id"
    USER_ID = "user_id"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


class DateRange(BaseModel):
    """Half-open interval [start, end) on created_at."""
    model_config = ConfigDict(frozen=True)

    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @field_validator("start", "end", mode="after")
    @classmethod
    def _as_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    @model_validator(mode="after")
    def _check_order(self) -> "DateRange":
        if self.start is not None and self.end is not None and self.start >= self.end:
            raise ValueError("start must be earlier than end")
        return self

    def contains(self, moment: datetime) -> bool:
        moment = ensure_utc(moment)
        if self.start is not None and moment < self.start:
            return False
        if self.end is not None and moment >= self.end:
            return False
        return True


class LogCriteria(BaseModel):
    """Equality/inclusion filters combined with an optional date range."""
    model_config = ConfigDict(frozen=True)

    task_id: Optional[int] = None
    actions: Optional[FrozenSet[LogAction]] = None
    user_id: Optional[int] = None
    date_range: DateRange = Field(default_factory=DateRange)

    @field_validator("actions", mode="before")
    @classmethod
    def _one_or_many(cls, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, (str, LogAction)):
            return frozenset({value})
        return frozenset(value)

    @property
    def start(self) -> Optional[datetime]:
        return self.date_range.start

    @property
    def end(self) -> Optional[datetime]:
        return self.date_range.end

    def matches(self, entry: LogEntry) -> bool:
        if self.task_id is not None and entry.task_id != self.task_id:
            return False
        if self.actions and entry.action not in self.actions:
            return False
        if self.user_id is not None and entry.user_id != self.user_id:
            return False
        return self.date_range.contains(entry.created_at)


class LogQuery(BaseModel):
    """A validated, clamped query handed to a queryable tier."""
    model_config = ConfigDict(frozen=True)

    criteria: LogCriteria = Field(default_factory=LogCriteria)
    sort_field: SortField = SortField.CREATED_AT
    direction: SortDirection = SortDirection.DESC
    page: int = Field(default=1, ge=1)
    per_page: int = Field(default=50, ge=1)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.per_page


class LogPage(BaseModel):
    """One page of query results plus the full filtered count."""
    model_config = ConfigDict(frozen=True)

    entries: List[LogEntry] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    per_page: int = 50

    @property
    def last_page(self) -> int:
        return max(1, math.ceil(self.total / self.per_page))

    @property
    def from_index(self) -> Optional[int]:
        if not self.entries:
            return None
        return (self.page - 1) * self.per_page + 1

    @property
    def to_index(self) -> Optional[int]:
        if not self.entries:
            return None
        return self.from_index + len(self.entries) - 1

    @property
    def has_next_page(self) -> bool:
        return self.page < self.last_page

    @property
    def has_previous_page(self) -> bool:
        return self.page > 1

    def pagination(self) -> Dict[str, Any]:
        return {
            "current_page": self.page,
            "per_page": self.per_page,
            "total": self.total,
            "last_page": self.last_page,
            "from": self.from_index,
            "to": self.to_index,
            "has_next_page": self.has_next_page,
            "has_previous_page": self.has_previous_page,
        }


class ActionCount(BaseModel):
    action: LogAction
    count: int
    percentage: float


class UserCount(BaseModel):
    user_id: Optional[int] = None
    user_name: Optional[str] = None
    count: int
    percentage: float


class BucketCount(BaseModel):
    bucket: str
    count: int


class CoveredRange(BaseModel):
    start: datetime
    end: datetime
    days: int


class DeletionSummary(BaseModel):
    """Deletion/restore balance over the aggregated entries."""
    soft_deletes: int = 0
    force_deletes: int = 0
    deleted: int = 0
    restores: int = 0
    total_deletions: int = 0
    net_deletions: int = 0


class StatisticsReport(BaseModel):
    """Distribution and trend statistics over a set of log entries."""
    total: int = 0
    bucket: str = "day"
    per_action: List[ActionCount] = Field(default_factory=list)
    per_user: List[UserCount] = Field(default_factory=list)
    per_time_bucket: List[BucketCount] = Field(default_factory=list)
    date_range_covered: Optional[CoveredRange] = None
    deletions: DeletionSummary = Field(default_factory=DeletionSummary)
    generated_at: datetime = Field(default_factory=utc_now)


LogInput = Union[None, LogEntry, Iterable[LogEntry], LogPage, StatisticsReport]
