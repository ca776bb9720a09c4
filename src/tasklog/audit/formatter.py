"""Log Formatter - stable, option-driven rendering of task logs.

Every call takes an explicit FormatOptions value; nothing is read from
ambient state. Formatting is best effort: a malformed record degrades to
a minimal rendering instead of failing the response.
"""

import logging
from collections import Counter
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tasklog.audit.schemas import (
    UPDATE_ACTIONS,
    LogAction,
    LogEntry,
    LogPage,
    StatisticsReport,
    ensure_utc,
    json_safe,
)
from tasklog.common.constants import FormatConstants
from tasklog.common.exceptions import FormattingError

logger = logging.getLogger(__name__)


class DateFormat(str, Enum):
    ISO8601 = "iso8601"
    UNIX = "unix"
    HUMAN = "human"
    DATE_ONLY = "date_only"
    DATETIME = "datetime"


class UserFormat(str, Enum):
    OBJECT = "object"
    NAME = "name"


class ChangeType(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"


class FormatOptions(BaseModel):
    """Immutable rendering options threaded through every format call."""
    model_config = ConfigDict(frozen=True)

    date_format: DateFormat = Field(
        default=DateFormat.ISO8601,
        description="How timestamps are rendered"
    )
    user_format: UserFormat = Field(
        default=UserFormat.OBJECT,
        description="Render the actor as {id, name, type} or as a bare name"
    )
    include_diff: bool = Field(
        default=True,
        description="Attach a field-level change summary to update-class entries"
    )
    include_technical: bool = Field(
        default=False,
        description="Attach tier, native id, raw size and original error"
    )
    include_metadata: bool = Field(
        default=True,
        description="Attach the meta block to collections and pages"
    )
    sensitive_fields: Tuple[str, ...] = Field(
        default=(),
        description="Field names masked anywhere in old_data/new_data (case-insensitive)"
    )
    mask_value: str = FormatConstants.DEFAULT_MASK
    max_depth: int = Field(default=FormatConstants.DEFAULT_MAX_DEPTH, ge=1)

    @field_validator("sensitive_fields", mode="before")
    @classmethod
    def _as_tuple(cls, value: Any) -> Any:
        if value is None:
            return ()
        if isinstance(value, str):
            return (value,)
        return tuple(value)


DEFAULT_OPTIONS = FormatOptions()


def compute_diff(
    old_data: Optional[Dict[str, Any]],
    new_data: Optional[Dict[str, Any]],
) -> Dict[str, str]:
    """Classify each changed key as added, removed or modified.

    Keys equal on both sides are omitted. Old keys come first, then keys
    only present in the new data.
    """
    old_data = old_data or {}
    new_data = new_data or {}
    diff: Dict[str, str] = {}

    for key, old_value in old_data.items():
        if key not in new_data:
            diff[key] = ChangeType.REMOVED.value
        elif new_data[key] != old_value:
            diff[key] = ChangeType.MODIFIED.value
    for key in new_data:
        if key not in old_data:
            diff[key] = ChangeType.ADDED.value
    return diff


def mask_sensitive(value: Any, fields: Iterable[str], mask_value: str = FormatConstants.DEFAULT_MASK) -> Any:
    """Replace the value of any key named in fields, at any depth."""
    names = {f.lower() for f in fields}
    if not names:
        return value

    def _mask(node: Any) -> Any:
        if isinstance(node, dict):
            return {
                k: mask_value if str(k).lower() in names else _mask(v)
                for k, v in node.items()
            }
        if isinstance(node, (list, tuple, set)):
            return [_mask(v) for v in node]
        return node

    return _mask(value)


def format_size(size: int) -> str:
    if size < 1024:
        return f"{size} bytes"
    return f"{size / 1024:.2f} KB"


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}" + ("" if count == 1 else "s")


class LogFormatter:
    """Renders entries, collections, pages and statistics reports."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    # ========== PUBLIC ==========

    def format(self, value: Any, options: Optional[FormatOptions] = None) -> Any:
        """Render value according to options; never raises.

        Accepts None, a LogEntry, a LogPage, a StatisticsReport or an
        iterable of entries.
        """
        if value is None:
            return None
        options = options or DEFAULT_OPTIONS

        try:
            if isinstance(value, LogEntry):
                return self._format_entry_safe(value, options)
            if isinstance(value, LogPage):
                return self.format_page(value, options)
            if isinstance(value, StatisticsReport):
                return self.format_statistics(value, options)
            if isinstance(value, (str, bytes, dict)):
                raise FormattingError(
                    f"Cannot format value of type {type(value).__name__}",
                    details={"type": type(value).__name__},
                )
            return self.format_collection(value, options)
        except Exception as e:
            logger.warning(f"Task log formatting failed, using fallback rendering: {e}")
            return {"format_error": True, "type": type(value).__name__}

    def format_entry(self, entry: LogEntry, options: FormatOptions = DEFAULT_OPTIONS) -> Dict[str, Any]:
        user_name = entry.user_name or FormatConstants.SYSTEM_USER_NAME
        description = entry.description or (
            f"{user_name} {entry.action.display} task #{entry.task_id}"
        )

        rendered: Dict[str, Any] = {
            "id": entry.id,
            "task_id": entry.task_id,
            "action": entry.action.value,
            "action_display": entry.action.display,
            "old_data": self._render_data(entry.old_data, options),
            "new_data": self._render_data(entry.new_data, options),
            "user": self._format_user(entry, options),
            "description": description,
            "ip_address": entry.ip_address,
            "user_agent": entry.user_agent,
            "request_id": entry.request_id,
            "created_at": self.format_date(entry.created_at, options),
            "updated_at": self.format_date(entry.updated_at, options),
        }

        message = description
        if entry.action in UPDATE_ACTIONS:
            diff = compute_diff(entry.old_data, entry.new_data)
            if diff:
                message = f"{description} ({_plural(len(diff), 'field')} changed)"
            if options.include_diff:
                rendered["diff"] = diff
        rendered["formatted_message"] = message

        if options.include_technical:
            rendered["technical"] = {
                "tier": entry.tier.value if entry.tier else None,
                "native_id": entry.id,
                "raw_size": format_size(len(entry.to_jsonl().encode("utf-8"))),
                "original_error": entry.original_error,
            }
        return rendered

    def format_collection(self, entries: Iterable[Any], options: FormatOptions = DEFAULT_OPTIONS) -> Dict[str, Any]:
        items = list(entries)
        result: Dict[str, Any] = {
            "logs": [self._format_entry_safe(item, options) for item in items],
        }
        if options.include_metadata:
            result["meta"] = self._collection_meta(items, options)
        return result

    def format_page(self, page: LogPage, options: FormatOptions = DEFAULT_OPTIONS) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "logs": [self._format_entry_safe(entry, options) for entry in page.entries],
            "pagination": page.pagination(),
        }
        if options.include_metadata:
            result["meta"] = self._collection_meta(page.entries, options)
        return result

    def format_statistics(self, report: StatisticsReport, options: FormatOptions = DEFAULT_OPTIONS) -> Dict[str, Any]:
        rendered = report.model_dump(mode="json")
        for row in rendered["per_action"]:
            row["action_display"] = LogAction(row["action"]).display
        covered = report.date_range_covered
        if covered is not None:
            rendered["date_range_covered"] = {
                "start": self.format_date(covered.start, options),
                "end": self.format_date(covered.end, options),
                "days": covered.days,
            }
        rendered["generated_at"] = self.format_date(report.generated_at, options)
        return rendered

    # ========== DATES ==========

    def format_date(self, value: Any, options: FormatOptions = DEFAULT_OPTIONS) -> Any:
        """Render a timestamp; anything unparsable renders as None."""
        moment = self._parse_date(value)
        if moment is None:
            return None

        fmt = options.date_format
        if fmt == DateFormat.UNIX:
            return int(moment.timestamp())
        if fmt == DateFormat.HUMAN:
            return self._humanize(moment)
        if fmt == DateFormat.DATE_ONLY:
            return moment.strftime(FormatConstants.DATE_FORMAT)
        if fmt == DateFormat.DATETIME:
            return moment.strftime(FormatConstants.DATETIME_FORMAT)
        return moment.isoformat()

    @staticmethod
    def _parse_date(value: Any) -> Optional[datetime]:
        if isinstance(value, datetime):
            return ensure_utc(value)
        if isinstance(value, str):
            try:
                return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
            except ValueError:
                return None
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            try:
                return datetime.fromtimestamp(value, tz=timezone.utc)
            except (OverflowError, OSError, ValueError):
                return None
        return None

    def _humanize(self, moment: datetime) -> str:
        seconds = (ensure_utc(self.clock()) - moment).total_seconds()
        future = seconds < 0
        seconds = abs(int(seconds))

        if seconds < 60:
            return "just now"
        for limit, size, unit in (
            (3600, 60, "minute"),
            (86400, 3600, "hour"),
            (86400 * 30, 86400, "day"),
            (86400 * 365, 86400 * 30, "month"),
        ):
            if seconds < limit:
                text = _plural(seconds // size, unit)
                break
        else:
            text = _plural(seconds // (86400 * 365), "year")
        return f"in {text}" if future else f"{text} ago"

    # ========== HELPERS ==========

    def _format_user(self, entry: LogEntry, options: FormatOptions) -> Any:
        name = entry.user_name or FormatConstants.SYSTEM_USER_NAME
        if options.user_format == UserFormat.NAME:
            return name
        return {
            "id": entry.user_id,
            "name": name,
            "type": "system" if entry.user_id is None else "user",
        }

    @staticmethod
    def _render_data(data: Optional[Dict[str, Any]], options: FormatOptions) -> Optional[Dict[str, Any]]:
        if data is None:
            return None
        # Mask before depth limiting; a truncated subtree is just a string
        masked = mask_sensitive(data, options.sensitive_fields, options.mask_value)
        return json_safe(masked, max_depth=options.max_depth)

    def _format_entry_safe(self, item: Any, options: FormatOptions) -> Dict[str, Any]:
        try:
            entry = item if isinstance(item, LogEntry) else LogEntry.model_validate(item)
            return self.format_entry(entry, options)
        except Exception as e:
            logger.warning(f"Falling back to minimal rendering for task log entry: {e}")
            return self._minimal(item)

    @staticmethod
    def _minimal(item: Any) -> Dict[str, Any]:
        def pick(name: str) -> Any:
            raw = item.get(name) if isinstance(item, dict) else getattr(item, name, None)
            return json_safe(raw, max_depth=1)

        return {
            "id": pick("id"),
            "task_id": pick("task_id"),
            "action": pick("action"),
            "format_error": True,
        }

    def _collection_meta(self, items: List[Any], options: FormatOptions) -> Dict[str, Any]:
        entries = [item for item in items if isinstance(item, LogEntry)]
        distribution = Counter(entry.action.value for entry in entries)
        timestamps = [entry.created_at for entry in entries]
        return {
            "total_returned": len(items),
            "action_distribution": dict(sorted(distribution.items())),
            "date_range": {
                "oldest": self.format_date(min(timestamps), options) if timestamps else None,
                "newest": self.format_date(max(timestamps), options) if timestamps else None,
            },
        }
