"""Log Service - façade used by the task mutation and HTTP layers.

Writes never raise into the business operation that triggered them;
reads return rendered output ready to serialize.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional
from uuid import uuid4

from tasklog.audit.formatter import FormatOptions, LogFormatter, compute_diff
from tasklog.audit.query import ActionFilter, LogQueryEngine
from tasklog.audit.schemas import LogAction, LogEntry, TierResult
from tasklog.audit.statistics import StatisticsAggregator
from tasklog.audit.writer import LogWriter
from tasklog.common.constants import QueryConstants
from tasklog.common.exceptions import ConfigurationError, ValidationError

logger = logging.getLogger(__name__)

DELETION_TYPES = {
    "deleted": LogAction.DELETED,
    "soft_delete": LogAction.SOFT_DELETE,
    "force_delete": LogAction.FORCE_DELETE,
}


@dataclass(frozen=True)
class UserInfo:
    """Acting user; id None means the event was system-initiated."""
    id: Optional[int] = None
    name: Optional[str] = None


@dataclass(frozen=True)
class RequestContext:
    """Request metadata copied onto each entry."""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    request_id: str = field(default_factory=lambda: f"req_{uuid4().hex[:16]}")


def describe_event(
    task_id: int,
    action: LogAction,
    old_data: Optional[Dict[str, Any]],
    new_data: Optional[Dict[str, Any]],
) -> str:
    """Human-readable description for an event without one."""
    snapshot = new_data or old_data or {}
    title = snapshot.get("title") or f"Task #{task_id}"

    if action == LogAction.CREATED:
        return "Task was created with initial data"
    if action == LogAction.RESTORED:
        return f"Task '{title}' was restored from trash"
    if action == LogAction.SOFT_DELETE:
        return f"Task '{title}' was moved to trash"
    if action == LogAction.FORCE_DELETE:
        return f"Task '{title}' was permanently deleted"
    if action == LogAction.DELETED:
        return f"Task '{title}' was deleted"

    old_data = old_data or {}
    new_data = new_data or {}
    if action == LogAction.STATUS_CHANGE and "status" in old_data and "status" in new_data:
        return f"Task status changed from '{old_data['status']}' to '{new_data['status']}'"
    if action == LogAction.ASSIGNMENT_CHANGE and "assigned_to" in new_data:
        return f"Task was assigned to user {new_data['assigned_to']}"

    changed = list(compute_diff(old_data, new_data))
    if not changed:
        return "Task was updated with no changes"
    return "Task was updated. Changed fields: " + ", ".join(changed)


class LogService:
    """Composes the writer, query engines, formatter and aggregator.

    Example:
        service = LogService(writer, query_engine=LogQueryEngine(primary))
        service.log_created(42, {"title": "Write docs"}, user=UserInfo(7, "Ana"))
        page = service.list_logs(task_id=42)
    """

    def __init__(
        self,
        writer: LogWriter,
        query_engine: Optional[LogQueryEngine] = None,
        fallback_engine: Optional[LogQueryEngine] = None,
        formatter: Optional[LogFormatter] = None,
        aggregator: Optional[StatisticsAggregator] = None,
        format_options: Optional[FormatOptions] = None,
    ):
        self.writer = writer
        self.query_engine = query_engine
        self.fallback_engine = fallback_engine
        self.formatter = formatter or LogFormatter()
        self.aggregator = aggregator or StatisticsAggregator()
        self.format_options = format_options or FormatOptions()

    # ========== WRITES ==========

    def record(self, entry: LogEntry, cancel_event: Optional[threading.Event] = None) -> TierResult:
        return self.writer.write(entry, cancel_event)

    def log_event(
        self,
        task_id: int,
        action: Any,
        old_data: Optional[Dict[str, Any]] = None,
        new_data: Optional[Dict[str, Any]] = None,
        user: Optional[UserInfo] = None,
        context: Optional[RequestContext] = None,
        description: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> TierResult:
        """Build and write one entry; a malformed payload is logged and dropped."""
        user = user or UserInfo()
        context = context or RequestContext()
        try:
            action = LogAction(action)
            entry = LogEntry(
                task_id=task_id,
                action=action,
                old_data=old_data,
                new_data=new_data,
                user_id=user.id,
                user_name=user.name,
                description=description or describe_event(task_id, action, old_data, new_data),
                ip_address=context.ip_address,
                user_agent=context.user_agent,
                request_id=context.request_id,
            )
        except (ValueError, TypeError, AttributeError) as e:
            logger.error(f"Rejected malformed task log entry for task {task_id} ({action}): {e}")
            return TierResult.DROPPED
        return self.record(entry, cancel_event)

    def log_created(self, task_id: int, task_data: Dict[str, Any], user: Optional[UserInfo] = None,
                    context: Optional[RequestContext] = None) -> TierResult:
        return self.log_event(task_id, LogAction.CREATED, new_data=task_data, user=user, context=context)

    def log_updated(self, task_id: int, old_data: Dict[str, Any], new_data: Dict[str, Any],
                    user: Optional[UserInfo] = None, context: Optional[RequestContext] = None) -> TierResult:
        return self.log_event(task_id, LogAction.UPDATED, old_data, new_data, user=user, context=context)

    def log_status_change(self, task_id: int, old_status: str, new_status: str,
                          user: Optional[UserInfo] = None, context: Optional[RequestContext] = None) -> TierResult:
        return self.log_event(
            task_id, LogAction.STATUS_CHANGE,
            {"status": old_status}, {"status": new_status},
            user=user, context=context,
        )

    def log_assignment_change(self, task_id: int, old_assignee: Optional[int], new_assignee: Optional[int],
                              user: Optional[UserInfo] = None, context: Optional[RequestContext] = None) -> TierResult:
        return self.log_event(
            task_id, LogAction.ASSIGNMENT_CHANGE,
            {"assigned_to": old_assignee}, {"assigned_to": new_assignee},
            user=user, context=context,
        )

    def log_metadata_update(self, task_id: int, old_data: Dict[str, Any], new_data: Dict[str, Any],
                            user: Optional[UserInfo] = None, context: Optional[RequestContext] = None) -> TierResult:
        return self.log_event(task_id, LogAction.METADATA_UPDATE, old_data, new_data, user=user, context=context)

    def log_deleted(
        self,
        task_id: int,
        task_data: Dict[str, Any],
        deletion_type: str = "soft_delete",
        user: Optional[UserInfo] = None,
        context: Optional[RequestContext] = None,
        description: Optional[str] = None,
    ) -> TierResult:
        action = DELETION_TYPES.get(deletion_type)
        if action is None:
            logger.error(f"Unknown deletion type '{deletion_type}' for task {task_id}")
            return TierResult.DROPPED
        return self.log_event(task_id, action, old_data=task_data, user=user, context=context,
                              description=description)

    def log_restored(self, task_id: int, task_data: Dict[str, Any], user: Optional[UserInfo] = None,
                     context: Optional[RequestContext] = None) -> TierResult:
        return self.log_event(task_id, LogAction.RESTORED, new_data=task_data, user=user, context=context)

    def log_bulk(
        self,
        events: Iterable[Dict[str, Any]],
        user: Optional[UserInfo] = None,
        context: Optional[RequestContext] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[TierResult]:
        """Write several events, one result per event in input order.

        Each event holds log_event keyword arguments; user and context
        apply to events that do not set their own. A malformed event is
        dropped without stopping the rest.
        """
        results: List[TierResult] = []
        for index, event in enumerate(events):
            try:
                kwargs = {"user": user, "context": context, **event}
                results.append(self.log_event(cancel_event=cancel_event, **kwargs))
            except TypeError as e:
                logger.error(f"Rejected malformed task log event #{index} in bulk write: {e}")
                results.append(TierResult.DROPPED)

        stored = sum(1 for r in results if r != TierResult.DROPPED)
        logger.info(f"Bulk task log write stored {stored}/{len(results)} entries")
        return results

    # ========== READS ==========

    def _engine(self, fallback: bool = False) -> LogQueryEngine:
        engine = self.fallback_engine if fallback else self.query_engine
        if engine is None:
            tier = "fallback" if fallback else "primary"
            raise ConfigurationError(f"No {tier} query engine configured")
        return engine

    def _options(self, options: Optional[FormatOptions]) -> FormatOptions:
        return options or self.format_options

    def _list(
        self,
        engine: LogQueryEngine,
        task_id: Any,
        actions: ActionFilter,
        user_id: Any,
        start: Optional[datetime],
        end: Optional[datetime],
        sort: str,
        direction: str,
        page: Any,
        per_page: Any,
        options: Optional[FormatOptions],
    ) -> Dict[str, Any]:
        criteria = engine.build_criteria(task_id=task_id, actions=actions, user_id=user_id, start=start, end=end)
        result = engine.find(criteria, sort=sort, direction=direction, page=page, per_page=per_page)
        return self.formatter.format(result, self._options(options))

    def list_logs(
        self,
        task_id: Any = None,
        actions: ActionFilter = None,
        user_id: Any = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        sort: str = "created_at",
        direction: str = "desc",
        page: Any = 1,
        per_page: Any = QueryConstants.DEFAULT_PER_PAGE,
        options: Optional[FormatOptions] = None,
    ) -> Dict[str, Any]:
        """Filtered, sorted, paginated logs from the primary tier."""
        return self._list(self._engine(), task_id, actions, user_id, start, end,
                          sort, direction, page, per_page, options)

    def fallback_logs(
        self,
        task_id: Any = None,
        actions: ActionFilter = None,
        user_id: Any = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        sort: str = "created_at",
        direction: str = "desc",
        page: Any = 1,
        per_page: Any = QueryConstants.DEFAULT_PER_PAGE,
        options: Optional[FormatOptions] = None,
    ) -> Dict[str, Any]:
        """Same as list_logs, against the relational fallback tier."""
        return self._list(self._engine(fallback=True), task_id, actions, user_id, start, end,
                          sort, direction, page, per_page, options)

    def get_log(self, entry_id: str, options: Optional[FormatOptions] = None) -> Optional[Dict[str, Any]]:
        return self.formatter.format(self._engine().get(entry_id), self._options(options))

    def task_history(self, task_id: int, limit: int = QueryConstants.DEFAULT_HISTORY_LIMIT,
                     options: Optional[FormatOptions] = None) -> Dict[str, Any]:
        return self.formatter.format(self._engine().task_history(task_id, limit), self._options(options))

    def deletion_history(self, task_id: Optional[int] = None, limit: int = QueryConstants.DEFAULT_HISTORY_LIMIT,
                         options: Optional[FormatOptions] = None) -> Dict[str, Any]:
        return self.formatter.format(self._engine().deletion_history(task_id, limit), self._options(options))

    def recent_logs(self, limit: int = QueryConstants.DEFAULT_RECENT_LIMIT,
                    options: Optional[FormatOptions] = None) -> Dict[str, Any]:
        return self.formatter.format(self._engine().recent(limit), self._options(options))

    def statistics(
        self,
        task_id: Any = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        bucket: str = "day",
        options: Optional[FormatOptions] = None,
    ) -> Dict[str, Any]:
        engine = self._engine()
        criteria = engine.build_criteria(task_id=task_id, start=start, end=end)
        report = self.aggregator.aggregate_query(engine, criteria, bucket=bucket)
        return self.formatter.format(report, self._options(options))

    # ========== RETENTION ==========

    def cleanup_old_logs(self, retention_days: int = QueryConstants.DEFAULT_RETENTION_DAYS) -> int:
        """Delete entries older than retention_days from every queryable tier.

        Called by external retention tooling; nothing here schedules it.
        """
        if retention_days < 1:
            raise ValidationError(
                "retention_days must be at least 1",
                details={"retention_days": retention_days},
            )
        cutoff = datetime.now(timezone.utc) - timedelta(days=retention_days)

        engines: List[LogQueryEngine] = [
            e for e in (self.query_engine, self.fallback_engine) if e is not None
        ]
        removed = 0
        for engine in engines:
            count = engine.delete_older_than(cutoff)
            logger.info(f"Removed {count} task logs older than {retention_days} days from {engine.store.name} tier")
            removed += count
        return removed
