"""Log Query Engine - filtered, sorted, paginated reads over a queryable tier."""

import logging
from datetime import datetime
from typing import Any, Iterable, Iterator, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from tasklog.audit.schemas import (
    DELETION_ACTIONS,
    DateRange,
    LogAction,
    LogCriteria,
    LogEntry,
    LogPage,
    LogQuery,
    SortDirection,
    SortField,
)
from tasklog.audit.store import QueryableLogStore
from tasklog.common.constants import QueryConstants
from tasklog.common.exceptions import QueryError, QueryValidationError, StoreError

logger = logging.getLogger(__name__)

ActionFilter = Union[None, str, LogAction, Iterable[Union[str, LogAction]]]


def _as_int(name: str, value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise QueryValidationError(f"{name} must be an integer", details={name: value})


def clamp_per_page(per_page: Optional[int]) -> int:
    if per_page is None:
        return QueryConstants.DEFAULT_PER_PAGE
    return max(QueryConstants.MIN_PER_PAGE, min(_as_int("per_page", per_page), QueryConstants.MAX_PER_PAGE))


def clamp_page(page: Optional[int]) -> int:
    if page is None:
        return 1
    return max(1, _as_int("page", page))


class LogQueryEngine:
    """Query façade over one queryable tier.

    Input from the HTTP layer is re-validated and re-clamped here no
    matter what the caller already did.
    """

    def __init__(self, store: QueryableLogStore):
        self.store = store

    # ========== INPUT VALIDATION ==========

    @staticmethod
    def _parse_actions(actions: ActionFilter) -> Optional[frozenset]:
        if actions is None:
            return None
        if isinstance(actions, (str, LogAction)):
            actions = [actions]
        parsed = set()
        for action in actions:
            try:
                parsed.add(LogAction(action))
            except ValueError:
                raise QueryValidationError(
                    f"Unknown action: {action}",
                    details={"allowed": [a.value for a in LogAction]},
                )
        return frozenset(parsed) or None

    @staticmethod
    def _parse_int(name: str, value: Any) -> Optional[int]:
        if value is None:
            return None
        if isinstance(value, bool):
            raise QueryValidationError(f"{name} must be an integer", details={name: value})
        return _as_int(name, value)

    def build_criteria(
        self,
        task_id: Any = None,
        actions: ActionFilter = None,
        user_id: Any = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> LogCriteria:
        """Validate raw filter input into a LogCriteria."""
        try:
            date_range = DateRange(start=start, end=end)
        except PydanticValidationError as e:
            raise QueryValidationError(
                "Invalid date range",
                details={"start": str(start), "end": str(end), "errors": e.errors(include_url=False)},
            )
        return LogCriteria(
            task_id=self._parse_int("task_id", task_id),
            actions=self._parse_actions(actions),
            user_id=self._parse_int("user_id", user_id),
            date_range=date_range,
        )

    @staticmethod
    def _merge_range(criteria: LogCriteria, date_range: Optional[DateRange]) -> LogCriteria:
        if date_range is None:
            return criteria
        return criteria.model_copy(update={"date_range": date_range})

    @staticmethod
    def _parse_sort(sort: Union[str, SortField], direction: Union[str, SortDirection]):
        try:
            sort_field = SortField(sort)
        except ValueError:
            raise QueryValidationError(
                f"Invalid sort field: {sort}",
                details={"allowed": [f.value for f in SortField]},
            )
        try:
            sort_direction = SortDirection(str(getattr(direction, "value", direction)).lower())
        except ValueError:
            raise QueryValidationError(
                f"Invalid sort direction: {direction}",
                details={"allowed": [d.value for d in SortDirection]},
            )
        return sort_field, sort_direction

    # ========== CORE QUERY ==========

    def find(
        self,
        criteria: Optional[LogCriteria] = None,
        date_range: Optional[DateRange] = None,
        sort: Union[str, SortField] = SortField.CREATED_AT,
        direction: Union[str, SortDirection] = SortDirection.DESC,
        page: Optional[int] = 1,
        per_page: Optional[int] = QueryConstants.DEFAULT_PER_PAGE,
    ) -> LogPage:
        """Return one page of matching entries.

        Args:
            criteria: Equality/inclusion filters (task, action(s), user).
            date_range: Half-open [start, end) on created_at; overrides
                any range already on criteria.
            sort: created_at, action, task_id or user_id.
            direction: asc or desc.
            page: 1-based page number, clamped to >= 1.
            per_page: Page size, clamped to [1, 1000].

        Raises:
            QueryValidationError: Unknown sort field or direction.
            QueryError: The underlying tier could not be read.
        """
        sort_field, sort_direction = self._parse_sort(sort, direction)
        query = LogQuery(
            criteria=self._merge_range(criteria or LogCriteria(), date_range),
            sort_field=sort_field,
            direction=sort_direction,
            page=clamp_page(page),
            per_page=clamp_per_page(per_page),
        )
        try:
            return self.store.query(query)
        except StoreError as e:
            logger.error(f"Task log query failed on {self.store.name} tier: {e.message}")
            raise QueryError(
                f"Task log query failed: {e.message}",
                details={"tier": self.store.name},
            ) from e

    def get(self, entry_id: str) -> Optional[LogEntry]:
        try:
            return self.store.get_entry(str(entry_id))
        except StoreError as e:
            raise QueryError(f"Task log lookup failed: {e.message}", details={"id": entry_id}) from e

    def iter_all(
        self,
        criteria: Optional[LogCriteria] = None,
        date_range: Optional[DateRange] = None,
    ) -> Iterator[LogEntry]:
        """Yield every matching entry, unordered and unpaginated."""
        criteria = self._merge_range(criteria or LogCriteria(), date_range)
        try:
            yield from self.store.iter_entries(criteria)
        except StoreError as e:
            raise QueryError(f"Task log scan failed: {e.message}", details={"tier": self.store.name}) from e

    # ========== DERIVED QUERIES ==========

    def task_history(self, task_id: int, limit: int = QueryConstants.DEFAULT_HISTORY_LIMIT) -> LogPage:
        return self.find(self.build_criteria(task_id=task_id), per_page=limit)

    def recent(self, limit: int = QueryConstants.DEFAULT_RECENT_LIMIT) -> LogPage:
        return self.find(per_page=limit)

    def date_range_scan(
        self,
        start: datetime,
        end: datetime,
        criteria: Optional[LogCriteria] = None,
        page: int = 1,
        per_page: int = QueryConstants.DEFAULT_PER_PAGE,
    ) -> LogPage:
        date_range = self.build_criteria(start=start, end=end).date_range
        return self.find(criteria, date_range, page=page, per_page=per_page)

    def deletion_history(
        self,
        task_id: Optional[int] = None,
        limit: int = QueryConstants.DEFAULT_HISTORY_LIMIT,
    ) -> LogPage:
        criteria = self.build_criteria(task_id=task_id, actions=DELETION_ACTIONS)
        return self.find(criteria, per_page=limit)

    def by_user(self, user_id: int, limit: int = QueryConstants.DEFAULT_HISTORY_LIMIT) -> LogPage:
        return self.find(self.build_criteria(user_id=user_id), per_page=limit)

    def by_action(self, action: ActionFilter, limit: int = QueryConstants.DEFAULT_HISTORY_LIMIT) -> LogPage:
        return self.find(self.build_criteria(actions=action), per_page=limit)

    def delete_older_than(self, cutoff: datetime) -> int:
        """Remove entries created before cutoff; returns the number removed."""
        criteria = self.build_criteria(end=cutoff)
        try:
            return self.store.delete_entries(criteria)
        except StoreError as e:
            raise QueryError(f"Task log cleanup failed: {e.message}", details={"tier": self.store.name}) from e
