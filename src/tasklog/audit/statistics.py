"""Statistics Aggregator - distribution and trend figures over task logs."""

import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Dict, Iterable, Optional, Tuple

from tasklog.audit.query import LogQueryEngine
from tasklog.audit.schemas import (
    ActionCount,
    BucketCount,
    CoveredRange,
    DateRange,
    DeletionSummary,
    LogAction,
    LogCriteria,
    LogEntry,
    StatisticsReport,
    UserCount,
)
from tasklog.common.exceptions import QueryValidationError

logger = logging.getLogger(__name__)

BUCKETS = ("hour", "day", "week", "month")


def bucket_label(moment: datetime, bucket: str) -> str:
    """Label of the time bucket containing moment (UTC)."""
    if bucket == "hour":
        return moment.strftime("%Y-%m-%dT%H:00")
    if bucket == "week":
        monday = moment.date() - timedelta(days=moment.weekday())
        return monday.isoformat()
    if bucket == "month":
        return moment.strftime("%Y-%m")
    return moment.strftime("%Y-%m-%d")


def _percentage(count: int, total: int) -> float:
    return round(count / total * 100, 2) if total else 0.0


class StatisticsAggregator:
    """Builds a StatisticsReport from entries or from a stored query."""

    def aggregate(self, entries: Iterable[LogEntry], bucket: str = "day") -> StatisticsReport:
        if bucket not in BUCKETS:
            raise QueryValidationError(
                f"Invalid time bucket: {bucket}",
                details={"allowed": list(BUCKETS)},
            )

        actions: Counter = Counter()
        users: Counter = Counter()
        user_names: Dict[Optional[int], Optional[str]] = {}
        buckets: Counter = Counter()
        oldest: Optional[datetime] = None
        newest: Optional[datetime] = None
        total = 0

        for entry in entries:
            total += 1
            actions[entry.action] += 1
            users[entry.user_id] += 1
            user_names.setdefault(entry.user_id, entry.user_name)
            buckets[bucket_label(entry.created_at, bucket)] += 1
            if oldest is None or entry.created_at < oldest:
                oldest = entry.created_at
            if newest is None or entry.created_at > newest:
                newest = entry.created_at

        if total == 0:
            return StatisticsReport(total=0, bucket=bucket)

        per_action = [
            ActionCount(action=action, count=count, percentage=_percentage(count, total))
            for action, count in sorted(actions.items(), key=lambda kv: (-kv[1], kv[0].value))
        ]
        per_user = [
            UserCount(
                user_id=user_id,
                user_name=user_names.get(user_id),
                count=count,
                percentage=_percentage(count, total),
            )
            for user_id, count in sorted(users.items(), key=_user_sort_key)
        ]
        per_bucket = [BucketCount(bucket=label, count=count) for label, count in sorted(buckets.items())]

        return StatisticsReport(
            total=total,
            bucket=bucket,
            per_action=per_action,
            per_user=per_user,
            per_time_bucket=per_bucket,
            date_range_covered=CoveredRange(
                start=oldest,
                end=newest,
                days=(newest.date() - oldest.date()).days + 1,
            ),
            deletions=self._deletions(actions),
        )

    def aggregate_query(
        self,
        engine: LogQueryEngine,
        criteria: Optional[LogCriteria] = None,
        date_range: Optional[DateRange] = None,
        bucket: str = "day",
    ) -> StatisticsReport:
        """Aggregate over every entry a stored query matches."""
        return self.aggregate(engine.iter_all(criteria, date_range), bucket=bucket)

    @staticmethod
    def _deletions(actions: Counter) -> DeletionSummary:
        soft = actions[LogAction.SOFT_DELETE]
        force = actions[LogAction.FORCE_DELETE]
        plain = actions[LogAction.DELETED]
        restores = actions[LogAction.RESTORED]
        total = soft + force + plain
        return DeletionSummary(
            soft_deletes=soft,
            force_deletes=force,
            deleted=plain,
            restores=restores,
            total_deletions=total,
            net_deletions=total - restores,
        )


def _user_sort_key(item: Tuple[Optional[int], int]):
    user_id, count = item
    return (-count, user_id is None, user_id or 0)
