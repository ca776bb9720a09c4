"""Audit module - Resilient logging of task lifecycle events.

Every task mutation produces one LogEntry that lands in exactly one
storage tier, escalating down the chain when a tier fails:
DynamoDB (primary) -> relational fallback table -> JSONL file -> process log.

Components:
- LogEntry: Canonical immutable record
- LogStore / QueryableLogStore: Tier interfaces
- DynamoDBLogStore: Primary document tier
- SqlLogStore: Relational fallback tier (task_logs_fallback)
- FileLogStore: Append-only JSONL tier
- ProcessLogStore: Last-resort process/syslog tier
- LogWriter: Tier chain with retry on the primary tier
- LogQueryEngine: Filter/sort/paginate reads
- LogFormatter: Option-driven rendering
- StatisticsAggregator: Distribution and trend reports
- LogService: Façade for the mutation and HTTP layers
"""

from tasklog.audit.schemas import (
    LogAction,
    LogCriteria,
    LogEntry,
    LogPage,
    LogQuery,
    DateRange,
    SortDirection,
    SortField,
    StatisticsReport,
    TierResult,
)
from tasklog.audit.store import (
    LogStore,
    QueryableLogStore,
    FileLogStore,
    ProcessLogStore,
    classify_store_error,
)
from tasklog.audit.dynamodb_store import DynamoDBLogStore
from tasklog.audit.sql_store import SqlLogStore
from tasklog.audit.writer import LogWriter, RetryPolicy, RetryingLogStore, WriteReceipt
from tasklog.audit.query import LogQueryEngine
from tasklog.audit.formatter import DateFormat, FormatOptions, LogFormatter, UserFormat
from tasklog.audit.statistics import StatisticsAggregator
from tasklog.audit.service import LogService, RequestContext, UserInfo
from tasklog.audit.config import (
    create_log_service,
    create_log_writer,
    load_format_options,
)

__all__ = [
    "LogAction",
    "LogCriteria",
    "LogEntry",
    "LogPage",
    "LogQuery",
    "DateRange",
    "SortDirection",
    "SortField",
    "StatisticsReport",
    "TierResult",
    "LogStore",
    "QueryableLogStore",
    "FileLogStore",
    "ProcessLogStore",
    "classify_store_error",
    "DynamoDBLogStore",
    "SqlLogStore",
    "LogWriter",
    "RetryPolicy",
    "RetryingLogStore",
    "WriteReceipt",
    "LogQueryEngine",
    "DateFormat",
    "FormatOptions",
    "LogFormatter",
    "UserFormat",
    "StatisticsAggregator",
    "LogService",
    "RequestContext",
    "UserInfo",
    "create_log_service",
    "create_log_writer",
    "load_format_options",
]
