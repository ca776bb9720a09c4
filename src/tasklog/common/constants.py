"""Centralized constants for TaskLog configuration."""


# ===== WRITE PATH =====
class RetryConstants:
    MAX_ATTEMPTS = 3
    INITIAL_DELAY_SECONDS = 0.1
    BACKOFF_MULTIPLIER = 2.0
    MAX_TOTAL_DELAY_SECONDS = 1.0


class TierConstants:
    DEFAULT_ORDER = ("primary", "secondary", "file", "syslog")
    FALLBACK_TABLE = "task_logs_fallback"
    FALLBACK_FILE = "./logs/task_logs_fallback.log"
    PROCESS_LOGGER = "tasklog.process_fallback"
    PROCESS_PREFIX = "TaskLog fallback: "

    # Lower-case substrings that mark a failure as retryable
    TRANSIENT_PATTERNS = (
        "timeout",
        "timed out",
        "connection refused",
        "too many connections",
        "gone away",
        "throttl",
        "connection reset",
        "temporarily unavailable",
        "service unavailable",
        "lost connection",
    )


# ===== DYNAMODB =====
class DynamoConstants:
    DEFAULT_REGION = "us-east-1"
    ENTITY_TYPE = "TASK_LOG"
    SORT_KEY = "ENTRY"
    TASK_INDEX = "gsi1_pk-gsi1_sk-index"
    DEFAULT_TTL_DAYS = 0
    # The writer owns retries; the SDK makes one HTTP attempt per call
    SDK_MAX_ATTEMPTS = 1
    CONNECT_TIMEOUT_SECONDS = 1.0
    READ_TIMEOUT_SECONDS = 2.0
    TRANSIENT_ERROR_CODES = frozenset({
        "ProvisionedThroughputExceededException",
        "ThrottlingException",
        "RequestLimitExceeded",
        "InternalServerError",
        "ServiceUnavailable",
        "LimitExceededException",
        "TransactionConflictException",
    })


# ===== METRICS =====
class MetricsConstants:
    FLUSH_INTERVAL_SECONDS = 30.0
    SHUTDOWN_TIMEOUT_SECONDS = 5.0
    CONNECT_TIMEOUT_SECONDS = 1.0
    READ_TIMEOUT_SECONDS = 2.0


# ===== QUERY LIMITS =====
class QueryConstants:
    DEFAULT_PER_PAGE = 50
    MIN_PER_PAGE = 1
    MAX_PER_PAGE = 1000
    DEFAULT_RECENT_LIMIT = 50
    DEFAULT_HISTORY_LIMIT = 100
    DEFAULT_RETENTION_DAYS = 90


# ===== FORMATTING =====
class FormatConstants:
    DEFAULT_MASK = "***MASKED***"
    DEFAULT_MAX_DEPTH = 10
    SYSTEM_USER_NAME = "System"
    DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"
    DATE_FORMAT = "%Y-%m-%d"
