"""Process configuration for TaskLog.

Every setting comes from a TASKLOG_* environment variable (AWS settings
use the standard AWS_* names) and is validated once at construction.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple

from tasklog.common.constants import DynamoConstants, RetryConstants, TierConstants
from tasklog.common.exceptions import ConfigurationError


class Environment(str, Enum):
    """Application environment."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class TierName(str, Enum):
    """Storage tiers in escalation order."""
    PRIMARY = "primary"
    SECONDARY = "secondary"
    FILE = "file"
    SYSLOG = "syslog"


def _get_project_root() -> Path:
    """Get the project root directory."""
    # settings.py -> config -> common -> tasklog -> src -> project_root
    return Path(__file__).resolve().parent.parent.parent.parent.parent


def _parse_tiers(raw: str) -> Tuple[TierName, ...]:
    names = [part.strip().lower() for part in raw.split(",") if part.strip()]
    try:
        return tuple(TierName(name) for name in names)
    except ValueError as e:
        raise ConfigurationError(
            f"Unknown storage tier in TASKLOG_TIERS: {raw}",
            details={"allowed": [t.value for t in TierName]},
        ) from e


@dataclass
class Config:
    """Central configuration object for TaskLog.

    All settings can be overridden via environment variables prefixed with TASKLOG_.

    Example:
        TASKLOG_ENVIRONMENT=production
        TASKLOG_TIERS=primary,secondary,file
        TASKLOG_DYNAMODB_TABLE=task-logs
    """

    # Core settings
    environment: Environment = field(
        default_factory=lambda: Environment(
            os.getenv("TASKLOG_ENVIRONMENT", "development")
        )
    )
    debug: bool = field(
        default_factory=lambda: os.getenv("TASKLOG_DEBUG", "false").lower() == "true"
    )
    log_level: LogLevel = field(
        default_factory=lambda: LogLevel(os.getenv("TASKLOG_LOG_LEVEL", "INFO"))
    )

    # Paths
    project_root: Path = field(default_factory=_get_project_root)

    # Tier chain
    tiers: Tuple[TierName, ...] = field(
        default_factory=lambda: _parse_tiers(
            os.getenv("TASKLOG_TIERS", ",".join(TierConstants.DEFAULT_ORDER))
        )
    )

    # Primary tier (DynamoDB)
    dynamodb_table: Optional[str] = field(
        default_factory=lambda: os.getenv("TASKLOG_DYNAMODB_TABLE")
    )
    dynamodb_ttl_days: int = field(
        default_factory=lambda: int(os.getenv("TASKLOG_DYNAMODB_TTL_DAYS", "0"))
    )
    dynamodb_connect_timeout: float = field(
        default_factory=lambda: float(
            os.getenv("TASKLOG_DYNAMODB_CONNECT_TIMEOUT", str(DynamoConstants.CONNECT_TIMEOUT_SECONDS))
        )
    )
    dynamodb_read_timeout: float = field(
        default_factory=lambda: float(
            os.getenv("TASKLOG_DYNAMODB_READ_TIMEOUT", str(DynamoConstants.READ_TIMEOUT_SECONDS))
        )
    )
    aws_region: str = field(
        default_factory=lambda: os.getenv("AWS_DEFAULT_REGION", "us-east-1")
    )
    aws_profile: Optional[str] = field(
        default_factory=lambda: os.getenv("TASKLOG_AWS_PROFILE")
    )

    # Secondary tier (relational)
    fallback_database_url: str = field(
        default_factory=lambda: os.getenv(
            "TASKLOG_FALLBACK_DATABASE_URL", "sqlite:///./logs/task_logs_fallback.db"
        )
    )

    # File and process tiers
    fallback_file: Path = field(
        default_factory=lambda: Path(
            os.getenv("TASKLOG_FALLBACK_FILE", TierConstants.FALLBACK_FILE)
        )
    )
    syslog_address: Optional[str] = field(
        default_factory=lambda: os.getenv("TASKLOG_SYSLOG_ADDRESS")
    )

    # Retry policy for the primary tier
    retry_max_attempts: int = field(
        default_factory=lambda: int(
            os.getenv("TASKLOG_RETRY_MAX_ATTEMPTS", str(RetryConstants.MAX_ATTEMPTS))
        )
    )
    retry_initial_delay: float = field(
        default_factory=lambda: float(
            os.getenv("TASKLOG_RETRY_INITIAL_DELAY", str(RetryConstants.INITIAL_DELAY_SECONDS))
        )
    )
    retry_max_total_delay: float = field(
        default_factory=lambda: float(
            os.getenv("TASKLOG_RETRY_MAX_TOTAL_DELAY", str(RetryConstants.MAX_TOTAL_DELAY_SECONDS))
        )
    )

    # Response formatting defaults
    response_config_file: Path = field(
        default_factory=lambda: Path(
            os.getenv("TASKLOG_RESPONSE_CONFIG", "./config/log_responses.yaml")
        )
    )

    # Telemetry
    metrics_enabled: bool = field(
        default_factory=lambda: os.getenv("TASKLOG_METRICS_ENABLED", "false").lower() == "true"
    )
    cloudwatch_namespace: str = field(
        default_factory=lambda: os.getenv("TASKLOG_CLOUDWATCH_NAMESPACE", "TaskLog")
    )

    def __post_init__(self):
        """Validate configuration after initialization."""
        if not self.tiers:
            raise ConfigurationError("At least one storage tier must be enabled")

        if TierName.PRIMARY in self.tiers and not self.dynamodb_table:
            raise ConfigurationError(
                "TASKLOG_DYNAMODB_TABLE must be set when the primary tier is enabled"
            )

        if self.retry_max_attempts < 1:
            raise ConfigurationError(
                "TASKLOG_RETRY_MAX_ATTEMPTS must be at least 1",
                details={"value": self.retry_max_attempts},
            )

        if self.retry_initial_delay < 0 or self.retry_max_total_delay < 0:
            raise ConfigurationError("Retry delays must not be negative")

        if self.dynamodb_connect_timeout <= 0 or self.dynamodb_read_timeout <= 0:
            raise ConfigurationError("DynamoDB timeouts must be positive")

        if self.environment == Environment.PRODUCTION and self.debug:
            import warnings
            warnings.warn(
                "TASKLOG_DEBUG is enabled in a production environment",
                RuntimeWarning,
                stacklevel=2
            )

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def primary_enabled(self) -> bool:
        return TierName.PRIMARY in self.tiers

    @property
    def response_config_path(self) -> Path:
        """Response config file; relative paths resolve against the project root."""
        path = Path(self.response_config_file)
        return path if path.is_absolute() else self.project_root / path


_config: Optional[Config] = None


def get_config() -> Config:
    """Return the process-wide Config, building it from the environment once."""
    global _config
    if _config is None:
        _config = Config()
    return _config


def reset_config() -> None:
    """Drop the cached Config so the next get_config() re-reads the environment."""
    global _config
    _config = None
