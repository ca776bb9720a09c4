"""Task Log Configuration and Initialization.

Provides factory methods that build the tier chain, writer and service
from the process Config, plus the loader for the YAML response config.

Environment variables (see tasklog.common.config.settings):
- TASKLOG_TIERS: ordered tier list, e.g. "primary,secondary,file,syslog"
- TASKLOG_DYNAMODB_TABLE: DynamoDB table for the primary tier
- TASKLOG_FALLBACK_DATABASE_URL: SQLAlchemy URL for the relational tier
- TASKLOG_FALLBACK_FILE: JSONL file for the file tier
- TASKLOG_SYSLOG_ADDRESS: optional syslog target for the last tier
- TASKLOG_RESPONSE_CONFIG: YAML file with default format options
"""

import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from tasklog.audit.dynamodb_store import DynamoDBLogStore
from tasklog.audit.formatter import FormatOptions
from tasklog.audit.query import LogQueryEngine
from tasklog.audit.service import LogService
from tasklog.audit.sql_store import SqlLogStore
from tasklog.audit.store import FileLogStore, LogStore, ProcessLogStore, QueryableLogStore
from tasklog.audit.writer import LogWriter, RetryPolicy
from tasklog.common.config import Config, TierName, get_config
from tasklog.common.exceptions import ConfigurationError
from tasklog.monitoring.metrics import MetricsCollector


logger = logging.getLogger(__name__)


class ResponseConfigMetadata(BaseModel):
    version: str = "1.0"
    description: Optional[str] = None


class ResponseConfig(BaseModel):
    """In-memory representation of log_responses.yaml."""
    metadata: ResponseConfigMetadata = Field(default_factory=ResponseConfigMetadata)
    formatting: FormatOptions = Field(default_factory=FormatOptions)


def load_format_options(path: Union[str, Path]) -> FormatOptions:
    """Load default FormatOptions from a YAML response config.

    Raises:
        ConfigurationError: If the file is missing, unparsable or invalid.
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Response config not found: {path}")

    try:
        with open(path, "r") as f:
            raw_config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

    try:
        return ResponseConfig.model_validate(raw_config).formatting
    except PydanticValidationError as e:
        raise ConfigurationError(
            f"Invalid response config in {path}",
            details={"errors": e.errors(include_url=False)},
        ) from e


def create_primary_store(config: Config) -> DynamoDBLogStore:
    return DynamoDBLogStore(
        table_name=config.dynamodb_table,
        region=config.aws_region,
        aws_profile=config.aws_profile,
        ttl_days=config.dynamodb_ttl_days,
        connect_timeout=config.dynamodb_connect_timeout,
        read_timeout=config.dynamodb_read_timeout,
    )


def create_secondary_store(config: Config) -> SqlLogStore:
    url = config.fallback_database_url
    if url.startswith("sqlite:///") and ":memory:" not in url:
        Path(url[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)
    return SqlLogStore(url)


def create_file_store(config: Config) -> FileLogStore:
    return FileLogStore(path=config.fallback_file)


def create_process_store(config: Config) -> ProcessLogStore:
    return ProcessLogStore(syslog_address=config.syslog_address)


TIER_FACTORIES: Dict[TierName, Callable[[Config], LogStore]] = {
    TierName.PRIMARY: create_primary_store,
    TierName.SECONDARY: create_secondary_store,
    TierName.FILE: create_file_store,
    TierName.SYSLOG: create_process_store,
}


def create_tiers(config: Config) -> List[LogStore]:
    """Build every enabled tier in order, skipping any that fail to start.

    Raises:
        ConfigurationError: If no tier could be built.
    """
    tiers: List[LogStore] = []
    for name in config.tiers:
        try:
            tiers.append(TIER_FACTORIES[name](config))
        except Exception as e:
            logger.warning(f"Skipping {name.value} tier, initialization failed: {e}")

    if not tiers:
        raise ConfigurationError(
            "No task log storage tier could be initialized",
            details={"configured": [t.value for t in config.tiers]},
        )
    return tiers


def create_metrics_collector(config: Config) -> Optional[MetricsCollector]:
    if not config.metrics_enabled:
        return None
    try:
        return MetricsCollector(
            namespace=config.cloudwatch_namespace,
            region=config.aws_region,
            aws_profile=config.aws_profile,
        )
    except Exception as e:
        logger.warning(f"Metrics disabled, CloudWatch client failed to initialize: {e}")
        return None


def create_log_writer(
    config: Optional[Config] = None,
    tiers: Optional[List[LogStore]] = None,
) -> LogWriter:
    """Factory method to create the tier-chain writer.

    Args:
        config: Process configuration (default: global config)
        tiers: Prebuilt tiers; built from config when omitted

    Returns:
        Configured LogWriter instance
    """
    config = config or get_config()
    tiers = tiers if tiers is not None else create_tiers(config)
    policy = RetryPolicy(
        max_attempts=config.retry_max_attempts,
        initial_delay=config.retry_initial_delay,
        max_total_delay=config.retry_max_total_delay,
    )
    return LogWriter(tiers, retry_policy=policy, metrics=create_metrics_collector(config))


def create_log_service(config: Optional[Config] = None) -> LogService:
    """Factory method to create the LogService with configured tiers.

    The first queryable tier backs reads; the relational tier, when
    enabled, backs fallback inspection.
    """
    config = config or get_config()
    tiers = create_tiers(config)
    writer = create_log_writer(config, tiers=tiers)

    queryable = [t for t in tiers if isinstance(t, QueryableLogStore)]
    primary = next((t for t in queryable if isinstance(t, DynamoDBLogStore)), None)
    secondary = next((t for t in queryable if isinstance(t, SqlLogStore)), None)

    query_store = primary or secondary
    try:
        options = load_format_options(config.response_config_path)
    except ConfigurationError as e:
        logger.warning(f"Using default format options: {e.message}")
        options = FormatOptions()

    return LogService(
        writer,
        query_engine=LogQueryEngine(query_store) if query_store else None,
        fallback_engine=LogQueryEngine(secondary) if secondary else None,
        format_options=options,
    )


__all__ = [
    "ResponseConfig",
    "load_format_options",
    "create_primary_store",
    "create_secondary_store",
    "create_file_store",
    "create_process_store",
    "create_tiers",
    "create_metrics_collector",
    "create_log_writer",
    "create_log_service",
]
