"""DynamoDB primary tier for task logs."""

import logging, os
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Optional, Tuple
from uuid import uuid4

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from tasklog.audit.schemas import LogCriteria, LogEntry, LogPage, LogQuery, TierResult
from tasklog.audit.store import QueryableLogStore, classify_store_error, sort_and_paginate
from tasklog.common.constants import DynamoConstants
from tasklog.common.exceptions import (
    DuplicateEntryError,
    PermanentStoreError,
    StoreError,
    TransientStoreError,
)

logger = logging.getLogger(__name__)

_TRANSIENT_BOTOCORE = (
    EndpointConnectionError,
    ConnectTimeoutError,
    ReadTimeoutError,
    ConnectionClosedError,
)

_RECORD_FIELDS = (
    "task_id", "action", "old_data", "new_data", "user_id", "user_name",
    "description", "ip_address", "user_agent", "request_id",
    "created_at", "updated_at", "original_error",
)


def to_dynamo(value: Any) -> Any:
    """Convert JSON data to DynamoDB-compatible types (floats become Decimal)."""
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: to_dynamo(v) for k, v in value.items()}
    if isinstance(value, list):
        return [to_dynamo(v) for v in value]
    return value


def from_dynamo(value: Any) -> Any:
    """Convert DynamoDB types back to plain JSON data."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: from_dynamo(v) for k, v in value.items()}
    if isinstance(value, (list, set)):
        return [from_dynamo(v) for v in value]
    return value


class DynamoDBLogStore(QueryableLogStore):
    """Single-table DynamoDB store for task logs.

    Item layout:
        pk       LOG#<id>
        sk       ENTRY
        gsi1_pk  TASK#<task_id>
        gsi1_sk  created_at (ISO-8601)
    """

    tier = TierResult.PRIMARY

    DEFAULT_REGION = DynamoConstants.DEFAULT_REGION

    def __init__(
        self,
        table_name: Optional[str] = None,
        region: Optional[str] = None,
        aws_profile: Optional[str] = None,
        ttl_days: int = DynamoConstants.DEFAULT_TTL_DAYS,
        task_index: str = DynamoConstants.TASK_INDEX,
        connect_timeout: float = DynamoConstants.CONNECT_TIMEOUT_SECONDS,
        read_timeout: float = DynamoConstants.READ_TIMEOUT_SECONDS,
    ):
        self.table_name = table_name or os.environ.get("TASKLOG_DYNAMODB_TABLE")
        if not self.table_name:
            raise ValueError("TASKLOG_DYNAMODB_TABLE required")

        self.region = region or os.environ.get("AWS_DEFAULT_REGION", self.DEFAULT_REGION)
        self.ttl_days = ttl_days
        self.task_index = task_index
        self.client_config = BotoConfig(
            retries={"max_attempts": DynamoConstants.SDK_MAX_ATTEMPTS, "mode": "standard"},
            connect_timeout=connect_timeout,
            read_timeout=read_timeout,
        )

        if aws_profile:
            session = boto3.Session(profile_name=aws_profile)
            self.dynamodb = session.resource(
                "dynamodb", region_name=self.region, config=self.client_config
            )
        else:
            self.dynamodb = boto3.resource(
                "dynamodb", region_name=self.region, config=self.client_config
            )

        self.table = self.dynamodb.Table(self.table_name)
        logger.info(f"DynamoDB log store initialized: {self.table_name} ({self.region})")

    # ========== ERROR MAPPING ==========

    def _classify(self, exc: Exception) -> StoreError:
        if isinstance(exc, ClientError):
            error = exc.response.get("Error", {})
            code = error.get("Code", "")
            status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
            details = {"code": code, "status": status}
            if code == "ConditionalCheckFailedException":
                return DuplicateEntryError(str(exc), tier=self.name, details=details)
            if code in DynamoConstants.TRANSIENT_ERROR_CODES or status >= 500:
                return TransientStoreError(str(exc), tier=self.name, details=details)
            return PermanentStoreError(str(exc), tier=self.name, details=details)
        if isinstance(exc, _TRANSIENT_BOTOCORE):
            return TransientStoreError(str(exc), tier=self.name)
        # Other BotoCoreErrors and non-AWS failures fall back to message patterns
        return classify_store_error(exc, tier=self.name)

    # ========== ITEM MAPPING ==========

    @staticmethod
    def _key(entry_id: str) -> Dict[str, str]:
        return {"pk": f"LOG#{entry_id}", "sk": DynamoConstants.SORT_KEY}

    def _get_ttl_timestamp(self) -> int:
        future = datetime.now(timezone.utc) + timedelta(days=self.ttl_days)
        return int(future.timestamp())

    def _build_item(self, entry: LogEntry) -> Dict[str, Any]:
        record = entry.to_record()
        # Timestamps use isoformat() so stored values and filter bounds compare alike
        record["created_at"] = entry.created_at.isoformat()
        if entry.updated_at is not None:
            record["updated_at"] = entry.updated_at.isoformat()

        item = {
            **self._key(record["id"]),
            "entity_type": DynamoConstants.ENTITY_TYPE,
            "gsi1_pk": f"TASK#{entry.task_id}",
            "gsi1_sk": record["created_at"],
            "log_id": record["id"],
        }
        for name in _RECORD_FIELDS:
            if record.get(name) is not None:
                item[name] = to_dynamo(record[name])

        if self.ttl_days > 0:
            item["ttl_timestamp"] = self._get_ttl_timestamp()
        return item

    def _to_entry(self, item: Dict[str, Any]) -> LogEntry:
        data = from_dynamo(dict(item))
        payload = {name: data.get(name) for name in _RECORD_FIELDS}
        payload["id"] = data.get("log_id") or str(data["pk"]).split("#", 1)[-1]
        payload["tier"] = self.tier
        return LogEntry.model_validate(payload)

    # ========== WRITES ==========

    def append_entry(self, entry: LogEntry) -> LogEntry:
        stored = entry.model_copy(update={
            "id": entry.id or uuid4().hex,
            "tier": self.tier,
        })
        try:
            self.table.put_item(
                Item=self._build_item(stored),
                ConditionExpression="attribute_not_exists(pk)",
            )
        except Exception as e:
            error = self._classify(e)
            logger.error(f"put_item failed ({error.code}): {e}")
            raise error from e
        return stored

    def delete_entries(self, criteria: LogCriteria) -> int:
        deleted = 0
        try:
            with self.table.batch_writer() as batch:
                for item in self._iter_items(criteria):
                    batch.delete_item(Key={"pk": item["pk"], "sk": item["sk"]})
                    deleted += 1
        except StoreError:
            raise
        except Exception as e:
            raise self._classify(e) from e
        logger.info(f"Deleted {deleted} task log items from {self.table_name}")
        return deleted

    # ========== READS ==========

    def get_entry(self, entry_id: str) -> Optional[LogEntry]:
        try:
            response = self.table.get_item(Key=self._key(entry_id))
        except Exception as e:
            raise self._classify(e) from e
        item = response.get("Item")
        return self._to_entry(item) if item else None

    def _build_filters(self, criteria: LogCriteria) -> Tuple[List[str], Dict[str, Any], Dict[str, str]]:
        conditions: List[str] = []
        values: Dict[str, Any] = {}
        names: Dict[str, str] = {}

        if criteria.actions:
            names["#action"] = "action"
            placeholders = []
            for i, action in enumerate(sorted(a.value for a in criteria.actions)):
                values[f":a{i}"] = action
                placeholders.append(f":a{i}")
            conditions.append(f"#action IN ({', '.join(placeholders)})")
        if criteria.user_id is not None:
            values[":uid"] = criteria.user_id
            conditions.append("user_id = :uid")
        if criteria.start is not None:
            values[":start"] = criteria.start.isoformat()
            conditions.append("created_at >= :start")
        if criteria.end is not None:
            values[":end"] = criteria.end.isoformat()
            conditions.append("created_at < :end")
        return conditions, values, names

    def _iter_items(self, criteria: Optional[LogCriteria] = None) -> Iterator[Dict[str, Any]]:
        """Yield raw items, following LastEvaluatedKey until exhausted."""
        criteria = criteria or LogCriteria()
        conditions, values, names = self._build_filters(criteria)

        if criteria.task_id is not None:
            operation = self.table.query
            kwargs: Dict[str, Any] = {
                "IndexName": self.task_index,
                "KeyConditionExpression": "gsi1_pk = :pk",
            }
            values[":pk"] = f"TASK#{criteria.task_id}"
        else:
            operation = self.table.scan
            kwargs = {}
            values[":et"] = DynamoConstants.ENTITY_TYPE
            conditions.insert(0, "entity_type = :et")

        if conditions:
            kwargs["FilterExpression"] = " AND ".join(conditions)
        kwargs["ExpressionAttributeValues"] = values
        if names:
            kwargs["ExpressionAttributeNames"] = names

        try:
            while True:
                response = operation(**kwargs)
                for item in response.get("Items", []):
                    yield item
                last_key = response.get("LastEvaluatedKey")
                if not last_key:
                    break
                kwargs["ExclusiveStartKey"] = last_key
        except Exception as e:
            raise self._classify(e) from e

    def iter_entries(self, criteria: Optional[LogCriteria] = None) -> Iterator[LogEntry]:
        criteria = criteria or LogCriteria()
        for item in self._iter_items(criteria):
            try:
                entry = self._to_entry(item)
            except ValueError as e:
                logger.warning(f"Skipping malformed item {item.get('pk')}: {e}")
                continue
            # Expression filters narrow the read; matches() is authoritative
            if criteria.matches(entry):
                yield entry

    def query(self, query: LogQuery) -> LogPage:
        entries = list(self.iter_entries(query.criteria))
        return sort_and_paginate(entries, query)
