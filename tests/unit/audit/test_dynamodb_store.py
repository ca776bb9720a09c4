"""Unit tests for the DynamoDB primary tier."""

from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError, ReadTimeoutError

from tasklog.audit.dynamodb_store import DynamoDBLogStore, from_dynamo, to_dynamo
from tasklog.audit.schemas import LogCriteria, LogQuery, SortDirection, SortField, TierResult
from tasklog.audit.writer import LogWriter
from tasklog.common.exceptions import DuplicateEntryError, PermanentStoreError, TransientStoreError


def client_error(code, status=400):
    return ClientError(
        {"Error": {"Code": code, "Message": code}, "ResponseMetadata": {"HTTPStatusCode": status}},
        "PutItem",
    )


class TestDynamoDBLogStore:
    """Test DynamoDB log store with a mocked table."""

    @pytest.fixture
    def mock_dynamodb_table(self):
        """Create mock DynamoDB table."""
        return MagicMock()

    @pytest.fixture
    def store(self, mock_dynamodb_table):
        """Create store with mocked table."""
        with patch("boto3.resource") as mock_resource:
            mock_resource.return_value.Table.return_value = mock_dynamodb_table
            store = DynamoDBLogStore(table_name="test-task-logs")
            store.table = mock_dynamodb_table
            return store

    def test_requires_table_name(self, monkeypatch):
        monkeypatch.delenv("TASKLOG_DYNAMODB_TABLE", raising=False)
        with pytest.raises(ValueError):
            DynamoDBLogStore()

    def test_client_makes_one_bounded_attempt_per_call(self):
        with patch("boto3.resource") as mock_resource:
            DynamoDBLogStore(table_name="t", connect_timeout=0.5, read_timeout=1.5)

        client_config = mock_resource.call_args[1]["config"]
        assert client_config.retries == {"max_attempts": 1, "mode": "standard"}
        assert client_config.connect_timeout == 0.5
        assert client_config.read_timeout == 1.5

    def test_region_falls_back_to_aws_default_region(self, monkeypatch):
        monkeypatch.setenv("AWS_DEFAULT_REGION", "eu-west-1")
        monkeypatch.setenv("AWS_REGION", "ap-south-1")
        with patch("boto3.resource") as mock_resource:
            store = DynamoDBLogStore(table_name="t")

        assert store.region == "eu-west-1"
        assert mock_resource.call_args[1]["region_name"] == "eu-west-1"

    def test_append_builds_item(self, store, mock_dynamodb_table, entry_factory):
        entry = entry_factory(task_id=42, new_data={"title": "x", "estimate": 1.5})

        stored = store.append_entry(entry)

        assert stored.tier == TierResult.PRIMARY
        assert stored.id
        item = mock_dynamodb_table.put_item.call_args[1]["Item"]
        assert item["pk"] == f"LOG#{stored.id}"
        assert item["sk"] == "ENTRY"
        assert item["entity_type"] == "TASK_LOG"
        assert item["gsi1_pk"] == "TASK#42"
        assert item["gsi1_sk"] == entry.created_at.isoformat()
        assert item["action"] == "created"
        assert item["new_data"]["estimate"] == Decimal("1.5")
        assert "old_data" not in item
        assert "ttl_timestamp" not in item

    def test_ttl_added_when_configured(self, store, mock_dynamodb_table, sample_entry):
        store.ttl_days = 30
        store.append_entry(sample_entry)
        item = mock_dynamodb_table.put_item.call_args[1]["Item"]
        assert item["ttl_timestamp"] > 0

    def test_throttling_is_transient(self, store, mock_dynamodb_table, sample_entry):
        mock_dynamodb_table.put_item.side_effect = client_error("ProvisionedThroughputExceededException")
        with pytest.raises(TransientStoreError):
            store.append_entry(sample_entry)

    def test_server_error_is_transient(self, store, mock_dynamodb_table, sample_entry):
        mock_dynamodb_table.put_item.side_effect = client_error("InternalFailure", status=503)
        with pytest.raises(TransientStoreError):
            store.append_entry(sample_entry)

    def test_endpoint_unreachable_is_transient(self, store, mock_dynamodb_table, sample_entry):
        mock_dynamodb_table.put_item.side_effect = EndpointConnectionError(endpoint_url="http://dynamo")
        with pytest.raises(TransientStoreError):
            store.append_entry(sample_entry)

    def test_validation_error_is_permanent(self, store, mock_dynamodb_table, sample_entry):
        mock_dynamodb_table.put_item.side_effect = client_error("ValidationException")
        with pytest.raises(PermanentStoreError) as exc_info:
            store.append_entry(sample_entry)
        assert exc_info.value.details["code"] == "ValidationException"

    def test_conditional_check_failure_is_duplicate(self, store, mock_dynamodb_table, sample_entry):
        mock_dynamodb_table.put_item.side_effect = client_error("ConditionalCheckFailedException")
        with pytest.raises(DuplicateEntryError):
            store.append_entry(sample_entry)

    def test_timed_out_put_is_retried_under_the_same_key(self, store, mock_dynamodb_table, sample_entry):
        mock_dynamodb_table.put_item.side_effect = [ReadTimeoutError(endpoint_url="http://dynamo"), None]

        receipt = LogWriter([store], sleep=lambda s: None).write_with_receipt(sample_entry)

        assert receipt.tier == TierResult.PRIMARY
        keys = [c[1]["Item"]["pk"] for c in mock_dynamodb_table.put_item.call_args_list]
        assert len(keys) == 2
        assert keys[0] == keys[1] == f"LOG#{receipt.entry.id}"

    def test_put_committed_before_timeout_is_not_duplicated(self, store, mock_dynamodb_table, sample_entry):
        mock_dynamodb_table.put_item.side_effect = [
            ReadTimeoutError(endpoint_url="http://dynamo"),
            client_error("ConditionalCheckFailedException"),
        ]

        receipt = LogWriter([store], sleep=lambda s: None).write_with_receipt(sample_entry)

        assert receipt.tier == TierResult.PRIMARY
        assert receipt.attempts == 2
        assert mock_dynamodb_table.put_item.call_count == 2

    def test_get_entry_converts_decimals(self, store, mock_dynamodb_table):
        mock_dynamodb_table.get_item.return_value = {
            "Item": {
                "pk": "LOG#abc",
                "sk": "ENTRY",
                "log_id": "abc",
                "task_id": Decimal("7"),
                "action": "updated",
                "old_data": {"estimate": Decimal("1.5")},
                "new_data": {"estimate": Decimal("2")},
                "user_id": Decimal("3"),
                "user_name": "Ana",
                "created_at": "2024-01-01T12:00:00+00:00",
            }
        }

        entry = store.get_entry("abc")

        assert entry.id == "abc"
        assert entry.task_id == 7
        assert entry.old_data == {"estimate": 1.5}
        assert entry.new_data == {"estimate": 2}
        assert entry.tier == TierResult.PRIMARY
        mock_dynamodb_table.get_item.assert_called_once_with(Key={"pk": "LOG#abc", "sk": "ENTRY"})

    def test_get_entry_missing(self, store, mock_dynamodb_table):
        mock_dynamodb_table.get_item.return_value = {}
        assert store.get_entry("missing") is None

    def test_task_query_uses_index_and_follows_pages(self, store, mock_dynamodb_table, entry_factory):
        first = store._build_item(entry_factory(task_id=5, minutes=1).model_copy(update={"id": "a"}))
        second = store._build_item(entry_factory(task_id=5, minutes=2).model_copy(update={"id": "b"}))
        mock_dynamodb_table.query.side_effect = [
            {"Items": [first], "LastEvaluatedKey": {"pk": "LOG#a"}},
            {"Items": [second]},
        ]

        page = store.query(LogQuery(criteria=LogCriteria(task_id=5)))

        assert [e.id for e in page.entries] == ["b", "a"]
        assert page.total == 2
        calls = mock_dynamodb_table.query.call_args_list
        assert calls[0][1]["IndexName"] == "gsi1_pk-gsi1_sk-index"
        assert calls[0][1]["ExpressionAttributeValues"][":pk"] == "TASK#5"
        assert calls[1][1]["ExclusiveStartKey"] == {"pk": "LOG#a"}

    def test_scan_filters_and_sorts(self, store, mock_dynamodb_table, entry_factory):
        items = [
            store._build_item(entry_factory(task_id=i, minutes=i).model_copy(update={"id": str(i)}))
            for i in range(3)
        ]
        mock_dynamodb_table.scan.return_value = {"Items": items}

        query = LogQuery(
            criteria=LogCriteria(actions={"created", "updated"}, user_id=7),
            sort_field=SortField.TASK_ID,
            direction=SortDirection.ASC,
            per_page=2,
        )
        page = store.query(query)

        assert [e.task_id for e in page.entries] == [0, 1]
        assert page.total == 3
        kwargs = mock_dynamodb_table.scan.call_args[1]
        assert "entity_type = :et" in kwargs["FilterExpression"]
        assert "#action IN" in kwargs["FilterExpression"]
        assert kwargs["ExpressionAttributeNames"] == {"#action": "action"}

    def test_read_failure_is_classified(self, store, mock_dynamodb_table):
        mock_dynamodb_table.scan.side_effect = client_error("ThrottlingException")
        with pytest.raises(TransientStoreError):
            store.query(LogQuery())

    def test_delete_entries_uses_batch_writer(self, store, mock_dynamodb_table, entry_factory):
        items = [store._build_item(entry_factory(minutes=i).model_copy(update={"id": str(i)})) for i in range(2)]
        mock_dynamodb_table.scan.return_value = {"Items": items}
        batch = mock_dynamodb_table.batch_writer.return_value.__enter__.return_value

        assert store.delete_entries(LogCriteria()) == 2
        assert batch.delete_item.call_count == 2


class TestDecimalConversion:

    def test_round_trip(self):
        data = {"a": 1.25, "b": [2.0, {"c": 3}], "d": "x"}
        converted = to_dynamo(data)
        assert converted["a"] == Decimal("1.25")
        assert from_dynamo(converted) == {"a": 1.25, "b": [2, {"c": 3}], "d": "x"}
