"""Integration tests for the full task log tier chain.

A mocked DynamoDB table in front of a real in-memory SQLite fallback and a
real JSONL file, wired together the way create_log_service wires them.
"""

from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from tasklog.audit.dynamodb_store import DynamoDBLogStore
from tasklog.audit.query import LogQueryEngine
from tasklog.audit.schemas import TierResult
from tasklog.audit.service import LogService, UserInfo
from tasklog.audit.sql_store import SqlLogStore
from tasklog.audit.store import FileLogStore, ProcessLogStore
from tasklog.audit.writer import LogWriter


def throttled():
    return ClientError(
        {
            "Error": {"Code": "ProvisionedThroughputExceededException", "Message": "Rate exceeded"},
            "ResponseMetadata": {"HTTPStatusCode": 400},
        },
        "PutItem",
    )


class TestFallbackChain:
    """Writes escalate tier by tier and stay readable where they land."""

    @pytest.fixture
    def table(self):
        return MagicMock()

    @pytest.fixture
    def chain(self, table, tmp_path):
        with patch("boto3.resource") as mock_resource:
            mock_resource.return_value.Table.return_value = table
            primary = DynamoDBLogStore(table_name="task-logs")
            primary.table = table

        secondary = SqlLogStore("sqlite://")
        file_store = FileLogStore(tmp_path / "task_logs_fallback.log")
        sleeps = []
        writer = LogWriter(
            [primary, secondary, file_store, ProcessLogStore()],
            sleep=sleeps.append,
        )
        service = LogService(
            writer,
            query_engine=LogQueryEngine(primary),
            fallback_engine=LogQueryEngine(secondary),
        )
        return service, secondary, file_store, sleeps

    def test_healthy_primary(self, chain, table):
        service, secondary, file_store, sleeps = chain

        assert service.log_created(1, {"title": "Docs"}, user=UserInfo(7, "Ana")) == TierResult.PRIMARY
        table.put_item.assert_called_once()
        assert list(secondary.iter_entries()) == []
        assert sleeps == []

    def test_primary_recovers_after_one_throttle(self, chain, table):
        service, secondary, _, sleeps = chain
        table.put_item.side_effect = [throttled(), None]

        assert service.log_status_change(1, "pending", "done") == TierResult.PRIMARY
        assert table.put_item.call_count == 2
        assert sleeps == [pytest.approx(0.1)]
        assert list(secondary.iter_entries()) == []

    def test_primary_outage_lands_in_sql(self, chain, table):
        service, secondary, file_store, sleeps = chain
        table.put_item.side_effect = throttled()

        result = service.log_updated(5, {"status": "pending"}, {"status": "done"}, user=UserInfo(3, "Bo"))

        assert result == TierResult.SECONDARY
        assert table.put_item.call_count == 3
        assert sleeps == [pytest.approx(0.1), pytest.approx(0.2)]

        rendered = service.fallback_logs(task_id=5)
        assert rendered["pagination"]["total"] == 1
        stored = next(secondary.iter_entries())
        assert stored.user_name == "Bo"
        assert "ProvisionedThroughputExceededException" in stored.original_error
        assert list(file_store.read_entries()) == []

    def test_sql_outage_lands_in_file(self, chain, table):
        service, secondary, file_store, _ = chain
        table.put_item.side_effect = throttled()
        secondary.SessionLocal = MagicMock(side_effect=RuntimeError("database is locked"))

        assert service.log_deleted(9, {"title": "Old"}, deletion_type="force_delete") == TierResult.FILE

        entries = list(file_store.read_entries())
        assert len(entries) == 1
        assert entries[0].task_id == 9
        assert entries[0].tier == TierResult.FILE
        assert entries[0].original_error

    def test_everything_down_reaches_process_log(self, chain, table, caplog):
        service, secondary, file_store, _ = chain
        table.put_item.side_effect = throttled()
        secondary.SessionLocal = MagicMock(side_effect=RuntimeError("database is locked"))
        file_store.path = file_store.path.parent

        with caplog.at_level("CRITICAL", logger="tasklog.process_fallback"):
            result = service.log_restored(2, {"title": "Back"})

        assert result == TierResult.SYSLOG
        assert "all_fallbacks_failed" in caplog.text
