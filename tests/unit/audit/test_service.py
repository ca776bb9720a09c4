"""Tests for the LogService facade."""

from unittest.mock import MagicMock

import pytest

from tasklog.audit.formatter import FormatOptions
from tasklog.audit.query import LogQueryEngine
from tasklog.audit.schemas import LogAction, TierResult
from tasklog.audit.service import LogService, RequestContext, UserInfo, describe_event
from tasklog.audit.sql_store import SqlLogStore
from tasklog.audit.writer import LogWriter
from tasklog.common.exceptions import ConfigurationError, QueryValidationError, ValidationError


@pytest.fixture
def store():
    return SqlLogStore("sqlite://")


@pytest.fixture
def service(store):
    engine = LogQueryEngine(store)
    return LogService(LogWriter([store]), query_engine=engine, fallback_engine=engine)


class TestDescriptions:

    def test_created(self):
        assert describe_event(1, LogAction.CREATED, None, {"title": "x"}) == "Task was created with initial data"

    @pytest.mark.parametrize("action,expected", [
        (LogAction.SOFT_DELETE, "Task 'Docs' was moved to trash"),
        (LogAction.FORCE_DELETE, "Task 'Docs' was permanently deleted"),
        (LogAction.DELETED, "Task 'Docs' was deleted"),
    ])
    def test_deletions(self, action, expected):
        assert describe_event(1, action, {"title": "Docs"}, None) == expected

    def test_restored(self):
        assert describe_event(1, LogAction.RESTORED, None, {"title": "Docs"}) == "Task 'Docs' was restored from trash"

    def test_untitled_task_uses_id(self):
        assert describe_event(8, LogAction.DELETED, {"status": "done"}, None) == "Task 'Task #8' was deleted"

    def test_status_change(self):
        text = describe_event(1, LogAction.STATUS_CHANGE, {"status": "pending"}, {"status": "done"})
        assert text == "Task status changed from 'pending' to 'done'"

    def test_assignment(self):
        text = describe_event(1, LogAction.ASSIGNMENT_CHANGE, {"assigned_to": 1}, {"assigned_to": 4})
        assert text == "Task was assigned to user 4"

    def test_update_lists_changed_fields(self):
        text = describe_event(1, LogAction.UPDATED, {"a": 1, "b": 2}, {"a": 1, "b": 3, "c": 4})
        assert text == "Task was updated. Changed fields: b, c"

    def test_update_without_changes(self):
        assert describe_event(1, LogAction.UPDATED, {"a": 1}, {"a": 1}) == "Task was updated with no changes"


class TestWrites:

    def test_log_created_stores_entry(self, service, store):
        context = RequestContext(ip_address="10.0.0.1", user_agent="pytest", request_id="req_abc")
        result = service.log_created(42, {"title": "Write docs"}, user=UserInfo(7, "Ana"), context=context)

        assert result == TierResult.SECONDARY  # the only tier here is the relational one
        entry = store.get_entry("1")
        assert entry.task_id == 42
        assert entry.action == LogAction.CREATED
        assert entry.user_name == "Ana"
        assert entry.ip_address == "10.0.0.1"
        assert entry.request_id == "req_abc"
        assert entry.description == "Task was created with initial data"

    def test_system_event(self, service, store):
        service.log_status_change(5, "pending", "done")
        entry = store.get_entry("1")
        assert entry.user_id is None
        assert entry.user_name == "System"
        assert entry.old_data == {"status": "pending"}
        assert entry.request_id.startswith("req_")

    def test_each_helper_writes_its_action(self, service, store):
        service.log_updated(1, {"a": 1}, {"a": 2})
        service.log_assignment_change(1, None, 3)
        service.log_metadata_update(1, {"tags": []}, {"tags": ["x"]})
        service.log_deleted(1, {"title": "t"}, deletion_type="force_delete")
        service.log_restored(1, {"title": "t"})

        actions = [e.action for e in store.iter_entries()]
        assert sorted(a.value for a in actions) == sorted([
            "updated", "assignment_change", "metadata_update", "force_delete", "restored",
        ])

    def test_unknown_deletion_type_is_dropped(self, service, store):
        assert service.log_deleted(1, {"title": "t"}, deletion_type="shred") == TierResult.DROPPED
        assert list(store.iter_entries()) == []

    def test_malformed_payload_is_dropped(self, service, store):
        assert service.log_event(1, "created", old_data={"a": 1}) == TierResult.DROPPED
        assert service.log_event(1, "archived", new_data={"a": 1}) == TierResult.DROPPED
        assert list(store.iter_entries()) == []

    def test_bulk_keeps_going_past_bad_events(self, service, store):
        results = service.log_bulk([
            {"task_id": 1, "action": "created", "new_data": {"title": "a"}},
            {"task_id": 1, "action": "archived", "new_data": {"a": 1}},
            {"task_id": 1, "colour": "red"},
            "not an event",
            {"task_id": 2, "action": "status_change", "old_data": {"status": "a"}, "new_data": {"status": "b"}},
        ], user=UserInfo(7, "Ana"))

        assert results == [
            TierResult.SECONDARY,
            TierResult.DROPPED,
            TierResult.DROPPED,
            TierResult.DROPPED,
            TierResult.SECONDARY,
        ]
        entries = list(store.iter_entries())
        assert [e.task_id for e in entries] == [1, 2]
        assert {e.user_name for e in entries} == {"Ana"}

    def test_bulk_event_user_overrides_default(self, service, store):
        service.log_bulk(
            [{"task_id": 3, "action": "restored", "new_data": {"title": "t"}, "user": UserInfo(9, "Bo")}],
            user=UserInfo(7, "Ana"),
        )
        assert store.get_entry("1").user_name == "Bo"

    def test_bulk_empty(self, service):
        assert service.log_bulk([]) == []

    def test_write_never_raises(self, sample_entry):
        writer = MagicMock()
        writer.write.return_value = TierResult.DROPPED
        assert LogService(writer).record(sample_entry) == TierResult.DROPPED


class TestReads:

    @pytest.fixture
    def populated(self, service, store, entry_factory):
        store.append_entry(entry_factory(task_id=1, action="created", minutes=0))
        store.append_entry(entry_factory(task_id=1, action="soft_delete", minutes=1))
        store.append_entry(entry_factory(task_id=2, action="created", minutes=2))
        return service

    def test_list_logs_rendered(self, populated):
        result = populated.list_logs(task_id=1)
        assert result["pagination"]["total"] == 2
        assert result["logs"][0]["action"] == "soft_delete"
        assert result["meta"]["total_returned"] == 2

    def test_list_logs_validates(self, populated):
        with pytest.raises(QueryValidationError):
            populated.list_logs(sort="bogus")

    def test_fallback_logs(self, populated):
        assert populated.fallback_logs(actions="created")["pagination"]["total"] == 2

    def test_get_log(self, populated):
        assert populated.get_log("1")["task_id"] == 1
        assert populated.get_log("999") is None

    def test_histories(self, populated):
        assert len(populated.task_history(1)["logs"]) == 2
        assert len(populated.deletion_history()["logs"]) == 1
        assert len(populated.recent_logs(limit=1)["logs"]) == 1

    def test_options_override(self, populated):
        result = populated.recent_logs(options=FormatOptions(user_format="name", include_metadata=False))
        assert result["logs"][0]["user"] == "user7"
        assert "meta" not in result

    def test_statistics(self, populated):
        report = populated.statistics(task_id=1)
        assert report["total"] == 2
        assert report["deletions"]["soft_deletes"] == 1

    def test_missing_engine(self):
        service = LogService(MagicMock())
        with pytest.raises(ConfigurationError):
            service.list_logs()
        with pytest.raises(ConfigurationError):
            service.fallback_logs()


class TestCleanup:

    def test_removes_only_old_entries(self, service, store, entry_factory):
        store.append_entry(entry_factory(minutes=0))
        service.log_created(3, {"title": "fresh"})

        assert service.cleanup_old_logs(retention_days=90) == 1
        assert [e.task_id for e in store.iter_entries()] == [3]

    def test_counts_each_engine(self, entry_factory):
        primary = SqlLogStore("sqlite://")
        fallback = SqlLogStore("sqlite://")
        primary.append_entry(entry_factory())
        fallback.append_entry(entry_factory())
        fallback.append_entry(entry_factory(minutes=1))
        service = LogService(
            LogWriter([primary]),
            query_engine=LogQueryEngine(primary),
            fallback_engine=LogQueryEngine(fallback),
        )

        assert service.cleanup_old_logs() == 3

    def test_rejects_non_positive_retention(self, service):
        with pytest.raises(ValidationError):
            service.cleanup_old_logs(retention_days=0)
