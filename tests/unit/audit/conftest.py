"""Shared fixtures for task log unit tests."""

from datetime import datetime, timedelta, timezone

import pytest

from tasklog.audit.schemas import LogAction, LogEntry


BASE_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_entry(task_id=1, action=LogAction.CREATED, minutes=0, user_id=7, **overrides):
    """Build a valid LogEntry whose payload matches its action."""
    action = LogAction(action)
    payload = {}
    if action in (LogAction.CREATED, LogAction.RESTORED):
        payload["new_data"] = {"title": f"Task {task_id}", "status": "pending"}
    elif action in (LogAction.DELETED, LogAction.SOFT_DELETE, LogAction.FORCE_DELETE):
        payload["old_data"] = {"title": f"Task {task_id}", "status": "pending"}
    else:
        payload["old_data"] = {"status": "pending"}
        payload["new_data"] = {"status": "completed"}
    payload.update(overrides)
    return LogEntry(
        task_id=task_id,
        action=action,
        user_id=user_id,
        user_name=f"user{user_id}" if user_id is not None else None,
        created_at=BASE_TIME + timedelta(minutes=minutes),
        **payload,
    )


@pytest.fixture
def entry_factory():
    return make_entry


@pytest.fixture
def sample_entry():
    return make_entry()


@pytest.fixture
def base_time():
    return BASE_TIME
