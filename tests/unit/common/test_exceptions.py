"""Tests for the TaskLog exception hierarchy."""

import pytest

from tasklog.common.exceptions import (
    ConfigurationError,
    DuplicateEntryError,
    LoggingError,
    PermanentStoreError,
    QueryError,
    QueryValidationError,
    StoreError,
    TaskLogException,
    TransientStoreError,
    ValidationError,
)


class TestStoreErrors:
    """Transient and permanent tier failures."""

    def test_transient_flag(self):
        assert TransientStoreError("timed out").transient is True
        assert PermanentStoreError("bad item").transient is False

    def test_tier_recorded_in_details(self):
        error = TransientStoreError("timed out", tier="primary", details={"code": "Throttling"})
        assert error.tier == "primary"
        assert error.details == {"code": "Throttling", "tier": "primary"}
        assert error.code == "TRANSIENT_STORE_ERROR"

    def test_duplicate_is_permanent(self):
        error = DuplicateEntryError("key taken", tier="primary")
        assert isinstance(error, PermanentStoreError)
        assert error.transient is False
        assert error.code == "DUPLICATE_ENTRY"
        assert error.details == {"tier": "primary"}

    @pytest.mark.parametrize("error_class", [TransientStoreError, PermanentStoreError])
    def test_store_errors_are_logging_errors(self, error_class):
        error = error_class("boom")
        assert isinstance(error, StoreError)
        assert isinstance(error, LoggingError)


class TestSerialization:
    """Tests for to_dict."""

    def test_to_dict(self):
        error = ConfigurationError("missing table", details={"env": "TASKLOG_DYNAMODB_TABLE"})
        assert error.to_dict() == {
            "error": "CONFIG_ERROR",
            "message": "missing table",
            "details": {"env": "TASKLOG_DYNAMODB_TABLE"},
        }

    def test_query_validation_is_validation(self):
        error = QueryValidationError("bad sort")
        assert isinstance(error, ValidationError)
        assert error.code == "QUERY_VALIDATION_ERROR"

    def test_everything_shares_the_base(self):
        for error in (QueryError("x"), ValidationError("x"), ConfigurationError("x")):
            assert isinstance(error, TaskLogException)
            assert str(error) == "x"
