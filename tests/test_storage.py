"""
Tests for CallStore error mapping.

Database failures surface as TransientStoreError with a generic details
message; the driver error text stays in the server log.
"""

from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import OperationalError

from calltracker.errors import TransientStoreError
from calltracker.storage import CallStore


class FailingSession:
    """Session whose queries fail the way a locked or broken SQLite file does."""

    def __init__(self):
        self.rolled_back = False

    def query(self, *entities):
        raise OperationalError(
            "SELECT calls.id, calls.started FROM calls WHERE calls.id = ?",
            ("c1",),
            Exception("disk I/O error"),
        )

    def rollback(self):
        self.rolled_back = True


@pytest.fixture
def failing_store():
    return CallStore(FailingSession())


class TestStoreErrors:

    def test_failure_is_rolled_back(self, failing_store):
        with pytest.raises(TransientStoreError):
            failing_store.get_call("c1")
        assert failing_store.db.rolled_back

    def test_details_do_not_expose_sql(self, failing_store):
        with pytest.raises(TransientStoreError) as exc_info:
            failing_store.get_call("c1")

        body = exc_info.value.to_dict()
        assert body["error"] == "Store operation failed: get_call"
        assert body["details"] == "The call store is temporarily unavailable."
        assert "SELECT" not in str(body)
        assert "disk I/O error" not in str(body)

    def test_original_error_is_chained(self, failing_store):
        with pytest.raises(TransientStoreError) as exc_info:
            failing_store.count_open_calls_started_before(datetime(2025, 1, 15, tzinfo=timezone.utc))
        assert isinstance(exc_info.value.__cause__, OperationalError)

    def test_driver_error_is_logged(self, failing_store, caplog):
        with pytest.raises(TransientStoreError):
            failing_store.list_durations()
        assert "disk I/O error" in caplog.text
