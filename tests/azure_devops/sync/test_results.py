"""Tests for SyncPassResult and discovery query construction."""

from datetime import UTC, datetime, timedelta, timezone

import pytest

from ado_mirror.azure_devops.exceptions import (
    RetryExhaustedError,
    ServerError,
    WorkItemNotFoundError,
)
from ado_mirror.azure_devops.sync import (
    SyncPassResult,
    SyncPhase,
    SyncStrategy,
    build_discovery_query,
    describe_error,
)
from ado_mirror.config import DEFAULT_DISCOVERY_QUERY
from tests.conftest import FEB_01


class TestSyncPassResult:
    """Tests for SyncPassResult counters."""

    def test_empty_result(self):
        result = SyncPassResult()

        assert result.written == 0
        assert result.synced == 0
        assert result.failed_count == 0
        assert result.success is False
        assert result.duration_seconds == 0.0

    def test_counters(self):
        """written counts rows touched; synced adds the up to date ones."""
        result = SyncPassResult(
            phase=SyncPhase.DONE,
            created=2,
            updated=3,
            restored=1,
            skipped_unchanged=10,
            skipped_stale=1,
        )

        assert result.written == 6
        assert result.synced == 17
        assert result.success is True

    def test_record_failure(self):
        result = SyncPassResult()

        result.record_failure(7, ValueError("bad payload"))

        assert result.failures == {7: "ValueError: bad payload"}
        assert result.failed_count == 1

    def test_partial_failure_is_not_success(self):
        result = SyncPassResult(phase=SyncPhase.PARTIAL_FAILURE, created=1)

        assert result.success is False

    def test_duration(self):
        result = SyncPassResult(started_at=FEB_01, finished_at=FEB_01 + timedelta(seconds=90))

        assert result.duration_seconds == 90.0

    def test_to_dict(self):
        result = SyncPassResult(
            strategy=SyncStrategy.INCREMENTAL,
            started_at=FEB_01,
            finished_at=FEB_01 + timedelta(seconds=2.5),
            phase=SyncPhase.PARTIAL_FAILURE,
            discovered=4,
            fetched=3,
            created=2,
            deleted_ids=[9],
        )
        result.record_failure(12, RuntimeError("boom"))
        result.record_failure(3, RuntimeError("bang"))

        data = result.to_dict()

        assert data["strategy"] == "incremental"
        assert data["phase"] == "partial_failure"
        assert data["started_at"] == "2024-02-01T00:00:00+00:00"
        assert data["duration_seconds"] == 2.5
        assert data["deleted"] == [9]
        assert data["synced"] == 2
        assert data["failed"] == 2
        assert data["failures"] == [
            {"work_item_id": 3, "error": "RuntimeError: bang", "retryable": False, "status_code": None},
            {"work_item_id": 12, "error": "RuntimeError: boom", "retryable": False, "status_code": None},
        ]
        assert data["error"] is None

    def test_failure_reports_retryability(self):
        """Exhausted retries on a server error are marked as worth another pass."""
        result = SyncPassResult()
        result.record_failure(
            7, RetryExhaustedError("batch", 5, ServerError("down", status_code=503))
        )

        failure = result.to_dict()["failures"][0]

        assert failure["work_item_id"] == 7
        assert failure["error"].startswith("RetryExhaustedError: ")
        assert failure["retryable"] is True
        assert failure["status_code"] == 503
        assert result.failure_details[7]["cause"] == "ServerError"

    def test_to_dict_unfinished(self):
        data = SyncPassResult().to_dict()

        assert data["started_at"] is None
        assert data["finished_at"] is None
        assert data["phase"] == "idle"


class TestDescribeError:
    def test_includes_type_name(self):
        assert describe_error(WorkItemNotFoundError(5)).startswith("WorkItemNotFoundError: ")


class TestBuildDiscoveryQuery:
    """Tests for the incremental discovery predicate."""

    def test_no_timestamp_returns_query_unchanged(self):
        assert build_discovery_query(DEFAULT_DISCOVERY_QUERY) == DEFAULT_DISCOVERY_QUERY

    def test_predicate_before_order_by(self):
        query = "SELECT [System.Id] FROM WorkItems WHERE [System.State] <> 'Removed' ORDER BY [System.Id]"

        result = build_discovery_query(query, FEB_01)

        assert result == (
            "SELECT [System.Id] FROM WorkItems WHERE ([System.State] <> 'Removed') "
            "AND [System.ChangedDate] >= '2024-02-01' ORDER BY [System.Id]"
        )

    def test_or_conditions_stay_grouped(self):
        """An OR in the base query cannot widen the restriction."""
        query = "SELECT [System.Id] FROM WorkItems WHERE [System.State] = 'New' OR [System.State] = 'Active'"

        result = build_discovery_query(query, FEB_01)

        assert result.endswith(
            "WHERE ([System.State] = 'New' OR [System.State] = 'Active') "
            "AND [System.ChangedDate] >= '2024-02-01'"
        )

    def test_query_without_where(self):
        query = "SELECT [System.Id] FROM WorkItems ORDER BY [System.ChangedDate] DESC"

        result = build_discovery_query(query, FEB_01)

        assert result == (
            "SELECT [System.Id] FROM WorkItems WHERE [System.ChangedDate] >= '2024-02-01' "
            "ORDER BY [System.ChangedDate] DESC"
        )

    def test_keywords_case_insensitive(self):
        query = "select [System.Id] from WorkItems where [System.TeamProject] = @project order by [System.Id]"

        result = build_discovery_query(query, FEB_01)

        assert "where ([System.TeamProject] = @project) AND [System.ChangedDate]" in result
        assert result.endswith(" order by [System.Id]")

    @pytest.mark.parametrize(
        ("changed_since", "expected_date"),
        [
            (datetime(2024, 2, 1, 23, 30, tzinfo=UTC), "2024-02-01"),
            (datetime(2024, 2, 1, 20, 0, tzinfo=timezone(timedelta(hours=-5))), "2024-02-02"),
        ],
    )
    def test_predicate_uses_utc_date(self, changed_since, expected_date):
        result = build_discovery_query("SELECT [System.Id] FROM WorkItems", changed_since)

        assert result.endswith(f"[System.ChangedDate] >= '{expected_date}'")
