"""
Unit tests for result rows and the result table.
"""

import pandas as pd
import pytest

from svcbench.benchmarks.results import (
    RESULT_COLUMNS,
    FailureKind,
    ResultTable,
    ScenarioResult,
    ScenarioStatus,
)
from svcbench.benchmarks.stats import Statistics

STATS = Statistics(
    count=4,
    failed=1,
    sum_ms=10.0,
    mean_ms=2.5,
    min_ms=1.0,
    max_ms=4.0,
    p50_ms=2.0,
    p95_ms=4.0,
    p99_ms=4.0,
    wall_duration_s=0.5,
    throughput_ops_per_s=8.0,
)


@pytest.fixture
def table():
    return ResultTable(
        [
            ScenarioResult.measured("Simple RBAC", "server", 1, 4, STATS),
            ScenarioResult.failure(
                "Simple RBAC",
                "server",
                2,
                4,
                FailureKind.TARGET_UNAVAILABLE,
                "target 'server' unreachable",
            ),
            ScenarioResult.failure(
                "Simple RBAC", "server", 4, 4, FailureKind.TIMEOUT, "timeout after 1.0s", STATS
            ),
        ]
    )


class TestScenarioResult:
    """Test cases for ScenarioResult."""

    def test_measured_row(self):
        """Test the flat row of a measured scenario."""
        row = ScenarioResult.measured("op", "m", 2, 4, STATS).to_row()

        assert list(row) == RESULT_COLUMNS
        assert row["status"] == "completed"
        assert row["failure_kind"] is None
        assert row["p95"] == 4.0
        assert row["throughput"] == 8.0

    def test_failed_row_has_no_numbers(self):
        """Test that a failed scenario without statistics leaves numbers empty."""
        result = ScenarioResult.failure("op", "m", 1, 4, FailureKind.TARGET_CRASHED, "gone")
        row = result.to_row()

        assert row["status"] == "failed"
        assert row["failure_kind"] == "target_crashed"
        assert row["reason"] == "gone"
        assert row["mean"] is None
        assert not result.completed


class TestResultTable:
    """Test cases for ResultTable."""

    def test_csv_round_trip(self, table, tmp_path):
        """Test that a table with failed rows survives a CSV round trip."""
        path = table.write_csv(tmp_path / "out" / "results.csv")

        loaded = ResultTable.read_csv(path)

        assert len(loaded) == 3
        measured = loaded.get("Simple RBAC", "server", 1)
        assert measured.status is ScenarioStatus.COMPLETED
        assert measured.statistics == STATS
        unavailable = loaded.get("Simple RBAC", "server", 2)
        assert unavailable.failure_kind is FailureKind.TARGET_UNAVAILABLE
        assert unavailable.statistics is None
        assert unavailable.reason == "target 'server' unreachable"
        timed_out = loaded.get("Simple RBAC", "server", 4)
        assert timed_out.failure_kind is FailureKind.TIMEOUT
        assert timed_out.statistics == STATS

    def test_csv_columns(self, table, tmp_path):
        """Test the column order of the written CSV."""
        path = table.write_csv(tmp_path / "results.csv")

        assert list(pd.read_csv(path).columns) == RESULT_COLUMNS

    def test_read_csv_missing_columns(self, tmp_path):
        """Test that foreign CSV files are rejected."""
        path = tmp_path / "other.csv"
        path.write_text("a,b\n1,2\n", encoding="utf-8")

        with pytest.raises(ValueError, match="missing result columns"):
            ResultTable.read_csv(path)

    def test_add_overwrites_same_key(self, table):
        """Test that a rerun of the same scenario replaces its row in place."""
        rerun = ScenarioResult.measured("Simple RBAC", "server", 2, 4, STATS)

        table.add(rerun)

        assert len(table) == 3
        assert [r.concurrency for r in table] == [1, 2, 4]
        assert table.get("Simple RBAC", "server", 2).completed

    def test_completed_and_failed(self, table):
        """Test the split between measured and failed rows."""
        assert [r.concurrency for r in table.completed()] == [1]
        assert [r.concurrency for r in table.failed()] == [2, 4]
        assert table.has_failures

    def test_configuration_labels(self):
        """Test labels are listed once in first-seen order."""
        table = ResultTable(
            [
                ScenarioResult.measured("op", "wasm", 1, 4, STATS),
                ScenarioResult.measured("op", "rego", 1, 4, STATS),
                ScenarioResult.measured("op", "wasm", 2, 4, STATS),
            ]
        )

        assert table.configuration_labels() == ["wasm", "rego"]

    def test_empty_table_dataframe(self):
        """Test that an empty table still has the full header."""
        df = ResultTable().to_dataframe()

        assert df.empty
        assert list(df.columns) == RESULT_COLUMNS
