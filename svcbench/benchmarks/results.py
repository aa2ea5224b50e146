from __future__ import annotations

import enum
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

import pandas as pd

from .stats import Statistics

RESULT_COLUMNS = [
    "name",
    "mode",
    "concurrency",
    "iterations",
    "status",
    "failure_kind",
    "reason",
    "duration",
    "throughput",
    "count",
    "failed",
    "sum",
    "mean",
    "p50",
    "p95",
    "p99",
    "min",
    "max",
]

# CSV column -> Statistics field
_STAT_COLUMNS = {
    "duration": "wall_duration_s",
    "throughput": "throughput_ops_per_s",
    "count": "count",
    "failed": "failed",
    "sum": "sum_ms",
    "mean": "mean_ms",
    "p50": "p50_ms",
    "p95": "p95_ms",
    "p99": "p99_ms",
    "min": "min_ms",
    "max": "max_ms",
}


class ScenarioStatus(str, enum.Enum):
    COMPLETED = "completed"
    FAILED = "failed"


class FailureKind(str, enum.Enum):
    TARGET_UNAVAILABLE = "target_unavailable"
    TARGET_CRASHED = "target_crashed"
    HARNESS_DEFECT = "harness_defect"
    TIMEOUT = "timeout"
    NO_SUCCESSFUL_OPERATIONS = "no_successful_operations"
    CONFIGURATION = "configuration"


@dataclass(frozen=True)
class ScenarioResult:
    operation_name: str
    configuration_label: str
    concurrency: int
    iterations: int
    status: ScenarioStatus
    statistics: Statistics | None = None
    failure_kind: FailureKind | None = None
    reason: str | None = None

    @property
    def key(self) -> tuple[str, str, int]:
        return (self.operation_name, self.configuration_label, self.concurrency)

    @property
    def completed(self) -> bool:
        return self.status is ScenarioStatus.COMPLETED

    @classmethod
    def measured(
        cls,
        operation_name: str,
        configuration_label: str,
        concurrency: int,
        iterations: int,
        statistics: Statistics,
    ) -> "ScenarioResult":
        return cls(
            operation_name=operation_name,
            configuration_label=configuration_label,
            concurrency=concurrency,
            iterations=iterations,
            status=ScenarioStatus.COMPLETED,
            statistics=statistics,
        )

    @classmethod
    def failure(
        cls,
        operation_name: str,
        configuration_label: str,
        concurrency: int,
        iterations: int,
        failure_kind: FailureKind,
        reason: str,
        statistics: Statistics | None = None,
    ) -> "ScenarioResult":
        return cls(
            operation_name=operation_name,
            configuration_label=configuration_label,
            concurrency=concurrency,
            iterations=iterations,
            status=ScenarioStatus.FAILED,
            statistics=statistics,
            failure_kind=failure_kind,
            reason=reason,
        )

    def to_row(self) -> dict[str, object]:
        row: dict[str, object] = {
            "name": self.operation_name,
            "mode": self.configuration_label,
            "concurrency": self.concurrency,
            "iterations": self.iterations,
            "status": self.status.value,
            "failure_kind": self.failure_kind.value if self.failure_kind else None,
            "reason": self.reason,
        }
        for column, attribute in _STAT_COLUMNS.items():
            row[column] = (
                getattr(self.statistics, attribute) if self.statistics is not None else None
            )
        return row

    @classmethod
    def from_row(cls, row: dict[str, object]) -> "ScenarioResult":
        statistics = None
        if not _missing(row.get("count")):
            statistics = Statistics(
                **{
                    attribute: _coerce(attribute, row[column])
                    for column, attribute in _STAT_COLUMNS.items()
                }
            )
        failure_kind = row.get("failure_kind")
        reason = row.get("reason")
        return cls(
            operation_name=str(row["name"]),
            configuration_label=str(row["mode"]),
            concurrency=int(row["concurrency"]),
            iterations=int(row["iterations"]),
            status=ScenarioStatus(row["status"]),
            statistics=statistics,
            failure_kind=None if _missing(failure_kind) else FailureKind(failure_kind),
            reason=None if _missing(reason) else str(reason),
        )


class ResultTable:
    """Ordered results keyed by (operation, configuration, concurrency).

    Adding a result for an existing key replaces the previous row in place.
    """

    def __init__(self, results: list[ScenarioResult] | None = None) -> None:
        self._rows: "OrderedDict[tuple[str, str, int], ScenarioResult]" = OrderedDict()
        for result in results or []:
            self.add(result)

    def add(self, result: ScenarioResult) -> None:
        self._rows[result.key] = result

    def get(
        self, operation_name: str, configuration_label: str, concurrency: int
    ) -> ScenarioResult | None:
        return self._rows.get((operation_name, configuration_label, concurrency))

    def __iter__(self) -> Iterator[ScenarioResult]:
        return iter(self._rows.values())

    def __len__(self) -> int:
        return len(self._rows)

    def completed(self) -> list[ScenarioResult]:
        return [result for result in self if result.completed]

    def failed(self) -> list[ScenarioResult]:
        return [result for result in self if not result.completed]

    @property
    def has_failures(self) -> bool:
        return any(not result.completed for result in self)

    def configuration_labels(self) -> list[str]:
        return list(dict.fromkeys(result.configuration_label for result in self))

    def to_dataframe(self) -> pd.DataFrame:
        if not self._rows:
            return pd.DataFrame(columns=RESULT_COLUMNS)
        return pd.DataFrame([result.to_row() for result in self], columns=RESULT_COLUMNS)

    def write_csv(self, path: Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.to_dataframe().to_csv(path, index=False)
        return path

    @classmethod
    def read_csv(cls, path: Path) -> "ResultTable":
        df = pd.read_csv(path)
        missing = [column for column in RESULT_COLUMNS if column not in df.columns]
        if missing:
            raise ValueError(f"{path}: missing result columns {', '.join(missing)}")
        return cls([ScenarioResult.from_row(row) for row in df.to_dict(orient="records")])


def _missing(value: object) -> bool:
    return value is None or (isinstance(value, float) and pd.isna(value))


def _coerce(attribute: str, value: object) -> float | int:
    if attribute in {"count", "failed"}:
        return int(value)
    return float(value)


__all__ = [
    "FailureKind",
    "RESULT_COLUMNS",
    "ResultTable",
    "ScenarioResult",
    "ScenarioStatus",
]
