from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Iterable, Sequence

from .results import ResultTable, ScenarioResult

NO_COMPARISON = "no comparison available"

JoinKey = tuple[str, int]


class DeltaStatus(str, enum.Enum):
    COMPARED = "compared"
    NO_COMPARISON = "no_comparison"


@dataclass(frozen=True)
class Delta:
    operation_name: str
    concurrency: int
    status: DeltaStatus
    baseline_label: str | None = None
    candidate_label: str | None = None
    throughput_ratio: float | None = None
    latency_delta_pct: float | None = None
    note: str | None = None

    @property
    def comparable(self) -> bool:
        return self.status is DeltaStatus.COMPARED


@dataclass(frozen=True)
class Scaling:
    operation_name: str
    configuration_label: str
    concurrency: int
    base_concurrency: int
    speedup: float
    efficiency_pct: float


def compare(
    baseline: ResultTable,
    candidate: ResultTable,
    baseline_label: str | None = None,
    candidate_label: str | None = None,
) -> list[Delta]:
    """Join two tables on (operation, concurrency) and compute relative deltas.

    ``throughput_ratio`` is candidate over baseline throughput and
    ``latency_delta_pct`` is the mean latency reduction of the candidate in
    percent of the baseline mean. Keys missing on either side, or whose row
    failed, yield a ``NO_COMPARISON`` delta.
    """

    base_rows = _index(baseline, baseline_label)
    cand_rows = _index(candidate, candidate_label)

    deltas = []
    for key in [*base_rows, *(key for key in cand_rows if key not in base_rows)]:
        deltas.append(_delta(key, base_rows.get(key), cand_rows.get(key)))
    return deltas


def compare_configurations(
    table: ResultTable,
    baseline_label: str,
    candidate_labels: Sequence[str] | None = None,
) -> dict[str, list[Delta]]:
    """Compare configurations measured in the same table, e.g. ``rego`` vs ``wasm``."""

    labels = table.configuration_labels()
    if baseline_label not in labels:
        raise ValueError(f"configuration {baseline_label!r} is not present in the table")
    if candidate_labels is None:
        candidate_labels = [label for label in labels if label != baseline_label]
    return {
        label: compare(table, table, baseline_label=baseline_label, candidate_label=label)
        for label in candidate_labels
    }


def scaling_efficiency(table: ResultTable) -> list[Scaling]:
    """Speedup of each concurrency level over the lowest measured one, per configuration."""

    groups: dict[tuple[str, str], list[ScenarioResult]] = {}
    for result in table.completed():
        groups.setdefault((result.operation_name, result.configuration_label), []).append(
            result
        )

    scaling = []
    for (operation_name, label), results in groups.items():
        results = sorted(results, key=lambda result: result.concurrency)
        base = results[0]
        base_throughput = base.statistics.throughput_ops_per_s
        if base_throughput <= 0:
            continue
        for result in results:
            speedup = result.statistics.throughput_ops_per_s / base_throughput
            relative_workers = result.concurrency / base.concurrency
            scaling.append(
                Scaling(
                    operation_name=operation_name,
                    configuration_label=label,
                    concurrency=result.concurrency,
                    base_concurrency=base.concurrency,
                    speedup=speedup,
                    efficiency_pct=speedup / relative_workers * 100.0,
                )
            )
    return scaling


def _index(table: ResultTable, label: str | None) -> dict[JoinKey, ScenarioResult]:
    rows: dict[JoinKey, ScenarioResult] = {}
    for result in _filter(table, label):
        key = (result.operation_name, result.concurrency)
        if key in rows:
            raise ValueError(
                f"several configurations measured {key[0]!r} at concurrency {key[1]}; "
                "pass a configuration label to compare"
            )
        rows[key] = result
    return rows


def _filter(table: ResultTable, label: str | None) -> Iterable[ScenarioResult]:
    if label is None:
        return iter(table)
    return (result for result in table if result.configuration_label == label)


def _delta(
    key: JoinKey,
    baseline: ScenarioResult | None,
    candidate: ScenarioResult | None,
) -> Delta:
    operation_name, concurrency = key
    baseline_label = baseline.configuration_label if baseline else None
    candidate_label = candidate.configuration_label if candidate else None

    def unavailable(why: str) -> Delta:
        return Delta(
            operation_name=operation_name,
            concurrency=concurrency,
            status=DeltaStatus.NO_COMPARISON,
            baseline_label=baseline_label,
            candidate_label=candidate_label,
            note=f"{NO_COMPARISON}: {why}",
        )

    if baseline is None:
        return unavailable("missing from baseline")
    if candidate is None:
        return unavailable("missing from candidate")
    if not baseline.completed:
        return unavailable(f"baseline failed ({baseline.reason})")
    if not candidate.completed:
        return unavailable(f"candidate failed ({candidate.reason})")

    base_stats, cand_stats = baseline.statistics, candidate.statistics
    if base_stats.throughput_ops_per_s <= 0 or base_stats.mean_ms <= 0:
        return unavailable("baseline has no measurable throughput or latency")

    return Delta(
        operation_name=operation_name,
        concurrency=concurrency,
        status=DeltaStatus.COMPARED,
        baseline_label=baseline_label,
        candidate_label=candidate_label,
        throughput_ratio=cand_stats.throughput_ops_per_s / base_stats.throughput_ops_per_s,
        latency_delta_pct=(base_stats.mean_ms - cand_stats.mean_ms) / base_stats.mean_ms * 100.0,
    )


__all__ = [
    "Delta",
    "DeltaStatus",
    "NO_COMPARISON",
    "Scaling",
    "compare",
    "compare_configurations",
    "scaling_efficiency",
]
