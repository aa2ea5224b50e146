from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Sequence

from .errors import EmptySampleSetError
from .recorder import SampleSet

MIN_WALL_DURATION_S = 0.001


@dataclass(frozen=True)
class Statistics:
    count: int
    failed: int
    sum_ms: float
    mean_ms: float
    min_ms: float
    max_ms: float
    p50_ms: float
    p95_ms: float
    p99_ms: float
    wall_duration_s: float
    throughput_ops_per_s: float

    @property
    def error_rate(self) -> float:
        return self.failed / self.count

    def as_dict(self) -> dict[str, float]:
        return asdict(self)


def nearest_rank(sorted_values: Sequence[float], percentile: float) -> float:
    """Return the nearest-rank percentile of an ascending sequence.

    The 1-indexed rank is ``ceil(n * p / 100)`` clamped to ``[1, n]``.
    """

    count = len(sorted_values)
    if count == 0:
        raise EmptySampleSetError("cannot compute a percentile of an empty sample set")
    if not 0 <= percentile <= 100:
        raise ValueError(f"percentile must be within [0, 100], got {percentile}")
    rank = math.ceil(count * percentile / 100)
    rank = min(max(rank, 1), count)
    return sorted_values[rank - 1]


def analyze(
    samples: SampleSet,
    wall_duration_s: float,
    dispatched: int | None = None,
) -> Statistics:
    """Summarise a frozen sample set.

    Failed samples take part in every latency figure. Throughput divides the
    dispatched operation count by the measured wall-clock duration, not by the
    sum of sample latencies.
    """

    if samples.count == 0:
        raise EmptySampleSetError("no samples were recorded for this phase")

    ordered = sorted(samples.elapsed_ms())
    total_ms = math.fsum(ordered)
    wall_s = max(wall_duration_s, MIN_WALL_DURATION_S)
    operations = samples.dispatched if dispatched is None else dispatched

    return Statistics(
        count=len(ordered),
        failed=samples.failed,
        sum_ms=total_ms,
        mean_ms=total_ms / len(ordered),
        min_ms=ordered[0],
        max_ms=ordered[-1],
        p50_ms=nearest_rank(ordered, 50),
        p95_ms=nearest_rank(ordered, 95),
        p99_ms=nearest_rank(ordered, 99),
        wall_duration_s=wall_s,
        throughput_ops_per_s=operations / wall_s,
    )


__all__ = ["MIN_WALL_DURATION_S", "Statistics", "analyze", "nearest_rank"]
