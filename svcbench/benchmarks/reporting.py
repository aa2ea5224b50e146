from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

from .compare import Delta, Scaling
from .results import ResultTable, ScenarioResult

DEFAULT_LOG_NAME = "benchmark.log"

MEASURED_HEADER = (
    f"{'Operation':<28} {'Mode':<12} {'Conc':>5} {'Iter':>7} {'Ops/s':>10} "
    f"{'Mean':>9} {'P50':>9} {'P95':>9} {'P99':>9} {'Min':>9} {'Max':>9} {'Failed':>7}"
)


def configure_logger(log_path: Path) -> logging.Logger:
    log_path.parent.mkdir(parents=True, exist_ok=True)
    logger = logging.getLogger("svcbench.results")
    logger.setLevel(logging.INFO)
    logger.propagate = False

    handler = logging.FileHandler(log_path, mode="w", encoding="utf-8")
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(message)s")
    handler.setFormatter(formatter)

    logger.handlers.clear()
    logger.addHandler(handler)
    return logger


def close_logger(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


def format_result(result: ScenarioResult) -> str:
    lines = [
        f"scenario {result.operation_name!r} mode={result.configuration_label} "
        f"concurrency={result.concurrency} iterations={result.iterations}"
    ]
    lines.append(f"  status: {result.status.value}")
    if result.failure_kind is not None:
        lines.append(f"  failure: {result.failure_kind.value}")
    if result.reason:
        lines.append(f"  reason: {result.reason}")

    stats = result.statistics
    if stats is None:
        return "\n".join(lines)
    if not result.completed:
        lines.append("  partial statistics (not comparable):")
        indent = "    "
    else:
        indent = "  "
    lines.append(f"{indent}duration_s: {stats.wall_duration_s:.3f}")
    lines.append(f"{indent}throughput_ops_per_s: {stats.throughput_ops_per_s:.2f}")
    lines.append(f"{indent}samples: {stats.count} ({stats.failed} failed)")
    lines.append(
        f"{indent}latency_ms: mean={stats.mean_ms:.2f} min={stats.min_ms:.2f} "
        f"max={stats.max_ms:.2f}"
    )
    lines.append(
        f"{indent}percentiles_ms: p50={stats.p50_ms:.2f} p95={stats.p95_ms:.2f} "
        f"p99={stats.p99_ms:.2f}"
    )
    return "\n".join(lines)


def format_table(table: ResultTable) -> str:
    """Measured rows first, failed rows with reasons after; failed rows carry no numbers."""

    lines = ["Measured scenarios:"]
    measured = table.completed()
    if not measured:
        lines.append("  <none>")
    else:
        lines.append(MEASURED_HEADER)
        for result in measured:
            stats = result.statistics
            lines.append(
                f"{_clip(result.operation_name, 28):<28} {_clip(result.configuration_label, 12):<12} "
                f"{result.concurrency:>5} {result.iterations:>7} "
                f"{stats.throughput_ops_per_s:>10.2f} {stats.mean_ms:>9.2f} "
                f"{stats.p50_ms:>9.2f} {stats.p95_ms:>9.2f} {stats.p99_ms:>9.2f} "
                f"{stats.min_ms:>9.2f} {stats.max_ms:>9.2f} {stats.failed:>7}"
            )

    failed = table.failed()
    if failed:
        lines.append("")
        lines.append("Failed scenarios:")
        for result in failed:
            kind = result.failure_kind.value if result.failure_kind else "unknown"
            lines.append(
                f"  {result.operation_name} mode={result.configuration_label} "
                f"concurrency={result.concurrency}: {kind}: {result.reason}"
            )
    return "\n".join(lines)


def format_deltas(deltas: Iterable[Delta], title: str) -> str:
    lines = [title]
    for delta in deltas:
        prefix = f"  {delta.operation_name} x{delta.concurrency}"
        if not delta.comparable:
            lines.append(f"{prefix}: {delta.note}")
            continue
        direction = "lower" if delta.latency_delta_pct >= 0 else "higher"
        lines.append(
            f"{prefix} ({delta.candidate_label} vs {delta.baseline_label}): "
            f"{delta.throughput_ratio:.2f}x throughput, "
            f"{abs(delta.latency_delta_pct):.1f}% {direction} mean latency"
        )
    if len(lines) == 1:
        lines.append("  <empty>")
    return "\n".join(lines)


def format_scaling(scaling: Iterable[Scaling]) -> str:
    lines = ["Concurrency scaling:"]
    for entry in scaling:
        lines.append(
            f"  {entry.operation_name} [{entry.configuration_label}] "
            f"x{entry.concurrency} vs x{entry.base_concurrency}: "
            f"{entry.speedup:.2f}x speedup ({entry.efficiency_pct:.1f}% efficiency)"
        )
    if len(lines) == 1:
        lines.append("  <empty>")
    return "\n".join(lines)


def _clip(value: str, width: int) -> str:
    return value if len(value) <= width else value[: width - 1] + "~"


__all__ = [
    "DEFAULT_LOG_NAME",
    "close_logger",
    "configure_logger",
    "format_deltas",
    "format_result",
    "format_scaling",
    "format_table",
]
