from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import os
import sys
from pathlib import Path

from .charts import render_charts
from .compare import Delta, compare, compare_configurations, scaling_efficiency
from .config import DEFAULT_TARGET_URL, SuiteConfig, default_suite_config, load_suite_config
from .errors import ConfigError
from .orchestrator import Scenario
from .reporting import (
    DEFAULT_LOG_NAME,
    close_logger,
    configure_logger,
    format_deltas,
    format_result,
    format_scaling,
    format_table,
)
from .results import ResultTable, ScenarioResult
from .suite import SuiteRunner, exit_status

LOGGER = logging.getLogger("svcbench.benchmark")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Service benchmark harness")
    parser.add_argument(
        "--plan-path",
        default=os.environ.get("BENCHMARK_PLAN_PATH"),
        help="Optional JSON file describing the suite (operations, targets, concurrency)",
    )
    parser.add_argument(
        "--target-url",
        default=os.environ.get("BENCHMARK_TARGET_URL", DEFAULT_TARGET_URL),
        help="Endpoint of an already running target for the built-in suite",
    )
    parser.add_argument(
        "--iterations",
        type=int,
        default=_env_int("BENCHMARK_ITERATIONS"),
        help="Timed operations per scenario",
    )
    parser.add_argument(
        "--warmup",
        type=int,
        default=_env_int("BENCHMARK_WARMUP"),
        help="Untimed warmup operations per scenario",
    )
    parser.add_argument(
        "--concurrency",
        default=os.environ.get("BENCHMARK_CONCURRENCY"),
        help="Comma-separated list of concurrency levels, e.g. 1,2,4,8",
    )
    parser.add_argument(
        "--call-timeout",
        type=float,
        default=_env_float("BENCHMARK_CALL_TIMEOUT"),
        help="Per-operation timeout in seconds",
    )
    parser.add_argument(
        "--scenario-timeout",
        type=float,
        default=_env_float("BENCHMARK_SCENARIO_TIMEOUT"),
        help="Wall-clock budget of one timed phase in seconds",
    )
    parser.add_argument(
        "--output-dir",
        default=os.environ.get("BENCHMARK_OUTPUT_DIR", "benchmark-results"),
        help="Directory to store benchmark artefacts (CSV, charts, manifest, log)",
    )
    parser.add_argument(
        "--baseline",
        default=os.environ.get("BENCHMARK_BASELINE_PATH"),
        help="Results CSV of a previous run to compare this run against",
    )
    parser.add_argument(
        "--compare-modes",
        default=os.environ.get("BENCHMARK_COMPARE_MODES"),
        help="Comma-separated configuration labels; the first is the baseline",
    )
    parser.add_argument(
        "--raw-samples",
        action="store_true",
        help="Write the raw samples of every scenario to CSV",
    )
    parser.add_argument(
        "--no-charts",
        action="store_true",
        help="Skip chart rendering",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only print the planned scenarios without executing them",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("BENCHMARK_LOG_LEVEL", "INFO"),
        help="Logging level",
    )
    return parser.parse_args(argv)


def load_plan(args: argparse.Namespace) -> SuiteConfig:
    if args.plan_path:
        config = load_suite_config(args.plan_path)
    else:
        config = default_suite_config(args.target_url)

    overrides: dict[str, object] = {}
    if args.iterations is not None:
        overrides["iterations"] = args.iterations
    if args.warmup is not None:
        overrides["warmup_iterations"] = args.warmup
    if args.call_timeout is not None:
        overrides["call_timeout_s"] = args.call_timeout
    if args.scenario_timeout is not None:
        overrides["scenario_timeout_s"] = args.scenario_timeout
    if args.concurrency:
        overrides["concurrency_levels"] = parse_concurrency(args.concurrency)
    if not overrides:
        return config
    return dataclasses.replace(config, **overrides).validate()


def parse_concurrency(raw: str) -> list[int]:
    try:
        levels = [int(item) for item in raw.split(",") if item.strip()]
    except ValueError as exc:
        raise ConfigError(f"invalid concurrency list {raw!r}") from exc
    if not levels:
        raise ConfigError("no concurrency levels given")
    return levels


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)

    try:
        plan = load_plan(args)
    except ConfigError as exc:
        LOGGER.error("Invalid benchmark plan: %s", exc)
        return 2

    if args.dry_run:
        _print_plan(plan)
        return 0

    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    LOGGER.info("Benchmark output directory: %s", output_dir)

    results_logger = configure_logger(output_dir / DEFAULT_LOG_NAME)
    profiles: list[dict[str, object]] = []
    runner = SuiteRunner(
        plan,
        on_result=lambda scenario, result: _on_result(
            scenario, result, runner, results_logger, output_dir, args.raw_samples, profiles
        ),
        profile_dir=output_dir / "profiles",
    )
    try:
        table = runner.run()
    finally:
        close_logger(results_logger)

    results_path = table.write_csv(output_dir / "results.csv")
    LOGGER.info("Results written to %s (%d rows)", results_path, len(table))
    print(format_table(table))

    manifest: dict[str, object] = {
        "results": str(results_path),
        "failed": [
            {
                "name": result.operation_name,
                "mode": result.configuration_label,
                "concurrency": result.concurrency,
                "failure_kind": result.failure_kind.value if result.failure_kind else None,
                "reason": result.reason,
            }
            for result in table.failed()
        ],
    }

    scaling = scaling_efficiency(table)
    print()
    print(format_scaling(scaling))
    manifest["scaling"] = [dataclasses.asdict(entry) for entry in scaling]

    comparisons = _run_comparisons(args, table)
    if comparisons:
        manifest["comparisons"] = comparisons

    if profiles:
        manifest["profiles"] = profiles

    if not args.no_charts:
        manifest["charts"] = [str(path) for path in render_charts(table, output_dir)]

    manifest_path = output_dir / "benchmark_manifest.json"
    with open(manifest_path, "w", encoding="utf-8") as f:
        json.dump(manifest, f, indent=2)
    LOGGER.info("Benchmark manifest written to %s", manifest_path)
    return exit_status(table)


def cli() -> None:
    sys.exit(main())


def _on_result(
    scenario: Scenario,
    result: ScenarioResult,
    runner: SuiteRunner,
    results_logger: logging.Logger,
    output_dir: Path,
    raw_samples: bool,
    profiles: list[dict[str, object]],
) -> None:
    results_logger.info(format_result(result))
    if runner.orchestrator.last_profiles:
        profiles.append(
            {
                "name": result.operation_name,
                "mode": result.configuration_label,
                "concurrency": result.concurrency,
                "files": [str(path) for path in runner.orchestrator.last_profiles],
            }
        )
    samples = runner.orchestrator.last_samples
    if not raw_samples or samples is None:
        return
    path = output_dir / "samples" / f"{scenario.slug}.csv"
    path.parent.mkdir(parents=True, exist_ok=True)
    samples.to_dataframe().to_csv(path, index=False)
    LOGGER.info("Saved %d raw samples of %s to %s", samples.count, scenario.name, path)


def _run_comparisons(args: argparse.Namespace, table: ResultTable) -> dict[str, object]:
    comparisons: dict[str, object] = {}
    if args.baseline:
        comparisons.update(_compare_with_baseline(Path(args.baseline), table))
    if args.compare_modes:
        labels = [label.strip() for label in args.compare_modes.split(",") if label.strip()]
        comparisons.update(_compare_modes(labels, table))
    return comparisons


def _compare_with_baseline(path: Path, table: ResultTable) -> dict[str, object]:
    try:
        baseline = ResultTable.read_csv(path)
    except (OSError, ValueError) as exc:
        LOGGER.warning("Cannot load baseline %s: %s", path, exc)
        return {}
    comparisons: dict[str, object] = {}
    for label in table.configuration_labels():
        deltas = compare(baseline, table, baseline_label=label, candidate_label=label)
        print()
        print(format_deltas(deltas, f"{label} against baseline {path}:"))
        comparisons[f"{label}_vs_baseline"] = [_delta_dict(delta) for delta in deltas]
    return comparisons


def _compare_modes(labels: list[str], table: ResultTable) -> dict[str, object]:
    if len(labels) < 2:
        LOGGER.warning("--compare-modes needs a baseline and at least one candidate")
        return {}
    try:
        by_mode = compare_configurations(table, labels[0], labels[1:])
    except ValueError as exc:
        LOGGER.warning("Cannot compare modes: %s", exc)
        return {}
    comparisons: dict[str, object] = {}
    for label, deltas in by_mode.items():
        print()
        print(format_deltas(deltas, f"{label} vs {labels[0]}:"))
        comparisons[f"{label}_vs_{labels[0]}"] = [_delta_dict(delta) for delta in deltas]
    return comparisons


def _delta_dict(delta: Delta) -> dict[str, object]:
    data = dataclasses.asdict(delta)
    data["status"] = delta.status.value
    return data


def _print_plan(plan: SuiteConfig) -> None:
    print(
        f"Suite: {plan.iterations} iterations, {plan.warmup_iterations} warmup, "
        f"call timeout {plan.call_timeout_s}s, scenario timeout {plan.scenario_timeout_s}s"
    )
    for operation, concurrency, target in plan.combinations():
        print(
            f"  - {operation.name}: mode={target.label} ({target.kind}), "
            f"concurrency={concurrency}"
        )


def _env_int(name: str) -> int | None:
    return _env_number(name, int)


def _env_float(name: str) -> float | None:
    return _env_number(name, float)


def _env_number(name, convert):
    value = os.environ.get(name)
    if not value:
        return None
    try:
        return convert(value)
    except ValueError:
        print(f"invalid {name} value {value!r}; defaulting to the plan value", file=sys.stderr)
        return None


if __name__ == "__main__":
    sys.exit(main())
