"""
Scenario lifecycle: target readiness, warmup, timed measurement and teardown.

Each scenario walks ``NotStarted -> TargetReady -> WarmedUp -> Measuring ->
Completed``; any failure moves it to ``Failed`` with a reason. The target is
held through a context manager, so it is released on every exit path once it
has been acquired.
"""

from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from ..operations import Invoker, OperationSpec, build_invoker
from .errors import (
    ConfigError,
    HarnessDefect,
    SampleCountMismatch,
    TargetCrashed,
    TargetError,
    WorkerCrashed,
)
from .load import PoolRun, WorkerPool
from .profiles import ProfileCollector
from .recorder import LatencyRecorder, SampleSet
from .results import FailureKind, ScenarioResult
from .stats import Statistics, analyze
from .targets import Target, TargetHandle

LOGGER = logging.getLogger("svcbench.benchmark.orchestrator")

InvokerFactory = Callable[[OperationSpec, TargetHandle, float], Invoker]


class ScenarioState(str, enum.Enum):
    NOT_STARTED = "NotStarted"
    TARGET_READY = "TargetReady"
    WARMED_UP = "WarmedUp"
    MEASURING = "Measuring"
    COMPLETED = "Completed"
    FAILED = "Failed"


@dataclass(frozen=True)
class Scenario:
    operation: OperationSpec
    target: Target
    concurrency: int
    iterations: int
    warmup_iterations: int = 10
    call_timeout_s: float = 5.0
    scenario_timeout_s: float | None = None
    grace_s: float = 5.0
    profile_urls: dict[str, str] = field(default_factory=dict, hash=False)
    profile_timeout_s: float = 60.0

    @property
    def name(self) -> str:
        return f"{self.operation.name} [{self.target.label}] x{self.concurrency}"

    @property
    def slug(self) -> str:
        """Filesystem-safe key used for per-scenario artifacts."""
        raw = f"{self.operation.name}__{self.target.label}__c{self.concurrency}"
        return re.sub(r"[^A-Za-z0-9_.-]+", "_", raw).strip("_")


class ScenarioOrchestrator:
    """Runs one scenario end to end and turns every outcome into a result row."""

    def __init__(
        self,
        invoker_factory: InvokerFactory | None = None,
        profile_dir: Path | None = None,
    ) -> None:
        self._invoker_factory = invoker_factory or _default_invoker_factory
        self._profile_dir = profile_dir
        self.state = ScenarioState.NOT_STARTED
        self.history: list[ScenarioState] = [ScenarioState.NOT_STARTED]
        self.last_samples: SampleSet | None = None
        self.last_profiles: list[Path] = []

    def run(self, scenario: Scenario) -> ScenarioResult:
        self._reset()
        LOGGER.info("Running scenario %s (%d iterations)", scenario.name, scenario.iterations)
        try:
            with scenario.target.acquire() as handle:
                self._transition(ScenarioState.TARGET_READY)
                invoker = self._bind_invoker(scenario, handle)
                try:
                    return self._measure(scenario, handle, invoker)
                finally:
                    invoker.close()
        except TargetCrashed as exc:
            return self._fail(scenario, FailureKind.TARGET_CRASHED, str(exc))
        except TargetError as exc:
            return self._fail(scenario, FailureKind.TARGET_UNAVAILABLE, str(exc))
        except ConfigError as exc:
            return self._fail(scenario, FailureKind.CONFIGURATION, str(exc))
        except HarnessDefect as exc:
            return self._fail(scenario, FailureKind.HARNESS_DEFECT, f"harness defect: {exc}")
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Unexpected error in scenario %s", scenario.name)
            return self._fail(
                scenario,
                FailureKind.HARNESS_DEFECT,
                f"harness defect: unexpected {type(exc).__name__}: {exc}",
            )

    def _bind_invoker(self, scenario: Scenario, handle: TargetHandle) -> Invoker:
        try:
            return self._invoker_factory(scenario.operation, handle, scenario.call_timeout_s)
        except ValueError as exc:
            raise ConfigError(str(exc)) from exc

    def _measure(
        self, scenario: Scenario, handle: TargetHandle, invoker: Invoker
    ) -> ScenarioResult:
        self._warmup(scenario, invoker)
        _ensure_alive(handle, "warmup")
        self._transition(ScenarioState.WARMED_UP)

        recorder = LatencyRecorder()
        pool = WorkerPool(
            concurrency=scenario.concurrency,
            invoker=invoker,
            recorder=recorder,
            grace_s=scenario.grace_s,
        )
        profiler = self._profiler(scenario)
        self._transition(ScenarioState.MEASURING)
        profiler.start()
        try:
            run = pool.run(
                scenario.iterations,
                scenario.operation,
                timeout_s=scenario.scenario_timeout_s,
            )
        finally:
            self.last_profiles = profiler.finish()
        samples = recorder.drain(dispatched=run.dispatched)
        self.last_samples = samples
        _ensure_alive(handle, "measurement")

        if run.timed_out:
            return self._timed_out(scenario, run, samples)
        if samples.count != run.dispatched:
            raise SampleCountMismatch(run.dispatched, samples.count)

        statistics = analyze(samples, run.duration_s)
        if samples.succeeded == 0:
            return self._fail(
                scenario,
                FailureKind.NO_SUCCESSFUL_OPERATIONS,
                f"all {samples.count} operations failed",
                statistics,
            )
        self._transition(ScenarioState.COMPLETED)
        _log_statistics(scenario, statistics)
        return ScenarioResult.measured(
            operation_name=scenario.operation.name,
            configuration_label=scenario.target.label,
            concurrency=scenario.concurrency,
            iterations=scenario.iterations,
            statistics=statistics,
        )

    def _profiler(self, scenario: Scenario) -> ProfileCollector:
        urls = scenario.profile_urls if self._profile_dir is not None else {}
        return ProfileCollector(
            urls,
            (self._profile_dir or Path(".")) / scenario.slug,
            timeout_s=scenario.profile_timeout_s,
        )

    def _warmup(self, scenario: Scenario, invoker: Invoker) -> None:
        if scenario.warmup_iterations <= 0:
            return
        LOGGER.info("Performing %d warmup operations", scenario.warmup_iterations)
        failures = 0
        for _ in range(scenario.warmup_iterations):
            try:
                ok = invoker.invoke(scenario.operation).ok
            except Exception as exc:  # noqa: BLE001
                raise WorkerCrashed(f"invoker raised during warmup: {exc!r}") from exc
            if not ok:
                failures += 1
        if failures:
            LOGGER.info("%d/%d warmup operations failed", failures, scenario.warmup_iterations)

    def _timed_out(
        self, scenario: Scenario, run: PoolRun, samples: SampleSet
    ) -> ScenarioResult:
        reason = (
            f"timeout after {run.duration_s:.1f}s: {samples.count}/{scenario.iterations} "
            f"samples recorded, {samples.missing} in-flight abandoned"
        )
        statistics = analyze(samples, run.duration_s) if samples.count else None
        return self._fail(scenario, FailureKind.TIMEOUT, reason, statistics)

    def _fail(
        self,
        scenario: Scenario,
        kind: FailureKind,
        reason: str,
        statistics: Statistics | None = None,
    ) -> ScenarioResult:
        self._transition(ScenarioState.FAILED)
        LOGGER.warning("Scenario %s failed (%s): %s", scenario.name, kind.value, reason)
        return ScenarioResult.failure(
            operation_name=scenario.operation.name,
            configuration_label=scenario.target.label,
            concurrency=scenario.concurrency,
            iterations=scenario.iterations,
            failure_kind=kind,
            reason=reason,
            statistics=statistics,
        )

    def _reset(self) -> None:
        self.state = ScenarioState.NOT_STARTED
        self.history = [ScenarioState.NOT_STARTED]
        self.last_samples = None
        self.last_profiles = []

    def _transition(self, state: ScenarioState) -> None:
        LOGGER.debug("%s -> %s", self.state.value, state.value)
        self.state = state
        self.history.append(state)


def _default_invoker_factory(
    operation: OperationSpec, handle: TargetHandle, call_timeout_s: float
) -> Invoker:
    return build_invoker(operation, handle.endpoint, timeout_s=call_timeout_s)


def _ensure_alive(handle: TargetHandle, phase: str) -> None:
    if not handle.is_alive():
        raise TargetCrashed(f"target {handle.label!r} stopped during {phase}")


def _log_statistics(scenario: Scenario, statistics: Statistics) -> None:
    LOGGER.info(
        "%s: %.2f ops/s, mean %.2fms, P50 %.2fms, P95 %.2fms, P99 %.2fms, %d failed",
        scenario.name,
        statistics.throughput_ops_per_s,
        statistics.mean_ms,
        statistics.p50_ms,
        statistics.p95_ms,
        statistics.p99_ms,
        statistics.failed,
    )


__all__ = ["Scenario", "ScenarioOrchestrator", "ScenarioState"]
