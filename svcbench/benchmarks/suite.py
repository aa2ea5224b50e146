from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable

from .config import SuiteConfig
from .orchestrator import InvokerFactory, Scenario, ScenarioOrchestrator
from .results import ResultTable, ScenarioResult
from .targets import Target

LOGGER = logging.getLogger("svcbench.benchmark.suite")

ResultCallback = Callable[[Scenario, ScenarioResult], None]


class SuiteRunner:
    """Sweeps operations x concurrency levels x target configurations.

    Scenarios run one after another in the configuration's declared order and
    are collected into a single ``ResultTable``. A failed scenario is recorded
    and the sweep moves on.
    """

    def __init__(
        self,
        config: SuiteConfig,
        invoker_factory: InvokerFactory | None = None,
        targets: dict[str, Target] | None = None,
        on_result: ResultCallback | None = None,
        profile_dir: Path | None = None,
    ) -> None:
        self._config = config
        self._orchestrator = ScenarioOrchestrator(invoker_factory, profile_dir=profile_dir)
        self._targets = dict(targets or {})
        self._on_result = on_result

    @property
    def orchestrator(self) -> ScenarioOrchestrator:
        return self._orchestrator

    def scenarios(self) -> list[Scenario]:
        return [
            Scenario(
                operation=operation,
                target=self._target_for(variant.label, variant.build_target),
                concurrency=concurrency,
                iterations=self._config.iterations,
                warmup_iterations=self._config.warmup_iterations,
                call_timeout_s=self._config.call_timeout_s,
                scenario_timeout_s=self._config.scenario_timeout_s,
                grace_s=self._config.grace_s,
                profile_urls=variant.profile_urls,
                profile_timeout_s=self._config.profile_timeout_s,
            )
            for operation, concurrency, variant in self._config.combinations()
        ]

    def run(self, table: ResultTable | None = None) -> ResultTable:
        table = table if table is not None else ResultTable()
        scenarios = self.scenarios()
        for index, scenario in enumerate(scenarios, start=1):
            LOGGER.info("Scenario %d/%d: %s", index, len(scenarios), scenario.name)
            result = self._orchestrator.run(scenario)
            table.add(result)
            if self._on_result is not None:
                self._on_result(scenario, result)

        failed = table.failed()
        LOGGER.info(
            "Suite finished: %d measured, %d failed", len(table) - len(failed), len(failed)
        )
        return table

    def _target_for(self, label: str, build: Callable[[], Target]) -> Target:
        target = self._targets.get(label)
        if target is None:
            target = build()
            self._targets[label] = target
        return target


def exit_status(table: ResultTable) -> int:
    """Non-zero when any scenario in the table failed."""
    return 1 if table.has_failures else 0


__all__ = ["SuiteRunner", "exit_status"]
