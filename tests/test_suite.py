"""
Unit tests for the suite runner.
"""

from unittest.mock import MagicMock, patch

from docker.errors import DockerException

from svcbench.benchmarks.config import SuiteConfig, TargetVariant
from svcbench.benchmarks.results import FailureKind, ResultTable
from svcbench.benchmarks.suite import SuiteRunner, exit_status
from svcbench.operations import OperationSpec

from conftest import CountingCallable, ScriptedTarget, callable_factory


def make_config(labels, concurrency_levels=(1, 2)):
    return SuiteConfig(
        operations=[OperationSpec(name="noop", kind="callable")],
        concurrency_levels=list(concurrency_levels),
        targets=[TargetVariant(label=label, kind="local") for label in labels],
        iterations=10,
        warmup_iterations=1,
        scenario_timeout_s=None,
    ).validate()


class TestSuiteRunner:
    """Test cases for SuiteRunner."""

    def test_one_failing_target_does_not_abort(self):
        """Test that an unreachable configuration yields failed rows and the rest run."""
        targets = {
            "a": ScriptedTarget("a"),
            "b": ScriptedTarget("b", ready=False),
            "c": ScriptedTarget("c"),
        }
        runner = SuiteRunner(
            make_config(["a", "b", "c"], concurrency_levels=[1]),
            invoker_factory=callable_factory(CountingCallable()),
            targets=targets,
        )

        table = runner.run()

        assert len(table) == 3
        assert [r.configuration_label for r in table.completed()] == ["a", "c"]
        failed = table.failed()
        assert len(failed) == 1
        assert failed[0].configuration_label == "b"
        assert failed[0].failure_kind is FailureKind.TARGET_UNAVAILABLE
        assert exit_status(table) == 1

    def test_rows_in_declared_order(self):
        """Test that scenarios run operation-major, then concurrency, then target."""
        runner = SuiteRunner(
            make_config(["x", "y"], concurrency_levels=[1, 4]),
            invoker_factory=callable_factory(CountingCallable()),
        )

        table = runner.run()

        assert [(r.concurrency, r.configuration_label) for r in table] == [
            (1, "x"),
            (1, "y"),
            (4, "x"),
            (4, "y"),
        ]
        assert exit_status(table) == 0

    def test_targets_reused_per_label(self):
        """Test that each configuration label builds its target once."""
        runner = SuiteRunner(make_config(["x"], concurrency_levels=[1, 2, 4]))

        scenarios = runner.scenarios()

        assert len({id(s.target) for s in scenarios}) == 1

    def test_callback_receives_every_result(self):
        """Test that on_result is called once per scenario."""
        seen = []
        runner = SuiteRunner(
            make_config(["x"]),
            invoker_factory=callable_factory(CountingCallable()),
            on_result=lambda scenario, result: seen.append((scenario.name, result.key)),
        )

        runner.run()

        assert [key for _, key in seen] == [("noop", "x", 1), ("noop", "x", 2)]

    def test_run_into_existing_table(self):
        """Test that rerunning into a table replaces rows with the same key."""
        table = ResultTable()
        runner = SuiteRunner(
            make_config(["x"]),
            invoker_factory=callable_factory(CountingCallable()),
        )

        runner.run(table)
        runner.run(table)

        assert len(table) == 2

    def test_docker_daemon_down_does_not_abort(self):
        """Test that an unreachable Docker daemon fails only the docker configuration."""
        config = SuiteConfig(
            operations=[OperationSpec(name="noop", kind="callable")],
            concurrency_levels=[1],
            targets=[
                TargetVariant(label="a", kind="local"),
                TargetVariant(
                    label="d", kind="docker", endpoint="http://localhost:8181", image="img"
                ),
                TargetVariant(label="c", kind="local"),
            ],
            iterations=5,
            warmup_iterations=0,
            scenario_timeout_s=None,
        ).validate()
        runner = SuiteRunner(config, invoker_factory=callable_factory(CountingCallable()))

        with patch(
            "svcbench.benchmarks.targets.docker.from_env",
            side_effect=DockerException("daemon down"),
        ):
            table = runner.run()

        assert len(table) == 3
        assert [r.configuration_label for r in table.completed()] == ["a", "c"]
        (failed,) = table.failed()
        assert failed.configuration_label == "d"
        assert failed.failure_kind is FailureKind.TARGET_UNAVAILABLE
        assert "daemon down" in failed.reason
        assert exit_status(table) == 1

    def test_profile_settings_reach_scenarios(self, tmp_path):
        """Test that per-target profile URLs and the profile directory are wired through."""
        urls = {"heap": "http://localhost:8282/debug/pprof/heap"}
        config = SuiteConfig(
            operations=[OperationSpec(name="noop", kind="callable")],
            concurrency_levels=[1],
            targets=[
                TargetVariant(label="x", kind="local", profile_urls=urls),
                TargetVariant(label="y", kind="local"),
            ],
            iterations=3,
            warmup_iterations=0,
            profile_timeout_s=7.0,
        ).validate()
        runner = SuiteRunner(
            config,
            invoker_factory=callable_factory(CountingCallable()),
            profile_dir=tmp_path,
        )

        x, y = runner.scenarios()
        assert x.profile_urls == urls
        assert x.profile_timeout_s == 7.0
        assert y.profile_urls == {}

        response = MagicMock(content=b"heap-profile")
        with patch("svcbench.benchmarks.profiles.requests.get", return_value=response) as get:
            runner.run()

        get.assert_called_once_with(urls["heap"], timeout=7.0)
        assert (tmp_path / "noop__x__c1" / "heap.pprof").read_bytes() == b"heap-profile"
