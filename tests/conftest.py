"""
Shared fixtures for the harness tests.

Every fixture here is in-process: targets are scripted, operations are
callables, nothing talks to a network or a Docker daemon.
"""

import threading
import time

import pytest

from svcbench.benchmarks.targets import Target, TargetHandle
from svcbench.operations import CallableInvoker, OperationSpec


class ScriptedTarget(Target):
    """Target whose readiness and liveness are controlled by the test."""

    def __init__(self, label="scripted", ready=True, endpoint="http://scripted.test"):
        super().__init__(label, readiness_attempts=3, readiness_interval_s=0.0)
        self.ready = ready
        self.alive = True
        self.endpoint = endpoint
        self.starts = 0
        self.stops = 0

    def _start(self):
        self.starts += 1
        return TargetHandle(
            label=self.label,
            endpoint=self.endpoint,
            probe=lambda: self.ready,
            alive=lambda: self.alive,
        )

    def _stop(self, handle):
        self.stops += 1


class CountingCallable:
    """Thread-safe in-process operation with an optional sleep and outcome."""

    def __init__(self, outcome=True, delay_s=0.0):
        self.outcome = outcome
        self.delay_s = delay_s
        self.calls = 0
        self._lock = threading.Lock()

    def __call__(self, operation):
        with self._lock:
            self.calls += 1
        if self.delay_s:
            time.sleep(self.delay_s)
        return self.outcome


@pytest.fixture
def operation():
    """A callable-kind operation."""
    return OperationSpec(name="noop", kind="callable")


@pytest.fixture
def counting_callable():
    return CountingCallable()


@pytest.fixture
def invoker(counting_callable):
    return CallableInvoker(counting_callable)


@pytest.fixture
def scripted_target():
    return ScriptedTarget()


def callable_factory(func):
    """Invoker factory that binds every operation to ``func``."""

    def factory(operation, handle, call_timeout_s):
        return CallableInvoker(func)

    return factory
