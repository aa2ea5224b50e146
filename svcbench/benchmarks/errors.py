from __future__ import annotations


class BenchmarkError(Exception):
    """Base class for all harness errors."""


class ConfigError(BenchmarkError, ValueError):
    """Raised when a suite configuration is invalid."""


class TargetError(BenchmarkError):
    """Raised when the service under test misbehaves."""


class TargetUnavailable(TargetError):
    """Raised when a target never becomes ready within its readiness budget."""


class TargetCrashed(TargetError):
    """Raised when a target stops running while a scenario is in progress."""


class HarnessDefect(BenchmarkError):
    """Raised when the harness itself produced an unusable measurement."""


class EmptySampleSetError(HarnessDefect):
    """Raised when statistics are requested for a sample set with no samples."""


class SampleCountMismatch(HarnessDefect):
    """Raised when recorded samples do not match dispatched operations."""

    def __init__(self, dispatched: int, recorded: int) -> None:
        super().__init__(
            f"recorded {recorded} samples for {dispatched} dispatched operations"
        )
        self.dispatched = dispatched
        self.recorded = recorded


class RecorderStateError(HarnessDefect):
    """Raised when a recorder is drained more than once."""


class WorkerCrashed(HarnessDefect):
    """Raised when an invoker raised inside a worker instead of reporting a failure."""


__all__ = [
    "BenchmarkError",
    "ConfigError",
    "EmptySampleSetError",
    "HarnessDefect",
    "RecorderStateError",
    "SampleCountMismatch",
    "TargetCrashed",
    "TargetError",
    "TargetUnavailable",
    "WorkerCrashed",
]
