from __future__ import annotations

import itertools
import logging
import threading
import time
from dataclasses import dataclass, field

from ..operations import Invoker, OperationSpec
from .errors import WorkerCrashed
from .recorder import LatencyRecorder, Sample

LOGGER = logging.getLogger("svcbench.benchmark.pool")


def split_iterations(total_iterations: int, concurrency: int) -> list[int]:
    """Deterministic even split; the first ``total % concurrency`` workers get one extra."""

    if concurrency < 1:
        raise ValueError("concurrency must be >= 1")
    if total_iterations < 0:
        raise ValueError("total_iterations must be >= 0")
    base, remainder = divmod(total_iterations, concurrency)
    return [base + 1 if index < remainder else base for index in range(concurrency)]


@dataclass
class PoolRun:
    dispatched: int
    started_at: float
    finished_at: float
    shares: list[int] = field(default_factory=list)
    timed_out: bool = False
    abandoned_workers: int = 0

    @property
    def duration_s(self) -> float:
        return max(self.finished_at - self.started_at, 0.0)

    @property
    def throughput_per_s(self) -> float:
        if self.duration_s == 0:
            return 0.0
        return self.dispatched / self.duration_s


class WorkerPool:
    """Runs a fixed iteration budget across parallel OS threads.

    Every worker issues its share sequentially and records one sample per
    invocation. ``run`` blocks on a join of all workers. When a wall-clock
    budget is given and exceeded, workers are told to stop after their current
    invocation, given ``grace_s`` to comply, and abandoned afterwards.
    """

    def __init__(
        self,
        concurrency: int,
        invoker: Invoker,
        recorder: LatencyRecorder,
        grace_s: float = 5.0,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self._concurrency = concurrency
        self._invoker = invoker
        self._recorder = recorder
        self._grace_s = grace_s
        self._stop_event = threading.Event()
        self._errors: list[BaseException] = []
        self._errors_lock = threading.Lock()

    @property
    def concurrency(self) -> int:
        return self._concurrency

    def run(
        self,
        total_iterations: int,
        operation: OperationSpec,
        timeout_s: float | None = None,
    ) -> PoolRun:
        shares = split_iterations(total_iterations, self._concurrency)
        offsets = [0, *itertools.accumulate(shares)][:-1]
        dispatched = [0] * len(shares)

        threads = [
            threading.Thread(
                target=self._work,
                args=(index, share, offset, operation, dispatched),
                name=f"bench-worker-{index}",
                daemon=True,
            )
            for index, (share, offset) in enumerate(zip(shares, offsets))
            if share > 0
        ]
        LOGGER.debug(
            "Dispatching %d iterations of %s across %d workers: %s",
            total_iterations,
            operation.name,
            len(threads),
            shares,
        )

        started_at = time.perf_counter()
        for thread in threads:
            thread.start()

        deadline = None if timeout_s is None else started_at + timeout_s
        timed_out = not _join_all(threads, deadline)
        if timed_out:
            LOGGER.warning(
                "Scenario budget of %.1fs exceeded; stopping workers (grace %.1fs)",
                timeout_s,
                self._grace_s,
            )
            self._stop_event.set()
            _join_all(threads, time.perf_counter() + self._grace_s)
        finished_at = time.perf_counter()

        abandoned = sum(1 for thread in threads if thread.is_alive())
        if abandoned:
            LOGGER.warning("Abandoned %d worker(s) still blocked in an invocation", abandoned)

        with self._errors_lock:
            errors = list(self._errors)
        if errors:
            raise WorkerCrashed(
                f"{len(errors)} worker(s) raised: {errors[0]!r}"
            ) from errors[0]

        return PoolRun(
            dispatched=sum(dispatched),
            started_at=started_at,
            finished_at=finished_at,
            shares=shares,
            timed_out=timed_out,
            abandoned_workers=abandoned,
        )

    def stop(self) -> None:
        self._stop_event.set()

    def _work(
        self,
        index: int,
        share: int,
        offset: int,
        operation: OperationSpec,
        dispatched: list[int],
    ) -> None:
        try:
            for iteration in range(share):
                if self._stop_event.is_set():
                    return
                dispatched[index] += 1
                result = self._invoker.invoke(operation)
                self._recorder.record(
                    Sample(
                        elapsed_ms=result.elapsed_ms,
                        ok=result.ok,
                        sequence_hint=offset + iteration,
                    )
                )
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Worker %d failed", index)
            with self._errors_lock:
                self._errors.append(exc)


def _join_all(threads: list[threading.Thread], deadline: float | None) -> bool:
    for thread in threads:
        if deadline is None:
            thread.join()
            continue
        remaining = deadline - time.perf_counter()
        if remaining <= 0:
            break
        thread.join(timeout=remaining)
    return not any(thread.is_alive() for thread in threads)


__all__ = ["PoolRun", "WorkerPool", "split_iterations"]
