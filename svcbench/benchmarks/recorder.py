from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Iterator

import pandas as pd

from .errors import RecorderStateError

LOGGER = logging.getLogger("svcbench.benchmark.recorder")

SAMPLE_COLUMNS = ["sequence_hint", "elapsed_ms", "ok"]


@dataclass(frozen=True)
class Sample:
    elapsed_ms: float
    ok: bool
    sequence_hint: int


@dataclass(frozen=True)
class SampleSet:
    """Frozen samples of one timed phase, in arrival order."""

    samples: tuple[Sample, ...]
    dispatched: int
    late: int = 0

    def __len__(self) -> int:
        return len(self.samples)

    def __iter__(self) -> Iterator[Sample]:
        return iter(self.samples)

    @property
    def count(self) -> int:
        return len(self.samples)

    @property
    def failed(self) -> int:
        return sum(1 for sample in self.samples if not sample.ok)

    @property
    def succeeded(self) -> int:
        return self.count - self.failed

    @property
    def missing(self) -> int:
        """Dispatched operations that never produced a sample."""
        return max(self.dispatched - self.count, 0)

    def elapsed_ms(self) -> list[float]:
        return [sample.elapsed_ms for sample in self.samples]

    def to_dataframe(self) -> pd.DataFrame:
        if not self.samples:
            return pd.DataFrame(columns=SAMPLE_COLUMNS)
        return pd.DataFrame(
            [
                {
                    "sequence_hint": sample.sequence_hint,
                    "elapsed_ms": sample.elapsed_ms,
                    "ok": sample.ok,
                }
                for sample in self.samples
            ],
            columns=SAMPLE_COLUMNS,
        )


class _WorkerBuffer:
    __slots__ = ("entries", "lock", "closed")

    def __init__(self) -> None:
        self.entries: list[tuple[int, Sample]] = []
        self.lock = threading.Lock()
        self.closed = False


class LatencyRecorder:
    """Concurrency-safe sample sink backed by one buffer per recording thread.

    Each thread appends to its own buffer, guarded by an uncontended lock, so
    writers never share a list. ``drain`` closes every buffer and merges them
    by arrival time. Samples recorded after the drain are counted as late and
    left out of the frozen set.
    """

    def __init__(self) -> None:
        self._local = threading.local()
        self._buffers: list[_WorkerBuffer] = []
        self._registry_lock = threading.Lock()
        self._drained = False
        self._late = 0

    def record(self, sample: Sample) -> None:
        buffer = self._buffer()
        arrived_ns = time.perf_counter_ns()
        with buffer.lock:
            if not buffer.closed:
                buffer.entries.append((arrived_ns, sample))
                return
        with self._registry_lock:
            self._late += 1
        LOGGER.debug("Dropped late sample %d after drain", sample.sequence_hint)

    def drain(self, dispatched: int) -> SampleSet:
        with self._registry_lock:
            if self._drained:
                raise RecorderStateError("recorder has already been drained")
            self._drained = True
            buffers = list(self._buffers)

        entries: list[tuple[int, Sample]] = []
        for buffer in buffers:
            with buffer.lock:
                buffer.closed = True
                entries.extend(buffer.entries)
                buffer.entries = []

        entries.sort(key=lambda entry: entry[0])
        with self._registry_lock:
            late = self._late
        return SampleSet(
            samples=tuple(sample for _, sample in entries),
            dispatched=dispatched,
            late=late,
        )

    @property
    def late(self) -> int:
        with self._registry_lock:
            return self._late

    def _buffer(self) -> _WorkerBuffer:
        buffer = getattr(self._local, "buffer", None)
        if buffer is None:
            buffer = _WorkerBuffer()
            with self._registry_lock:
                if self._drained:
                    buffer.closed = True
                self._buffers.append(buffer)
            self._local.buffer = buffer
        return buffer


__all__ = ["LatencyRecorder", "Sample", "SampleSet"]
