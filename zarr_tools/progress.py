"""Step counting and timing of the read, process and write phases of a job."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class ProgressStats:
    """A snapshot of a job's progress. Durations are in seconds."""

    step: int
    num_steps: int
    read: float = 0.0
    process: float = 0.0
    process_steps: tuple[float, ...] = ()
    write: float = 0.0


ProgressCallback = Callable[[ProgressStats], None]


class Progress:
    """Counts completed steps and accumulates time spent in each phase.

    The callback receives a fresh snapshot on creation and after every step.
    All methods are safe to call from several threads at once.
    """

    def __init__(self, num_steps: int, progress_callback: ProgressCallback) -> None:
        self._callback = progress_callback
        self._num_steps = num_steps
        self._lock = threading.Lock()
        self._step = 0
        self._read = 0.0
        self._process = 0.0
        self._process_steps: list[float] = []
        self._write = 0.0
        self._update()

    @property
    def num_steps(self) -> int:
        return self._num_steps

    @staticmethod
    def _timed(f: Callable[[], T]) -> tuple[T, float]:
        start = time.perf_counter()
        result = f()
        return result, time.perf_counter() - start

    def read(self, f: Callable[[], T]) -> T:
        """Call ``f`` and count its running time as reading."""
        result, elapsed = self._timed(f)
        with self._lock:
            self._read += elapsed
        return result

    def process(self, f: Callable[[], T]) -> T:
        """Call ``f`` and count its running time as processing."""
        result, elapsed = self._timed(f)
        with self._lock:
            self._process += elapsed
        return result

    def process_step(self, step: int, f: Callable[[], T]) -> T:
        """Call ``f`` and count its running time against processing step ``step``."""
        if step < 0:
            raise ValueError(f"process step must be non-negative, got {step}")
        result, elapsed = self._timed(f)
        with self._lock:
            if step >= len(self._process_steps):
                self._process_steps.extend([0.0] * (step + 1 - len(self._process_steps)))
            self._process_steps[step] += elapsed
        return result

    def write(self, f: Callable[[], T]) -> T:
        """Call ``f`` and count its running time as writing."""
        result, elapsed = self._timed(f)
        with self._lock:
            self._write += elapsed
        return result

    def stats(self) -> ProgressStats:
        """Return a snapshot of the current progress."""
        with self._lock:
            return ProgressStats(
                step=self._step,
                num_steps=self._num_steps,
                read=self._read,
                process=self._process,
                process_steps=tuple(self._process_steps),
                write=self._write,
            )

    def _update(self) -> None:
        self._callback(self.stats())

    def next(self) -> None:
        """Mark one step as done and report progress."""
        with self._lock:
            self._step += 1
        self._update()