"""Thread-safe progress accounting for batch operations."""

from __future__ import annotations

import threading
from typing import Callable


class ProgressReporter:
    """Counts planned and completed steps.

    Workers call ``progress`` concurrently; the optional callback receives
    ``(steps_done, steps_total)`` and may run on any worker thread.
    """

    def __init__(self, callback: Callable[[int, int], None] | None = None):
        self._callback = callback
        self._lock = threading.Lock()
        self._steps_total = 0
        self._steps_done = 0

    @property
    def steps_total(self) -> int:
        return self._steps_total

    @property
    def steps_done(self) -> int:
        return self._steps_done

    def add_steps_to_do(self, steps: int) -> None:
        with self._lock:
            self._steps_total += steps

    def progress(self, steps: int = 1) -> None:
        with self._lock:
            self._steps_done += steps
            done, total = self._steps_done, self._steps_total
        if self._callback is not None:
            self._callback(done, total)

    def reset(self) -> None:
        with self._lock:
            self._steps_total = 0
            self._steps_done = 0
