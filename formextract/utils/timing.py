"""
Lightweight helpers for measuring per-stage timings of an extraction run.

Stage timers accumulate elapsed wall-clock seconds per named stage so that
the orchestrator can report durations in the run analytics.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Dict


class StageTimers:
    """
    Accumulate elapsed time per logical stage name.

    Use `timer(name)` as a context manager around stage blocks;
    each exit adds the elapsed seconds to `totals[name]`.
    """

    def __init__(self) -> None:
        self.totals: Dict[str, float] = {}

    @contextmanager
    def timer(self, name: str):
        """
        Measure and accumulate elapsed time for the given stage name.

        Args:
          name: Logical stage identifier (e.g. "plan", "extract" or "merge").
        """
        start_time = time.perf_counter()
        try:
            yield
        finally:
            elapsed_time = time.perf_counter() - start_time
            self.totals[name] = self.totals.get(name, 0.0) + elapsed_time

    def rounded(self, digits: int = 4) -> Dict[str, float]:
        return {name: round(seconds, digits) for name, seconds in self.totals.items()}


def elapsed_ms(start: float) -> int:
    """Milliseconds since a `time.perf_counter()` reading."""
    return int((time.perf_counter() - start) * 1000)
