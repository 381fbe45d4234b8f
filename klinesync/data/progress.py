"""Line-oriented progress output for long-running passes.

Each phase prints lines of the form

    Ingesting windows: 12.34% complete
    Reconciling boundaries: 100.00% complete

to stdout.  Output is plain text so it survives pipes and CI logs; lines
are throttled to one per ``min_step`` percentage points, and the final
100% line is always written.
"""
from __future__ import annotations

import sys
import time
from typing import TextIO


def _fmt_duration(seconds: float) -> str:
    s = int(seconds)
    if s < 60:
        return f"{s}s"
    return f"{s // 60}m {s % 60:02d}s"


class ProgressReporter:
    """Percentage reporter for one phase at a time."""

    def __init__(self, stream: TextIO | None = None, min_step: float = 1.0) -> None:
        self._stream   = stream
        self._min_step = min_step
        self._phase    = ""
        self._total    = 0
        self._done     = 0
        self._last_pct = -1.0
        self._start_ts = 0.0

    def _write(self, text: str) -> None:
        stream = self._stream or sys.stdout
        stream.write(text + "\n")
        stream.flush()

    def begin(self, phase: str, total: int) -> None:
        self._phase    = phase
        self._total    = max(0, total)
        self._done     = 0
        self._last_pct = -1.0
        self._start_ts = time.monotonic()

    def advance(self, n: int = 1) -> None:
        self._done = min(self._total, self._done + n)
        pct = 100.0 if self._total == 0 else self._done * 100.0 / self._total
        if pct >= 100.0 or pct - self._last_pct >= self._min_step:
            self._last_pct = pct
            self._write(f"{self._phase}: {pct:.2f}% complete")

    def finish(self, summary: str = "") -> None:
        elapsed = _fmt_duration(time.monotonic() - self._start_ts)
        line = f"{self._phase}: done ({elapsed})"
        if summary:
            line += f"  {summary}"
        self._write(line)


class NullProgress(ProgressReporter):
    """Reporter that discards everything (HTTP-triggered runs, tests)."""

    def _write(self, text: str) -> None:
        pass
