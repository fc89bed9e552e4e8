"""
Console reporting for long culling runs.

The culler never prints directly; it talks to a reporter with this surface:

    progress(label, current, total)   coarse per-target progress
    clear_progress()                  end of the progress display for a target
    info(msg) / detail(msg)           normal / verbose-only lines
    warning(msg) / error(msg)         per-target problems
    success(msg)                      a target was reduced

Anything implementing those methods can be passed in place of
ConsoleReporter (tests use a recording reporter).
"""
from __future__ import annotations

import time


class ConsoleReporter:
    """Print progress and results to stdout."""

    def __init__(self, verbose: bool = False, min_interval: float = 2.0):
        self.verbose = verbose
        self.min_interval = min_interval
        self._last_print = 0.0
        self._active_label = None

    def progress(self, label: str, current: int, total: int) -> None:
        now = time.perf_counter()
        first = label != self._active_label
        if not first and now - self._last_print < self.min_interval and not self.verbose:
            return
        self._active_label = label
        self._last_print = now
        pct = current / total * 100 if total > 0 else 0.0
        print(f"  [{pct:5.1f}%] {label}: triangle {current}/{total}", flush=True)

    def clear_progress(self) -> None:
        self._active_label = None

    def info(self, msg: str) -> None:
        print(f"  {msg}", flush=True)

    def detail(self, msg: str) -> None:
        if self.verbose:
            print(f"    {msg}", flush=True)

    def warning(self, msg: str) -> None:
        print(f"  ⚠ {msg}", flush=True)

    def error(self, msg: str) -> None:
        print(f"  ✗ {msg}", flush=True)

    def success(self, msg: str) -> None:
        print(f"  ✓ {msg}", flush=True)
