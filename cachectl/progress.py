from __future__ import annotations

import threading
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Optional

from rich.console import Console
from rich.table import Table

STATUS_EVERY_SECONDS = 10
UNKNOWN = "?"
NO_CONTENT_TYPE = "(none)"


@dataclass(frozen=True)
class RunTotals:
    processed: int
    copied: int
    failed: int
    expected: Optional[int]
    by_status: dict[str, int] = field(default_factory=dict)
    by_content_type: dict[str, int] = field(default_factory=dict)


def format_eta(seconds: Optional[float]) -> str:
    """
    Render remaining time as "2d 3.5h" or "1h 12.0m".
    Unknown estimates render as "?", exhausted ones as "-".
    """
    if seconds is None:
        return UNKNOWN
    if seconds <= 0:
        return "-"
    days = int(seconds // 86400)
    if days > 0:
        hours = (seconds - days * 86400) / 3600
        return f"{days}d {hours:.1f}h"
    hours = int(seconds // 3600)
    minutes = (seconds - hours * 3600) / 60
    return f"{hours}h {minutes:.1f}m"


class ProgressTracker:
    """
    Shared counters for one run.

    Counter updates and the status-line throttle use separate locks so that
    workers bumping a counter never queue behind one that is printing.
    """

    def __init__(
        self,
        expected_total: Optional[int] = None,
        max_objects: Optional[int] = None,
        console: Optional[Console] = None,
        every_seconds: float = STATUS_EVERY_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.expected_total = expected_total
        self.max_objects = max_objects
        self.console = console or Console(highlight=False)
        self._every_seconds = every_seconds
        self._clock = clock
        self._start = clock()
        self._counter_lock = threading.Lock()
        self._status_lock = threading.Lock()
        self._last_shown = 0.0
        self._claimed = 0
        self.processed = 0
        self.copied = 0
        self.failed = 0
        self.by_status: Counter[str] = Counter()
        self.by_content_type: Counter[str] = Counter()

    def claim_write(self) -> bool:
        with self._counter_lock:
            if self.max_objects is not None and self._claimed >= self.max_objects:
                return False
            self._claimed += 1
            return True

    def release_write(self) -> None:
        with self._counter_lock:
            if self._claimed > 0:
                self._claimed -= 1

    def cap_reached(self) -> bool:
        if self.max_objects is None:
            return False
        return self.copied >= self.max_objects

    def record(
        self,
        key: str,
        status: str,
        content_type: Optional[str],
        copied: bool = False,
    ) -> None:
        with self._counter_lock:
            self.processed += 1
            if copied:
                self.copied += 1
            self.by_status[status] += 1
            self.by_content_type[content_type or NO_CONTENT_TYPE] += 1
        self.console.print(status, end="", markup=False, highlight=False)
        self.maybe_show(key)

    def record_failure(self, key: str) -> None:
        with self._counter_lock:
            self.processed += 1
            self.failed += 1
        self.maybe_show(key)

    def elapsed(self) -> float:
        return max(0.0, self._clock() - self._start)

    def rate(self) -> float:
        elapsed = self.elapsed()
        if elapsed <= 0:
            return 0.0
        return self.processed / elapsed

    def eta_seconds(self) -> Optional[float]:
        rate = self.rate()
        if self.expected_total is None or rate <= 0:
            return None
        return (self.expected_total - self.processed) / rate

    def snapshot(self) -> RunTotals:
        with self._counter_lock:
            return RunTotals(
                processed=self.processed,
                copied=self.copied,
                failed=self.failed,
                expected=self.expected_total,
                by_status=dict(self.by_status),
                by_content_type=dict(self.by_content_type),
            )

    def status_line(self, key: str) -> str:
        expected = UNKNOWN if self.expected_total is None else str(self.expected_total)
        return (
            f"{key:<30} Totals: {self.processed}/{expected} objects. "
            f"Avg: {self.rate():.2f} obj/s. ETA: {format_eta(self.eta_seconds())}"
        )

    def maybe_show(self, key: str) -> bool:
        elapsed = self.elapsed()
        show = False
        with self._status_lock:
            if elapsed - self._last_shown >= self._every_seconds:
                self._last_shown = elapsed
                show = True
        if show:
            totals = self.snapshot()
            self.console.print()
            self.console.print(self.status_line(key), markup=False, soft_wrap=True)
            self.console.print(
                "  status: " + _histogram_text(totals.by_status),
                markup=False,
                soft_wrap=True,
            )
            self.console.print(
                "  types:  " + _histogram_text(totals.by_content_type),
                markup=False,
                soft_wrap=True,
            )
        return show

    def show_summary(self) -> RunTotals:
        totals = self.snapshot()
        self.console.print()
        table = Table(title="cachectl summary")
        table.add_column("Status")
        table.add_column("Objects", justify="right")
        for status, count in sorted(totals.by_status.items()):
            table.add_row(status, f"{count:,}")
        table.add_row("failed", f"{totals.failed:,}")
        self.console.print(table)
        types = Table(title="Content types")
        types.add_column("Content-Type")
        types.add_column("Objects", justify="right")
        for content_type, count in _by_count(totals.by_content_type):
            types.add_row(content_type, f"{count:,}")
        self.console.print(types)
        self.console.print(
            f"Processed {totals.processed:,} objects, wrote {totals.copied:,}, "
            f"failed {totals.failed:,} in {self.elapsed():.1f}s.",
            markup=False,
        )
        return totals


def _by_count(histogram: dict[str, int]) -> list[tuple[str, int]]:
    return sorted(histogram.items(), key=lambda item: (-item[1], item[0]))


def _histogram_text(histogram: dict[str, int]) -> str:
    if not histogram:
        return "-"
    return "  ".join(f"{name} {count}" for name, count in _by_count(histogram))
