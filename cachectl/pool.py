from __future__ import annotations

import logging
import sys
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from .fixup import FixupError, RunContext, fixup
from .keys import KeyChannel, produce
from .progress import RunTotals

logger = logging.getLogger(__name__)


class FailureSinkError(Exception):
    pass


class FailureSink:
    """Append-only list of keys that failed, one per line, reusable as --stdin input."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        self.count = 0

    def check(self) -> None:
        existed = self.path.exists()
        try:
            with self.path.open("a", encoding="utf-8"):
                pass
            # An empty file would later read as "keys to retry".
            if not existed:
                self.path.unlink()
        except OSError as exc:
            raise FailureSinkError(f"Cannot open failure file '{self.path}': {exc}") from exc

    def record(self, key: str) -> None:
        with self._lock:
            try:
                with self.path.open("a", encoding="utf-8") as handle:
                    handle.write(f"{key}\n")
            except OSError as exc:
                raise FailureSinkError(
                    f"Could not write '{key}' to failure file '{self.path}': {exc}"
                ) from exc
            self.count += 1


@dataclass(frozen=True)
class RunResult:
    totals: RunTotals
    dequeued: int
    failures: int
    listing_error: Optional[Exception] = None
    last_listed: Optional[str] = None


class WorkerPool:
    def __init__(
        self,
        context: RunContext,
        sink: FailureSink,
        workers: int,
        queue_size: Optional[int] = None,
    ) -> None:
        self.context = context
        self.sink = sink
        self.workers = max(1, int(workers))
        self._queue_size = queue_size or self.workers * 2
        self._lock = threading.Lock()
        self._dequeued = 0
        self._fatal: Optional[FailureSinkError] = None

    def run(self, keys: Iterable[str]) -> RunResult:
        channel = KeyChannel(self._queue_size)
        producer = threading.Thread(
            target=produce,
            args=(keys, channel),
            name="cachectl-keys",
            daemon=True,
        )
        threads = [
            threading.Thread(
                target=self._work,
                args=(channel,),
                name=f"cachectl-worker-{index}",
                daemon=True,
            )
            for index in range(1, self.workers + 1)
        ]
        for thread in threads:
            thread.start()
        producer.start()

        producer.join()
        for thread in threads:
            thread.join()

        if self._fatal is not None:
            raise self._fatal
        return RunResult(
            totals=self.context.tracker.snapshot(),
            dequeued=self._dequeued,
            failures=self.sink.count,
            listing_error=channel.error,
            last_listed=channel.last_key,
        )

    def _work(self, channel: KeyChannel) -> None:
        while True:
            key = channel.get()
            if key is None:
                return
            with self._lock:
                self._dequeued += 1
            try:
                fixup(key, self.context)
            except FixupError as exc:
                self._fail(channel, key, str(exc))
            except Exception as exc:
                self._fail(channel, key, f"unexpected error for '{key}': {exc}")
            if channel.aborted:
                return

    def _fail(self, channel: KeyChannel, key: str, message: str) -> None:
        self.context.tracker.record_failure(key)
        print(f"\n==> Failed processing '{key}': {message}", file=sys.stderr)
        try:
            self.sink.record(key)
        except FailureSinkError as exc:
            logger.critical("%s", exc)
            with self._lock:
                if self._fatal is None:
                    self._fatal = exc
            channel.abort()
