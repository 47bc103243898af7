from __future__ import annotations

import logging
import queue
import threading
from typing import Iterable, Iterator, Optional, Protocol, TextIO

from .progress import ProgressTracker

logger = logging.getLogger(__name__)

POLL_SECONDS = 0.2


class KeyLister(Protocol):
    def iter_key_pages(
        self,
        bucket: str,
        page_size: int = 1000,
        start_after: Optional[str] = None,
    ) -> Iterator[list[str]]: ...


class KeyChannel:
    """
    Bounded FIFO between the key producer and the workers.

    ``put`` blocks while the channel is full, ``get`` blocks while it is
    empty and returns ``None`` once it is closed and drained. ``abort``
    releases every blocked caller. A producer that gives up early leaves
    the cause in ``error`` and the last key it sent in ``last_key``.
    """

    def __init__(self, maxsize: int) -> None:
        self._queue: queue.Queue[str] = queue.Queue(maxsize=maxsize)
        self._closed = threading.Event()
        self._aborted = threading.Event()
        self.error: Optional[Exception] = None
        self.last_key: Optional[str] = None

    @property
    def aborted(self) -> bool:
        return self._aborted.is_set()

    def put(self, key: str) -> bool:
        while not self._aborted.is_set():
            try:
                self._queue.put(key, timeout=POLL_SECONDS)
                return True
            except queue.Full:
                continue
        return False

    def get(self) -> Optional[str]:
        while not self._aborted.is_set():
            try:
                return self._queue.get(timeout=POLL_SECONDS)
            except queue.Empty:
                if self._closed.is_set() and self._queue.empty():
                    return None
        return None

    def close(self) -> None:
        self._closed.set()

    def abort(self) -> None:
        self._aborted.set()
        self._closed.set()


def read_keys(stream: TextIO) -> Iterator[str]:
    # Keys may begin or end with spaces; only the line terminator goes.
    for line in stream:
        key = line.rstrip("\r\n")
        if key:
            yield key


def enumerate_keys(
    store: KeyLister,
    bucket: str,
    tracker: ProgressTracker,
    page_size: int = 1000,
    start_after: Optional[str] = None,
) -> Iterator[str]:
    for page in store.iter_key_pages(bucket, page_size=page_size, start_after=start_after):
        yield from page
        # Approximate; in-flight workers may still push copied past the cap.
        if tracker.cap_reached():
            logger.info("Object cap reached, stopping listing of %s", bucket)
            return


def produce(keys: Iterable[str], channel: KeyChannel) -> int:
    sent = 0
    try:
        for key in keys:
            if not channel.put(key):
                break
            sent += 1
            channel.last_key = key
    except Exception as exc:
        channel.error = exc
        logger.exception(
            "Listing keys failed after %d keys; last key listed: %r",
            sent,
            channel.last_key,
        )
    finally:
        channel.close()
    return sent
