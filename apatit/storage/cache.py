"""In-memory snapshot cache for the ``/stats`` endpoint.

:class:`SeriesCache` holds the most recent JSON document published by a
scheduler.  Schedulers call :meth:`SeriesCache.publish` once at the end of a
cycle; the HTTP layer calls :meth:`SeriesCache.read` per request.  No history
is kept: a publish replaces the previous document outright.

Two instances exist per process, both owned by the runner:

* ``task_stats`` — aggregated task event logs (``/stats?type=task``).
* ``all_tasks`` — the full task listing (``/stats?type=all``).

Readers never see a partially published document: the blob is stored as
immutable :class:`bytes` and swapped under the write side of a
readers-writer lock, and every read returns its own copy.

Typical usage::

    cache = SeriesCache("task_stats")
    cache.publish(b'[{"TaskID": "123"}]')
    body = cache.read()        # → b'[{"TaskID": "123"}]'
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager

__all__ = ["ReadWriteLock", "SeriesCache"]

logger = logging.getLogger(__name__)


class ReadWriteLock:
    """Many concurrent readers or one writer.

    Readers only wait while a writer holds the lock; a waiting writer blocks
    until every active reader has left.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writing = False

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writing:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            while self._writing or self._readers:
                self._cond.wait()
            self._writing = True
        try:
            yield
        finally:
            with self._cond:
                self._writing = False
                self._cond.notify_all()


class SeriesCache:
    """Latest published JSON blob, safe for concurrent readers.

    Args:
        name: Label used in log messages.
    """

    def __init__(self, name: str = "cache") -> None:
        self.name = name
        self._lock = ReadWriteLock()
        self._data = b""

    def publish(self, data: bytes | bytearray | memoryview) -> None:
        """Replace the current document with an immutable copy of *data*."""
        blob = bytes(data)
        with self._lock.write():
            self._data = blob
        logger.debug("Cache %r updated (%d bytes)", self.name, len(blob))

    def read(self) -> bytes:
        """Return a copy of the current document (``b""`` if nothing published)."""
        with self._lock.read():
            return bytes(bytearray(self._data))

