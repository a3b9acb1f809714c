"""Sliding-window request rate limiter for the Ping-Admin API.

Ping-Admin rejects bursts above a small number of requests per second with
"Server Unavailable".  :class:`RateLimiter` keeps the timestamps of the calls
admitted in the trailing window; once the window is full, the next caller
sleeps until the oldest admitted call is :data:`_SAFETY_MARGIN` seconds old.

The wait happens while holding the lock, so callers queued behind it observe
the window *after* the sleeper was admitted instead of racing to schedule
overlapping waits.

Typical usage::

    limiter = RateLimiter(max_per_second=2)
    await limiter.acquire()   # may sleep
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Final

__all__ = ["RateLimiter"]

logger = logging.getLogger(__name__)

#: Default budget when a non-positive value is configured.
DEFAULT_MAX_PER_SECOND: Final[int] = 2

#: Nominal window length in seconds.
_WINDOW: Final[float] = 1.0

#: Oldest call must be this old before a full window admits another.
_SAFETY_MARGIN: Final[float] = 1.1


class RateLimiter:
    """Admit at most ``max_per_second`` calls per rolling one-second window.

    Args:
        max_per_second: Window capacity.  Values ``<= 0`` fall back to
            :data:`DEFAULT_MAX_PER_SECOND`.
        clock: Monotonic clock returning seconds.  Injectable for tests.
        sleep: Coroutine function used to wait.  Injectable for tests.
    """

    def __init__(
        self,
        max_per_second: int = DEFAULT_MAX_PER_SECOND,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._max = max_per_second if max_per_second > 0 else DEFAULT_MAX_PER_SECOND
        self._clock = clock
        self._sleep = sleep
        self._admitted: deque[float] = deque()
        self._lock = asyncio.Lock()

    @property
    def max_per_second(self) -> int:
        return self._max

    async def acquire(self) -> None:
        """Block until the call fits in the window, then record it."""
        async with self._lock:
            now = self._clock()
            self._evict(now)

            if len(self._admitted) >= self._max:
                wait = _SAFETY_MARGIN - (now - self._admitted[0])
                if wait > 0:
                    logger.debug("Rate limit: waiting %.3f s before next API request", wait)
                    await self._sleep(wait)
                    now = self._clock()
                    self._evict(now)

            self._admitted.append(now)

    def _evict(self, now: float) -> None:
        horizon = now - _WINDOW
        while self._admitted and self._admitted[0] <= horizon:
            self._admitted.popleft()
