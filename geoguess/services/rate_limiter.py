"""Sliding-window async rate limiter for Mapillary calls."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Awaitable, Callable

log = logging.getLogger(__name__)

MAX_WAIT_STEP_SECONDS = 0.2
WAIT_MARGIN_SECONDS = 0.005


class SlidingWindowRateLimiter:
    """
    Admit at most ``capacity`` calls per ``window_seconds``.

    ``acquire()`` never rejects, it only delays: when the window is full it
    sleeps in short steps until the oldest call ages out. The window is shared
    by every caller; the lock is released while sleeping.
    """

    def __init__(
        self,
        capacity: int = 900,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ):
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        self.capacity = capacity
        self.window_seconds = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._calls: deque[float] = deque()
        self._lock = asyncio.Lock()

    def _purge(self, now: float) -> None:
        while self._calls and now - self._calls[0] >= self.window_seconds:
            self._calls.popleft()

    async def acquire(self) -> None:
        waited = False
        while True:
            async with self._lock:
                now = self._clock()
                self._purge(now)
                if len(self._calls) < self.capacity:
                    self._calls.append(now)
                    return
                wait_for = self.window_seconds - (now - self._calls[0]) + WAIT_MARGIN_SECONDS
            if not waited:
                log.debug("Mapillary rate window full (%s calls); waiting %.3fs", self.capacity, wait_for)
                waited = True
            await self._sleep(min(wait_for, MAX_WAIT_STEP_SECONDS))

    def in_window(self) -> int:
        """Number of calls recorded in the current window. Read-only; purging happens in ``acquire``."""
        now = self._clock()
        return sum(1 for t in self._calls if now - t < self.window_seconds)
