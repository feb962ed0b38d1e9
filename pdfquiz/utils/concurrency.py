"""Concurrency primitives shared by the pipeline workers and providers.

Two patterns live here:

1. **throttled_gather** -- ``asyncio.gather`` with every awaitable wrapped in
   a semaphore acquire/release.  Used to fan out embedding batches without
   exceeding the per-stage concurrency cap.

2. **RateLimiter** -- a sliding-window limiter allowing at most ``limit``
   acquisitions per ``window_seconds``.  Each pipeline stage owns one so
   that its external collaborator is never called faster than configured
   (5 jobs per second by default).
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from typing import Awaitable, Callable, TypeVar

import structlog

from pdfquiz.utils.logging import get_logger

_T = TypeVar("_T")

_logger: structlog.BoundLogger = get_logger(__name__)


async def throttled_gather(
    coros: list[Awaitable[_T]],
    semaphore: asyncio.Semaphore,
    return_exceptions: bool = False,
) -> list[_T | BaseException]:
    """Run awaitables concurrently, at most ``semaphore`` slots at a time.

    Parameters
    ----------
    coros:
        Awaitable objects to execute.
    semaphore:
        Bounds how many of them run simultaneously.
    return_exceptions:
        Mirrors ``asyncio.gather``: when ``True`` exceptions are returned
        in the result list instead of raised.

    Returns
    -------
    list
        Results in the same order as ``coros``.
    """

    async def _wrapped(coro: Awaitable[_T]) -> _T:
        async with semaphore:
            return await coro

    return await asyncio.gather(
        *(_wrapped(c) for c in coros), return_exceptions=return_exceptions
    )


class RateLimiter:
    """Sliding-window rate limiter for asyncio code.

    ``acquire()`` returns immediately while fewer than ``limit`` calls were
    admitted in the trailing ``window_seconds``; otherwise it sleeps until
    the oldest admission leaves the window.
    """

    def __init__(
        self,
        limit: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        self._limit = limit
        self._window = window_seconds
        self._clock = clock
        self._admitted: deque[float] = deque()
        self._lock = asyncio.Lock()

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def window_seconds(self) -> float:
        return self._window

    async def acquire(self) -> None:
        async with self._lock:
            while True:
                now = self._clock()
                while self._admitted and now - self._admitted[0] >= self._window:
                    self._admitted.popleft()
                if len(self._admitted) < self._limit:
                    self._admitted.append(now)
                    return
                wait = self._window - (now - self._admitted[0])
                _logger.debug("rate_limiter_wait", wait_seconds=round(wait, 3))
                await asyncio.sleep(wait)

    async def __aenter__(self) -> RateLimiter:
        await self.acquire()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        return None
