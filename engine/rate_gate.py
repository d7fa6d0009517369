"""MinIntervalGate -- single-permit, minimum-interval rate limiter.

Token bucket with rate 1/interval and burst 1. Every caller queues on one
asyncio.Lock and, once it holds it, sleeps until `interval` seconds have
passed since the previous permit was handed out.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class MinIntervalGate:
    """Serializes callers so consecutive permits are at least `interval` apart.

    Usage:
        gate = MinIntervalGate(15.0, name="taapi")
        async with gate:
            await client.get(...)

    The clock and sleep function are injectable so tests don't actually wait.
    """

    def __init__(
        self,
        interval: float,
        name: str = "gate",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._interval = interval
        self._name = name
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last: float | None = None
        self._waiters = 0

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def pending(self) -> int:
        """Callers currently queued or holding the permit."""
        return self._waiters

    async def acquire(self) -> None:
        self._waiters += 1
        try:
            await self._lock.acquire()
        except BaseException:
            self._waiters -= 1
            raise
        try:
            if self._last is not None:
                wait = self._interval - (self._clock() - self._last)
                if wait > 0:
                    logger.debug("%s: waiting %.1fs for rate limit", self._name, wait)
                    await self._sleep(wait)
            self._last = self._clock()
        except BaseException:
            self._release()
            raise

    def _release(self) -> None:
        self._waiters -= 1
        self._lock.release()

    async def __aenter__(self) -> MinIntervalGate:
        await self.acquire()
        return self

    async def __aexit__(self, *exc: object) -> None:
        self._release()
