"""
Minimum-interval gate for fix generator calls.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class IntervalGate:
    """
    Enforces a minimum interval between the starts of consecutive calls.

    ``acquire()`` never fails; it sleeps until the interval since the previous
    call has elapsed. The clock and sleep function are injectable so the gate
    can be driven without real waiting.
    """

    def __init__(
        self,
        min_interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last_call: float | None = None
        self.in_flight = False

    async def acquire(self) -> None:
        async with self._lock:
            if self._last_call is not None:
                wait = self.min_interval - (self._clock() - self._last_call)
                if wait > 0:
                    logger.info("Rate limiting: waiting %.1fs before next call", wait)
                    await self._sleep(wait)
            self._last_call = self._clock()
            self.in_flight = True

    def release(self) -> None:
        self.in_flight = False

    async def __aenter__(self) -> "IntervalGate":
        await self.acquire()
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.release()
