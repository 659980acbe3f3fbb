"""MapWatch — Request Pacer.

Fixed-delay pacing for a requests-per-second budget. Each worker owns its
own pacer instance, so several workers in one process never share a
"last request" timestamp.
"""

import asyncio
import time
from typing import Awaitable, Callable


class RequestPacer:
    """Spaces out calls so no more than ``requests_per_second`` start per second."""

    def __init__(
        self,
        requests_per_second: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._clock = clock
        self._sleep = sleep
        self._next_at = 0.0
        self._lock = asyncio.Lock()
        self.set_rate(requests_per_second)

    @property
    def interval(self) -> float:
        return self._interval

    def set_rate(self, requests_per_second: float) -> None:
        """Change the budget at runtime; takes effect from the next call."""
        if requests_per_second <= 0:
            raise ValueError("requests_per_second must be positive")
        self.requests_per_second = requests_per_second
        self._interval = 1.0 / requests_per_second

    async def wait(self) -> None:
        """Block until the next request slot opens."""
        async with self._lock:
            now = self._clock()
            delay = self._next_at - now
            if delay > 0:
                await self._sleep(delay)
                now = self._clock()
            self._next_at = max(now, self._next_at) + self._interval
