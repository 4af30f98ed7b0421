from __future__ import annotations

import asyncio
from typing import Awaitable, Callable


class FixedDelayPacer:
    """Spaces out consecutive calls by a fixed delay.

    The first ``wait_turn()`` returns immediately; every later one sleeps
    ``interval`` seconds first, so n calls sleep n-1 times.
    """

    def __init__(self, interval: float, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.interval = max(0.0, float(interval))
        self._sleep = sleep
        self._turns = 0

    async def wait_turn(self) -> None:
        if self._turns and self.interval > 0:
            await self._sleep(self.interval)
        self._turns += 1
