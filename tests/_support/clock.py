"""
Manually driven clock for deterministic timer tests.

Every syncspine timer sleeps through a ``Clock``. ``FakeClock.sleep`` parks
the caller until a test calls ``advance``, which moves time forward and
wakes due sleepers in wake-time order, letting the event loop run between
each wake-up.

Usage::

    clock = FakeClock()
    tokens = TokenLifecycleManager(refresh, clock=clock)
    await tokens.get_token("chat")
    await clock.advance(60)      # scheduled refresh fires here
"""

from __future__ import annotations

import asyncio
import heapq
import itertools

# Enough loop iterations for a reconnect + resync round trip through the hub.
_SETTLE_ROUNDS = 50


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self._now = start
        self._sleepers: list[tuple[float, int, asyncio.Future[None]]] = []
        self._counter = itertools.count()

    def now(self) -> float:
        return self._now

    async def sleep(self, seconds: float) -> None:
        if seconds <= 0:
            await asyncio.sleep(0)
            return
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        heapq.heappush(self._sleepers, (self._now + seconds, next(self._counter), future))
        await future

    def tick(self, seconds: float) -> None:
        """Move time forward without waking anyone (for synchronous code)."""
        self._now += seconds

    async def advance(self, seconds: float) -> None:
        """Move time forward, waking every sleeper that falls due on the way."""
        target = self._now + seconds
        await self.settle()
        while self._sleepers and self._sleepers[0][0] <= target:
            wake_at, _, future = heapq.heappop(self._sleepers)
            if future.done():
                continue
            self._now = max(self._now, wake_at)
            future.set_result(None)
            await self.settle()
        self._now = target
        await self.settle()

    @property
    def pending_wakeups(self) -> list[float]:
        return sorted(wake for wake, _, future in self._sleepers if not future.done())

    @staticmethod
    async def settle() -> None:
        """Let ready tasks run until the loop goes quiet."""
        for _ in range(_SETTLE_ROUNDS):
            await asyncio.sleep(0)
