"""Time sources for syncspine.

Every timer in the library (cache sweep, token refresh, reconnect backoff)
reads the time and sleeps through a :class:`Clock`. Production code uses
:class:`SystemClock`; tests substitute a clock they can advance by hand.

Wire timestamps are integer epoch milliseconds.

STDLIB ONLY.
"""

from __future__ import annotations

import asyncio
import time
from datetime import UTC, datetime
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Wall-clock time plus a cooperative sleep."""

    def now(self) -> float:
        """Current time in epoch seconds."""
        ...

    async def sleep(self, seconds: float) -> None:
        """Suspend the calling task for ``seconds``."""
        ...


class SystemClock:
    """Clock backed by ``time.time`` and ``asyncio.sleep``."""

    def now(self) -> float:
        return time.time()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def to_millis(seconds: float) -> int:
    """Convert epoch seconds to epoch milliseconds."""
    return int(seconds * 1000)


def from_millis(millis: int) -> float:
    """Convert epoch milliseconds to epoch seconds."""
    return millis / 1000.0


__all__ = ["Clock", "SystemClock", "utc_now", "to_millis", "from_millis"]
