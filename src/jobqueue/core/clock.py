"""Time source used by backends and processors.

All queue timestamps are integer Unix seconds. Components take a clock in
their constructor instead of reading the wall clock directly, so tests can
substitute a clock they advance by hand.
"""

from __future__ import annotations

import asyncio
import time
from typing import Protocol


class Clock(Protocol):
    """Source of the current time and of idle waits."""

    def now(self) -> int:
        """Return the current Unix timestamp in whole seconds."""
        ...

    async def sleep(self, seconds: float) -> None:
        """Suspend the caller for the given number of seconds."""
        ...


class SystemClock:
    """Clock backed by the system wall clock and asyncio.sleep."""

    def now(self) -> int:
        return int(time.time())

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


def get_default_clock() -> Clock:
    """Return the clock used when none is injected."""
    return SystemClock()
