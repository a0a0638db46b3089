"""Request throttling for sequential per-adapter loops.

Upstream quotas are enforced by waiting between consecutive requests to the
same source. Adapters never sleep themselves; the caller owns a throttle and
awaits it before each request so the policy can be swapped in tests.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Protocol

from hmo_hunter.logging import get_logger

logger = get_logger(__name__)


class Throttle(Protocol):
    """Anything that can be awaited before issuing the next request."""

    async def wait(self) -> None: ...


class NoThrottle:
    """Throttle that never waits (derived adapters, tests)."""

    async def wait(self) -> None:
        return None


class FixedDelayThrottle:
    """Ensure at least ``delay`` seconds between consecutive ``wait`` returns.

    The first call returns immediately. Time already spent on the previous
    request counts towards the delay, so a slow upstream is not penalised twice.
    """

    def __init__(
        self,
        delay: float,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if delay < 0:
            raise ValueError("delay must not be negative")
        self.delay = delay
        self._sleep = sleep
        self._clock = clock
        self._last: float | None = None

    async def wait(self) -> None:
        if self._last is not None and self.delay > 0:
            remaining = self.delay - (self._clock() - self._last)
            if remaining > 0:
                logger.debug("throttle_wait", seconds=round(remaining, 3))
                await self._sleep(remaining)
        self._last = self._clock()


ThrottleFactory = Callable[[float], Throttle]


def fixed_delay_throttle(delay: float) -> Throttle:
    """Default throttle factory used by the ingestion manager."""
    if delay <= 0:
        return NoThrottle()
    return FixedDelayThrottle(delay)
