"""
Request pacing between remote calls.

The pause after a request is the configured interval minus however long
the request itself took, but never less than a fixed minimum. Slow
responses therefore don't stack on top of the interval, and fast ones
still leave a floor gap before the next call.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class PacerState:
    """Observable pacing totals."""
    interval: float
    minimum_interval: float
    total_waits: int
    total_wait_seconds: float


class RequestPacer:
    """
    Computes and applies the delay between consecutive remote requests.

    Example:
        pacer = RequestPacer(interval=5.0, minimum_interval=1.0)
        started = time.monotonic()
        await client.fetch_events(day)
        await pacer.wait(started)
    """

    def __init__(
        self,
        interval: float,
        minimum_interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize the pacer.

        Args:
            interval: Target spacing between request starts, in seconds
            minimum_interval: Floor for the pause after a request
            clock: Clock matching the one used to stamp request starts
            sleep: Coroutine used to pause
        """
        if minimum_interval < 0 or interval < 0:
            raise ValueError("Intervals must be non-negative")

        self.interval = interval
        self.minimum_interval = minimum_interval
        self._clock = clock
        self._sleep = sleep
        self._total_waits = 0
        self._total_wait_seconds = 0.0

    def delay_after(self, request_started_at: float, now: Optional[float] = None) -> float:
        """
        Seconds to pause given when the last request started.

        Args:
            request_started_at: Clock reading taken just before the request
            now: Current clock reading (defaults to the pacer's clock)

        Returns:
            max(interval - elapsed, minimum_interval)
        """
        if now is None:
            now = self._clock()
        elapsed = now - request_started_at
        return max(self.interval - elapsed, self.minimum_interval)

    async def wait(self, request_started_at: float) -> float:
        """Sleep for the computed delay and return it."""
        delay = self.delay_after(request_started_at)
        logger.debug(f"Waiting {delay:.2f}s before next request...")
        self._total_waits += 1
        self._total_wait_seconds += delay
        await self._sleep(delay)
        return delay

    def get_state(self) -> PacerState:
        """Get pacing totals for monitoring."""
        return PacerState(
            interval=self.interval,
            minimum_interval=self.minimum_interval,
            total_waits=self._total_waits,
            total_wait_seconds=self._total_wait_seconds,
        )
