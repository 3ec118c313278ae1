"""
Admission control for outbound CRM API calls.

Bounds both how many calls may be in flight (``max_concurrent``) and how often
a new call may start (``min_interval``). Counters are mutated on the event
loop without awaiting in between, so concurrent tasks cannot interleave a
read-modify-write; start times are stamped one caller at a time behind a
FIFO gate.
"""

import asyncio
import logging
import time
from collections import deque
from contextlib import suppress
from typing import Awaitable, Callable, Deque, Optional, TypeVar

from ..config import MAX_CONCURRENT_REQUESTS, MIN_REQUEST_INTERVAL_SECONDS
from .errors import ConfigurationError, RateLimiterSaturatedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RateLimiter:
    """Concurrency cap + minimum spacing between call starts, with a FIFO backlog."""

    def __init__(
        self,
        max_concurrent: int = MAX_CONCURRENT_REQUESTS,
        min_interval: float = MIN_REQUEST_INTERVAL_SECONDS,
        *,
        max_pending: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            max_concurrent: Maximum number of wrapped operations in flight.
            min_interval: Minimum seconds between two consecutive starts.
            max_pending: Backlog bound; None keeps the backlog unbounded.
            clock: Monotonic clock, must match the event loop's clock.
        """
        if max_concurrent < 1:
            raise ConfigurationError("max_concurrent must be at least 1")
        if min_interval < 0:
            raise ConfigurationError("min_interval must not be negative")
        if max_pending is not None and max_pending < 0:
            raise ConfigurationError("max_pending must not be negative")

        self.max_concurrent = max_concurrent
        self.min_interval = min_interval
        self.max_pending = max_pending
        self._clock = clock

        self.active_count = 0
        self.last_start_time: Optional[float] = None
        self.peak_active = 0
        self.started = 0
        self._pending: Deque[asyncio.Future] = deque()
        self._gate = asyncio.Lock()

    @property
    def pending_count(self) -> int:
        return sum(1 for waiter in self._pending if not waiter.done())

    @property
    def idle(self) -> bool:
        return self.active_count == 0 and self.pending_count == 0

    async def throttle(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``operation`` once a slot is free and the start interval has elapsed.

        The operation's result or exception is passed through unchanged; a
        failure only reaches this caller.
        """
        await self._acquire()
        try:
            await self._wait_for_start()
            return await operation()
        finally:
            self._release()

    async def _acquire(self) -> None:
        if self.active_count < self.max_concurrent and self.pending_count == 0:
            self.active_count += 1
            self.peak_active = max(self.peak_active, self.active_count)
            return

        if self.max_pending is not None and self.pending_count >= self.max_pending:
            raise RateLimiterSaturatedError(
                f"Rate limiter backlog full ({self.max_pending} pending calls)"
            )

        waiter = asyncio.get_running_loop().create_future()
        self._pending.append(waiter)
        logger.debug("Call queued (active=%d pending=%d)", self.active_count, self.pending_count)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # Slot was handed over just before the cancellation landed
                self._release()
            else:
                with suppress(ValueError):
                    self._pending.remove(waiter)
            raise

    async def _wait_for_start(self) -> None:
        # Admitted callers pass the gate one at a time, in arrival order
        async with self._gate:
            while self.last_start_time is not None:
                remaining = self.last_start_time + self.min_interval - self._clock()
                if remaining <= 0:
                    break
                await asyncio.sleep(remaining)
            self.last_start_time = self._clock()
            self.started += 1

    def _release(self) -> None:
        # Hand the slot straight to the oldest live waiter, if any
        while self._pending:
            waiter = self._pending.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return
        self.active_count -= 1


__all__ = ["RateLimiter"]
