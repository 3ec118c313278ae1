import asyncio
import sys
import time
from pathlib import Path

import pytest

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from taskpulse.core.errors import ConfigurationError, RateLimiterSaturatedError
from taskpulse.core.rate_limiter import RateLimiter


def test_concurrency_never_exceeds_cap():
    async def scenario():
        limiter = RateLimiter(max_concurrent=3, min_interval=0)
        state = {"active": 0, "peak": 0}

        async def op():
            state["active"] += 1
            state["peak"] = max(state["peak"], state["active"])
            await asyncio.sleep(0.005)
            state["active"] -= 1
            return "ok"

        results = await asyncio.gather(*(limiter.throttle(op) for _ in range(25)))
        return limiter, state, results

    limiter, state, results = asyncio.run(scenario())
    assert results == ["ok"] * 25
    assert state["peak"] <= 3
    assert limiter.peak_active <= 3
    assert limiter.started == 25
    assert limiter.idle


def test_consecutive_starts_respect_min_interval():
    interval = 0.02

    async def scenario():
        limiter = RateLimiter(max_concurrent=10, min_interval=interval)
        starts = []

        async def op():
            starts.append(time.monotonic())

        await asyncio.gather(*(limiter.throttle(op) for _ in range(6)))
        return starts

    starts = sorted(asyncio.run(scenario()))
    gaps = [b - a for a, b in zip(starts, starts[1:])]
    assert len(gaps) == 5
    assert all(gap >= interval - 0.002 for gap in gaps)


def test_queued_callers_are_admitted_in_fifo_order():
    async def scenario():
        limiter = RateLimiter(max_concurrent=1, min_interval=0)
        order = []

        def make(i):
            async def op():
                order.append(i)
                await asyncio.sleep(0)
            return op

        await asyncio.gather(*(limiter.throttle(make(i)) for i in range(8)))
        return order

    assert asyncio.run(scenario()) == list(range(8))


def test_failure_reaches_only_its_caller():
    async def scenario():
        limiter = RateLimiter(max_concurrent=2, min_interval=0)

        async def good():
            await asyncio.sleep(0.001)
            return 1

        async def bad():
            raise RuntimeError("boom")

        results = await asyncio.gather(
            limiter.throttle(good),
            limiter.throttle(bad),
            limiter.throttle(good),
            return_exceptions=True,
        )
        return limiter, results

    limiter, results = asyncio.run(scenario())
    assert results[0] == 1 and results[2] == 1
    assert isinstance(results[1], RuntimeError)
    assert limiter.active_count == 0
    assert limiter.idle


def test_cancelled_waiter_leaves_queue_and_slot_is_released():
    async def scenario():
        limiter = RateLimiter(max_concurrent=1, min_interval=0)
        release = asyncio.Event()

        async def blocker():
            await release.wait()
            return "first"

        async def quick():
            return "third"

        first = asyncio.create_task(limiter.throttle(blocker))
        await asyncio.sleep(0)
        second = asyncio.create_task(limiter.throttle(quick))
        third = asyncio.create_task(limiter.throttle(quick))
        await asyncio.sleep(0)
        assert limiter.pending_count == 2

        second.cancel()
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(first, third)
        return limiter, second, results

    limiter, second, results = asyncio.run(scenario())
    assert second.cancelled()
    assert results == ["first", "third"]
    assert limiter.idle


def test_bounded_backlog_rejects_new_admissions():
    async def scenario():
        limiter = RateLimiter(max_concurrent=1, min_interval=0, max_pending=1)
        release = asyncio.Event()

        async def blocker():
            await release.wait()

        running = asyncio.create_task(limiter.throttle(blocker))
        await asyncio.sleep(0)
        queued = asyncio.create_task(limiter.throttle(blocker))
        await asyncio.sleep(0)

        with pytest.raises(RateLimiterSaturatedError):
            await limiter.throttle(blocker)

        release.set()
        await asyncio.gather(running, queued)
        return limiter

    limiter = asyncio.run(scenario())
    assert limiter.started == 2
    assert limiter.idle


def test_invalid_settings_are_rejected():
    with pytest.raises(ConfigurationError):
        RateLimiter(max_concurrent=0)
    with pytest.raises(ConfigurationError):
        RateLimiter(min_interval=-1)
