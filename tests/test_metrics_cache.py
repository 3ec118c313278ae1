import asyncio
import sys
from pathlib import Path
from types import SimpleNamespace

import pytest

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from taskpulse.core.errors import TransportError
from taskpulse.core.models import OwnerTaskMetrics
from taskpulse.services import metrics_cache
from taskpulse.services.metrics_cache import MetricsCache


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


class StubPipeline:
    """Returns one owner whose total is the call number; can be told to fail."""

    def __init__(self):
        self.calls = 0
        self.fail = False

    async def __call__(self):
        self.calls += 1
        if self.fail:
            raise TransportError("Deal fetch failed for all 9 owners")
        return [OwnerTaskMetrics(owner="Jane", owner_id="58", total=self.calls, completed=self.calls)]


def test_fresh_entry_is_served_from_cache():
    clock, pipeline = FakeClock(), StubPipeline()
    cache = MetricsCache(pipeline, ttl_seconds=3600, clock=clock)

    async def scenario():
        first = await cache.get()
        clock.now += 3599
        second = await cache.get()
        return first, second

    first, second = asyncio.run(scenario())
    assert pipeline.calls == 1
    assert first.cached is False
    assert second.cached is True
    assert second.metrics == first.metrics
    assert second.computed_at == first.computed_at
    assert second.to_response()["cachedAt"] == first.to_response()["calculatedAt"]


def test_stale_entry_is_recomputed():
    clock, pipeline = FakeClock(), StubPipeline()
    cache = MetricsCache(pipeline, ttl_seconds=3600, clock=clock)

    async def scenario():
        await cache.get()
        clock.now += 3600
        return await cache.get()

    result = asyncio.run(scenario())
    assert pipeline.calls == 2
    assert result.cached is False
    assert result.metrics[0].total == 2
    assert cache.recomputations == 2


def test_failed_recompute_keeps_previous_entry():
    clock, pipeline = FakeClock(), StubPipeline()
    cache = MetricsCache(pipeline, ttl_seconds=60, clock=clock)

    async def scenario():
        await cache.get()
        clock.now += 120
        pipeline.fail = True
        with pytest.raises(TransportError):
            await cache.get()

    asyncio.run(scenario())
    kept = cache.peek()
    assert kept is not None
    assert kept.metrics[0].total == 1


def test_invalidate_forces_recompute():
    clock, pipeline = FakeClock(), StubPipeline()
    cache = MetricsCache(pipeline, ttl_seconds=3600, clock=clock)

    async def scenario():
        await cache.get()
        cache.invalidate()
        assert cache.peek() is None
        return await cache.get()

    result = asyncio.run(scenario())
    assert pipeline.calls == 2
    assert result.cached is False


def test_cached_payload_is_a_copy():
    cache = MetricsCache(StubPipeline(), ttl_seconds=3600, clock=FakeClock())

    async def scenario():
        first = await cache.get()
        first.metrics[0].total = 999
        return await cache.get()

    assert asyncio.run(scenario()).metrics[0].total == 1


def test_age_ignores_wall_clock_jumps(monkeypatch):
    monotonic, wall = FakeClock(100.0), FakeClock()
    monkeypatch.setattr(metrics_cache, "time", SimpleNamespace(monotonic=monotonic, time=wall))
    pipeline = StubPipeline()
    cache = MetricsCache(pipeline, ttl_seconds=60)

    async def scenario():
        await cache.get()
        wall.now -= 86400
        monotonic.now += 30
        fresh = await cache.get()
        wall.now += 86400 * 2
        monotonic.now += 30
        stale = await cache.get()
        return fresh, stale

    fresh, stale = asyncio.run(scenario())
    assert fresh.cached is True
    assert stale.cached is False
    assert pipeline.calls == 2
