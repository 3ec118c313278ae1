"""
Single-entry TTL caches in front of the metrics pipeline.

One cache holds the per-owner metrics; the per-assignee view gets one cache
per date window.
"""

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import partial
from typing import Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel

from ..config import CACHE_TTL_SECONDS
from ..core.aggregator import DateWindow
from ..core.models import CachedMetrics

logger = logging.getLogger(__name__)

ComputeFn = Callable[[], Awaitable[List[BaseModel]]]


@dataclass
class _CacheEntry:
    payload: List[BaseModel]
    stored_at: float  # cache clock, used for age
    computed_at: datetime  # wall clock, reported to clients


async def _default_compute() -> List[BaseModel]:
    from .metrics_pipeline import fetch_aggregates

    return await fetch_aggregates()


async def _assignee_compute(window: DateWindow) -> List[BaseModel]:
    from .metrics_pipeline import fetch_assignee_aggregates

    return await fetch_assignee_aggregates(window)


class MetricsCache:
    """
    Holds the last computed metrics for ``ttl_seconds``.

    Age is measured on a monotonic clock. Only the entry swap is locked: two
    readers that both find the entry stale both recompute, and whichever
    finishes last is kept.
    """

    def __init__(
        self,
        compute: Optional[ComputeFn] = None,
        ttl_seconds: float = CACHE_TTL_SECONDS,
        *,
        clock: Optional[Callable[[], float]] = None,
        name: str = "metrics",
    ):
        self._compute = compute or _default_compute
        self.ttl_seconds = ttl_seconds
        self._clock = clock or time.monotonic
        self.name = name
        self._lock = threading.Lock()
        self._entry: Optional[_CacheEntry] = None
        self.recomputations = 0

    def peek(self) -> Optional[CachedMetrics]:
        """Current entry regardless of age, without recomputing."""
        with self._lock:
            entry = self._entry
        if entry is None:
            return None
        return self._wrap(entry, cached=True)

    def invalidate(self) -> None:
        with self._lock:
            self._entry = None
        logger.info("Cache %s invalidated", self.name)

    async def get(self) -> CachedMetrics:
        """Cached metrics while fresh, otherwise a recomputation."""
        with self._lock:
            entry = self._entry
        if entry is not None:
            age = self._clock() - entry.stored_at
            if age < self.ttl_seconds:
                logger.debug("Serving cached %s (age %.0fs)", self.name, age)
                return self._wrap(entry, cached=True)
            logger.info("Cached %s expired (age %.0fs); recomputing", self.name, age)
        return await self.refresh()

    async def refresh(self) -> CachedMetrics:
        """
        Recompute unconditionally and store the result.

        If the computation raises, the previous entry is kept and the error
        propagates.
        """
        started = self._clock()
        try:
            payload = await self._compute()
        except Exception as e:
            logger.error("Recomputing %s failed; keeping previous entry: %s", self.name, e)
            raise
        entry = _CacheEntry(
            payload=list(payload),
            stored_at=self._clock(),
            computed_at=datetime.now(timezone.utc),
        )
        with self._lock:
            self._entry = entry
            self.recomputations += 1
        logger.info(
            "Recomputed %s: %d rows in %.1fs", self.name, len(entry.payload), entry.stored_at - started
        )
        return self._wrap(entry, cached=False)

    @staticmethod
    def _wrap(entry: _CacheEntry, *, cached: bool) -> CachedMetrics:
        return CachedMetrics(
            metrics=[metric.model_copy() for metric in entry.payload],
            cached=cached,
            computed_at=entry.computed_at,
        )


_global_cache: Optional[MetricsCache] = None
_assignee_caches: Dict[DateWindow, MetricsCache] = {}


def get_metrics_cache() -> MetricsCache:
    global _global_cache
    if _global_cache is None:
        _global_cache = MetricsCache()
    return _global_cache


def get_assignee_metrics_cache(window: DateWindow) -> MetricsCache:
    cache = _assignee_caches.get(window)
    if cache is None:
        cache = MetricsCache(partial(_assignee_compute, window), name=f"assignee metrics ({window.value})")
        _assignee_caches[window] = cache
    return cache


async def get_cached_or_compute() -> CachedMetrics:
    return await get_metrics_cache().get()


__all__ = [
    "MetricsCache",
    "get_metrics_cache",
    "get_assignee_metrics_cache",
    "get_cached_or_compute",
]
