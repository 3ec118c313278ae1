"""
Fixed-size worker pool over a unit-of-work list.

Each worker owns one contiguous slice and processes it strictly in order;
workers run concurrently and share whatever rate limiter the handler uses.
"""

import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Generic, Iterable, List, Optional, Sequence, Tuple, TypeVar

from ..config import PROGRESS_EMIT_EVERY, WORKER_COUNT
from .errors import ConfigurationError
from .models import ProgressPhase
from .progress import ProgressReporter

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class ItemFailure(Generic[T]):
    item: T
    error: Exception


@dataclass
class PoolResult(Generic[T, R]):
    results: List[R] = field(default_factory=list)
    failures: List[ItemFailure[T]] = field(default_factory=list)
    processed: int = 0

    @property
    def failed_items(self) -> List[T]:
        return [failure.item for failure in self.failures]


def partition(items: Sequence[T], worker_count: int) -> List[List[T]]:
    """
    Split ``items`` into ``worker_count`` contiguous slices of ceil(N/W).

    Trailing slices may be shorter or empty; the slice count is always
    ``worker_count``.
    """
    if worker_count < 1:
        raise ConfigurationError("worker_count must be at least 1")
    size = math.ceil(len(items) / worker_count) if items else 0
    return [list(items[i * size:(i + 1) * size]) for i in range(worker_count)]


class WorkerPool:
    """Runs a per-item coroutine over a list with W sequential workers."""

    def __init__(
        self,
        worker_count: int = WORKER_COUNT,
        *,
        progress: Optional[ProgressReporter] = None,
        phase: ProgressPhase = ProgressPhase.TASKS,
        emit_every: int = PROGRESS_EMIT_EVERY,
        band: Tuple[float, float] = (0.0, 100.0),
        label: str = "items",
        describe: Callable[[T], str] = str,
    ):
        if worker_count < 1:
            raise ConfigurationError("worker_count must be at least 1")
        if emit_every < 1:
            raise ConfigurationError("emit_every must be at least 1")
        self.worker_count = worker_count
        self.progress = progress
        self.phase = phase
        self.emit_every = emit_every
        self.band = band
        self.label = label
        self.describe = describe

    async def run(
        self,
        items: Iterable[T],
        handler: Callable[[T], Awaitable[Iterable[R]]],
    ) -> PoolResult[T, R]:
        """
        Process every item and return once all workers are done.

        A handler exception is recorded as an ``ItemFailure`` and the worker
        continues with its next item. Cancellation is not intercepted.
        """
        items = list(items)
        total = len(items)
        slices = partition(items, self.worker_count)
        failures: List[ItemFailure[T]] = []
        counter_lock = asyncio.Lock()
        state = {"processed": 0}

        async def mark_done() -> None:
            async with counter_lock:
                state["processed"] += 1
                current = state["processed"]
                if current % self.emit_every == 0 or current == total:
                    self._report(current, total)

        async def worker(index: int, work: List[T]) -> List[R]:
            collected: List[R] = []
            for item in work:
                try:
                    collected.extend(await handler(item))
                except Exception as exc:  # noqa: BLE001
                    logger.error(
                        "Worker %d failed on %s: %s", index, self.describe(item), exc
                    )
                    failures.append(ItemFailure(item=item, error=exc))
                await mark_done()
            return collected

        logger.info(
            "Distributing %d %s across %d workers (%d per worker)",
            total,
            self.label,
            self.worker_count,
            len(slices[0]) if slices else 0,
        )
        partials = await asyncio.gather(
            *(worker(index, work) for index, work in enumerate(slices))
        )

        results = [record for partial_result in partials for record in partial_result]
        if failures:
            logger.warning("%d of %d %s failed", len(failures), total, self.label)
        return PoolResult(results=results, failures=failures, processed=state["processed"])

    def _report(self, current: int, total: int) -> None:
        if self.progress is None:
            return
        start, end = self.band
        fraction = current / total if total else 1.0
        self.progress.report(
            self.phase,
            f"Loading {self.label}: {current}/{total} processed",
            current=current,
            total=total,
            percentage=start + (end - start) * fraction,
        )


__all__ = ["ItemFailure", "PoolResult", "WorkerPool", "partition"]
