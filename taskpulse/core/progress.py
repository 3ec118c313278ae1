"""
Progress reporting for pipeline runs.

Producers (fetchers, worker pools) call ``ProgressReporter.emit``; the
reporter forwards to a single-argument sink such as a UI callback or the
default log line. Sink failures are logged and never reach the producer.
"""

import logging
import threading
from typing import Callable, Optional

from .models import ProgressEvent, ProgressPhase

logger = logging.getLogger(__name__)

ProgressSink = Callable[[ProgressEvent], None]


def log_progress(event: ProgressEvent) -> None:
    """Default sink: one INFO line per event."""
    logger.info(
        "[%s] %s (%d/%d, %.0f%%)",
        event.phase.value,
        event.message,
        event.current,
        event.total,
        event.percentage,
    )


class ProgressReporter:
    """Forwards monotonic progress events to a sink, best effort."""

    def __init__(self, sink: Optional[ProgressSink] = None):
        self._sink = sink or log_progress
        self._lock = threading.Lock()
        self._phase = ProgressPhase.IDLE
        self._current = 0
        self.last_event: Optional[ProgressEvent] = None
        self.dropped = 0

    def emit(self, event: ProgressEvent) -> bool:
        """
        Deliver ``event`` unless it would move progress backwards.

        Returns:
            True if the event was handed to the sink.
        """
        with self._lock:
            if event.phase.order < self._phase.order or (
                event.phase == self._phase and event.current < self._current
            ):
                self.dropped += 1
                logger.debug(
                    "Dropping stale progress event %s %d (at %s %d)",
                    event.phase.value,
                    event.current,
                    self._phase.value,
                    self._current,
                )
                return False
            self._phase = event.phase
            self._current = event.current
            self.last_event = event

        try:
            self._sink(event)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Progress sink failed for %s event: %s", event.phase.value, exc)
        return True

    def report(
        self,
        phase: ProgressPhase,
        message: str,
        current: int = 0,
        total: int = 0,
        percentage: float = 0.0,
    ) -> bool:
        return self.emit(
            ProgressEvent(
                phase=phase,
                message=message,
                current=current,
                total=total,
                percentage=percentage,
            )
        )


def ensure_reporter(progress: Optional[object]) -> ProgressReporter:
    """Accept a reporter, a bare sink callable, or None."""
    if isinstance(progress, ProgressReporter):
        return progress
    if progress is None:
        return ProgressReporter()
    if callable(progress):
        return ProgressReporter(progress)
    raise TypeError(f"Unsupported progress sink: {progress!r}")


__all__ = [
    "ProgressSink",
    "ProgressReporter",
    "log_progress",
    "ensure_reporter",
]
