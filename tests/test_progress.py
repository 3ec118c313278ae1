import sys
from pathlib import Path

import pytest

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from taskpulse.core.models import ProgressPhase
from taskpulse.core.progress import ProgressReporter, ensure_reporter


def test_events_forwarded_in_order():
    events = []
    reporter = ProgressReporter(events.append)
    reporter.report(ProgressPhase.USERS, "Loading users...")
    reporter.report(ProgressPhase.DEALS, "Loading deals...", current=1, total=9, percentage=8)
    reporter.report(ProgressPhase.DEALS, "Loading deals...", current=2, total=9, percentage=11)
    assert [(e.phase, e.current) for e in events] == [
        (ProgressPhase.USERS, 0),
        (ProgressPhase.DEALS, 1),
        (ProgressPhase.DEALS, 2),
    ]
    assert reporter.last_event.current == 2


def test_regressing_events_are_dropped():
    events = []
    reporter = ProgressReporter(events.append)
    reporter.report(ProgressPhase.TASKS, "tasks", current=200)
    assert not reporter.report(ProgressPhase.TASKS, "tasks", current=100)
    assert not reporter.report(ProgressPhase.DEALS, "late deals", current=500)
    assert reporter.report(ProgressPhase.COMPLETE, "done")
    assert [e.phase for e in events] == [ProgressPhase.TASKS, ProgressPhase.COMPLETE]
    assert reporter.dropped == 2


def test_sink_failure_does_not_reach_producer():
    def broken(event):
        raise RuntimeError("ui went away")

    reporter = ProgressReporter(broken)
    assert reporter.report(ProgressPhase.USERS, "Loading users...") is True


def test_ensure_reporter_accepts_callables_and_none():
    events = []
    existing = ProgressReporter(events.append)
    assert ensure_reporter(existing) is existing
    assert isinstance(ensure_reporter(None), ProgressReporter)
    ensure_reporter(events.append).report(ProgressPhase.USERS, "x")
    assert len(events) == 1
    with pytest.raises(TypeError):
        ensure_reporter(42)
