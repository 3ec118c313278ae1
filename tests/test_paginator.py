import asyncio
import sys
from pathlib import Path

import pytest

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from taskpulse.core.errors import ConfigurationError, TransportError
from taskpulse.core.models import ProgressPhase
from taskpulse.core.paginator import PaginatedFetcher
from taskpulse.core.progress import ProgressReporter
from taskpulse.core.rate_limiter import RateLimiter


class StubListClient:
    """Serves ``total`` synthetic records page by page."""

    def __init__(self, total, *, with_meta=False, fail_at_offset=None, key="deals"):
        self.total = total
        self.with_meta = with_meta
        self.fail_at_offset = fail_at_offset
        self.key = key
        self.calls = []

    async def list_page(self, resource, *, limit, offset, filters=None, orders=None):
        self.calls.append({"resource": resource, "limit": limit, "offset": offset, "filters": filters})
        if self.fail_at_offset is not None and offset >= self.fail_at_offset:
            raise TransportError("API Error: 500 Internal Server Error", status_code=500)
        records = [{"id": str(i)} for i in range(offset, min(offset + limit, self.total))]
        body = {self.key: records}
        if self.with_meta:
            body["meta"] = {"total": str(self.total)}
        return body


def _fetch(client, page_size=10, **kwargs):
    async def scenario():
        fetcher = PaginatedFetcher(client, RateLimiter(5, 0), page_size)
        return await fetcher.fetch_all("deals", **kwargs)

    return asyncio.run(scenario())


def test_exact_multiple_without_meta_costs_one_extra_request():
    client = StubListClient(30)
    result = _fetch(client)
    assert len(result.records) == 30
    assert len(client.calls) == 4
    assert client.calls[-1]["offset"] == 30
    assert result.complete and not result.failed


def test_remainder_page_terminates():
    client = StubListClient(35)
    result = _fetch(client)
    assert len(result.records) == 35
    assert len(client.calls) == 4
    assert [c["offset"] for c in client.calls] == [0, 10, 20, 30]


def test_meta_total_avoids_extra_request():
    client = StubListClient(30, with_meta=True)
    result = _fetch(client)
    assert len(result.records) == 30
    assert len(client.calls) == 3
    assert result.total_hint == 30


def test_empty_resource_takes_one_request():
    client = StubListClient(0)
    result = _fetch(client)
    assert result.records == []
    assert len(client.calls) == 1
    assert result.complete


def test_failure_returns_partial_records_without_raising():
    client = StubListClient(50, fail_at_offset=20)
    result = _fetch(client)
    assert [r["id"] for r in result.records] == [str(i) for i in range(20)]
    assert result.failed
    assert not result.complete
    assert result.error.status_code == 500


def test_filters_and_start_offset_are_forwarded():
    client = StubListClient(25)
    result = _fetch(client, filters={"owner": "58"}, start_offset=10)
    assert client.calls[0]["offset"] == 10
    assert all(c["filters"] == {"owner": "58"} for c in client.calls)
    assert len(result.records) == 15


def test_non_list_page_is_a_transport_failure():
    class BadClient(StubListClient):
        async def list_page(self, resource, **kwargs):
            return {"deals": {"unexpected": True}}

    result = _fetch(BadClient(10))
    assert result.failed
    assert result.records == []


def test_progress_event_per_page():
    events = []
    client = StubListClient(25, with_meta=True)
    result = _fetch(
        client,
        phase=ProgressPhase.DEALS,
        progress=ProgressReporter(events.append),
        band=(0, 30),
    )
    assert len(result.records) == 25
    assert [e.current for e in events] == [10, 20, 25]
    assert all(e.phase == ProgressPhase.DEALS for e in events)
    assert events[-1].percentage == pytest.approx(30)


def test_page_size_must_be_positive():
    with pytest.raises(ConfigurationError):
        PaginatedFetcher(StubListClient(0), RateLimiter(1, 0), 0)
