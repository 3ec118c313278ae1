import asyncio
import sys
from pathlib import Path

import httpx
import pytest

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from taskpulse.core.crm_client import CrmApiClient
from taskpulse.core.errors import ConfigurationError, TransportError

BASE_URL = "https://acme.api-us1.com"


def _run(handler, call):
    async def scenario():
        client = CrmApiClient(BASE_URL, "secret-token", transport=httpx.MockTransport(handler))
        try:
            return await call(client)
        finally:
            await client.aclose()

    return asyncio.run(scenario())


def test_missing_credentials_raise_configuration_error(monkeypatch):
    monkeypatch.setattr("taskpulse.core.crm_client.AC_API_URL", None)
    monkeypatch.setattr("taskpulse.core.crm_client.AC_API_TOKEN", None)
    with pytest.raises(ConfigurationError):
        CrmApiClient()
    with pytest.raises(ValueError):
        CrmApiClient(BASE_URL, "")


def test_list_page_sends_token_and_query_parameters():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        seen["token"] = request.headers.get("Api-Token")
        return httpx.Response(200, json={"deals": [{"id": "1"}], "meta": {"total": "1"}})

    data = _run(
        handler,
        lambda c: c.list_page("deals", limit=100, offset=200, filters={"owner": "58"}, orders={"cdate": "DESC"}),
    )
    assert data["deals"] == [{"id": "1"}]
    assert seen["path"] == "/api/3/deals"
    assert seen["token"] == "secret-token"
    assert seen["params"] == {
        "limit": "100",
        "offset": "200",
        "filters[owner]": "58",
        "orders[cdate]": "DESC",
    }


def test_non_success_status_raises_transport_error():
    def handler(request):
        return httpx.Response(429, json={"message": "slow down"})

    with pytest.raises(TransportError) as exc_info:
        _run(handler, lambda c: c.list_page("users", limit=10, offset=0))
    assert exc_info.value.status_code == 429


def test_malformed_payload_raises_transport_error():
    def handler(request):
        return httpx.Response(200, content=b"<html>maintenance</html>")

    with pytest.raises(TransportError):
        _run(handler, lambda c: c.get_json("/api/3/users"))


def test_network_error_raises_transport_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransportError):
        _run(handler, lambda c: c.get_json("/api/3/users"))


def test_get_deal_tasks_reads_deal_tasks_key():
    def handler(request):
        assert request.url.path == "/api/3/deals/42/tasks"
        return httpx.Response(200, json={"dealTasks": [{"id": "7", "status": "1"}]})

    tasks = _run(handler, lambda c: c.get_deal_tasks("42"))
    assert tasks == [{"id": "7", "status": "1"}]


def test_connection_probe():
    def ok(request):
        return httpx.Response(200, json={"user": {"username": "admin"}})

    def denied(request):
        return httpx.Response(403, json={"message": "Forbidden"})

    assert _run(ok, lambda c: c.test_connection()) is True
    assert _run(denied, lambda c: c.test_connection()) is False
