"""
ActiveCampaign API client for listing users, deals and deal tasks.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional

import httpx

from ..config import AC_API_PREFIX, AC_API_TOKEN, AC_API_URL, REQUEST_TIMEOUT_SECONDS
from .errors import ConfigurationError, TransportError
from .models import PipelineConfig

logger = logging.getLogger(__name__)


class CrmApiClient:
    """Async client for the ActiveCampaign v3 REST API."""

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_token: Optional[str] = None,
        *,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the CRM client.

        Args:
            api_url: Account base URL (e.g. https://acme.api-us1.com). Defaults to AC_API_URL.
            api_token: API token. Defaults to AC_API_TOKEN.
            timeout: Per-request timeout in seconds.
            transport: Optional httpx transport (used by tests to mock the API).
        """
        self.api_url = (api_url or AC_API_URL or "").strip().rstrip("/")
        self.api_token = api_token or AC_API_TOKEN
        if not self.api_url or not self.api_token:
            raise ConfigurationError(
                "ActiveCampaign API URL and token are required. Set AC_API_URL and AC_API_TOKEN in environment."
            )

        self.headers = {
            "Api-Token": self.api_token,
            "Accept": "application/json",
        }
        self._client = httpx.AsyncClient(
            base_url=self.api_url,
            headers=self.headers,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_config(cls, config: PipelineConfig, **kwargs: Any) -> "CrmApiClient":
        return cls(config.api_url, config.api_token, timeout=config.request_timeout, **kwargs)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "CrmApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def get_json(self, endpoint: str, params: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """
        Execute a GET request and return the decoded JSON object.

        Raises:
            TransportError: network failure, non-2xx status or a payload that
                is not a JSON object.
        """
        try:
            response = await self._client.get(endpoint, params=params)
        except httpx.HTTPError as e:
            logger.error(f"API request failed for {endpoint}: {e}")
            raise TransportError(f"API request failed: {e}", endpoint=endpoint) from e

        if not response.is_success:
            logger.error("API Error %s %s for %s", response.status_code, response.reason_phrase, endpoint)
            raise TransportError(
                f"API Error: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
                endpoint=endpoint,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise TransportError(f"Malformed JSON payload from {endpoint}", endpoint=endpoint) from e

        if not isinstance(data, dict):
            raise TransportError(f"Unexpected payload type {type(data).__name__} from {endpoint}", endpoint=endpoint)
        return data

    async def list_page(
        self,
        resource: str,
        *,
        limit: int,
        offset: int,
        filters: Optional[Mapping[str, Any]] = None,
        orders: Optional[Mapping[str, str]] = None,
    ) -> Dict[str, Any]:
        """
        Get one page of a list endpoint.

        Args:
            resource: Resource path under /api/3 (e.g. "users", "deals")
            limit: Page size
            offset: Number of records to skip
            filters: Rendered as filters[<key>]=<value>
            orders: Rendered as orders[<key>]=ASC|DESC

        Returns:
            Raw response body ({<resourceKey>: [...], "meta": {...}})
        """
        params: Dict[str, Any] = {"limit": limit, "offset": offset}
        for key, value in (filters or {}).items():
            params[f"filters[{key}]"] = value
        for key, value in (orders or {}).items():
            params[f"orders[{key}]"] = value
        return await self.get_json(f"{AC_API_PREFIX}/{resource}", params)

    async def list_children(
        self,
        parent_resource: str,
        parent_id: str,
        child_resource: str,
        child_key: str,
    ) -> List[Dict[str, Any]]:
        """Get the child records of one parent (e.g. /deals/{id}/tasks -> dealTasks)."""
        endpoint = f"{AC_API_PREFIX}/{parent_resource}/{parent_id}/{child_resource}"
        data = await self.get_json(endpoint)
        records = data.get(child_key) or []
        if not isinstance(records, list):
            raise TransportError(f"Expected a list under '{child_key}' from {endpoint}", endpoint=endpoint)
        return records

    async def get_deal_tasks(self, deal_id: str) -> List[Dict[str, Any]]:
        return await self.list_children("deals", deal_id, "tasks", "dealTasks")

    async def test_connection(self) -> bool:
        """
        Test the API connection by fetching the authenticated user.

        Returns:
            True if connection is successful, False otherwise
        """
        try:
            data = await self.get_json(f"{AC_API_PREFIX}/users/me")
            user = data.get("user") or {}
            if user:
                logger.info("Successfully connected as: %s", user.get("username") or user.get("email"))
                return True
            return False
        except TransportError as e:
            logger.error(f"Connection test failed: {e}")
            return False
