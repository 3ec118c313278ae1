"""
Offset/limit pagination over CRM list endpoints.
"""

import logging
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..config import PAGE_SIZE
from .crm_client import CrmApiClient
from .errors import ConfigurationError, TransportError
from .models import ProgressPhase
from .progress import ProgressReporter
from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


@dataclass
class FetchResult:
    """Records gathered for one resource, plus how the loop ended"""

    resource: str
    records: List[Dict[str, Any]] = field(default_factory=list)
    pages: int = 0
    complete: bool = False
    error: Optional[TransportError] = None
    total_hint: Optional[int] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


def _meta_total(data: Mapping[str, Any]) -> Optional[int]:
    meta = data.get("meta")
    if not isinstance(meta, Mapping):
        return None
    try:
        return int(meta.get("total"))
    except (TypeError, ValueError):
        return None


class PaginatedFetcher:
    """Drives one list resource to exhaustion through the shared rate limiter."""

    def __init__(self, client: CrmApiClient, limiter: RateLimiter, page_size: int = PAGE_SIZE):
        if page_size < 1:
            raise ConfigurationError("page_size must be at least 1")
        self.client = client
        self.limiter = limiter
        self.page_size = page_size

    async def fetch_all(
        self,
        resource: str,
        *,
        key: Optional[str] = None,
        filters: Optional[Mapping[str, Any]] = None,
        orders: Optional[Mapping[str, str]] = None,
        start_offset: int = 0,
        phase: ProgressPhase = ProgressPhase.USERS,
        progress: Optional[ProgressReporter] = None,
        band: Tuple[float, float] = (0.0, 100.0),
        label: Optional[str] = None,
    ) -> FetchResult:
        """
        Fetch every page of ``resource``.

        The loop stops when ``meta.total`` (if the API reports one) has been
        reached, otherwise when a page comes back shorter than the page size.
        A failed call ends the loop without retry; the records fetched so far
        are returned and the failure is kept on ``FetchResult.error``.

        Args:
            resource: Resource path under /api/3 (e.g. "users", "deals")
            key: Response key holding the records (defaults to ``resource``)
            filters: Extra filters[...] query parameters
            orders: Extra orders[...] query parameters
            start_offset: Offset of the first page
            phase: Phase reported on progress events
            progress: Reporter receiving one event per page (None = debug log only)
            band: Percentage range the progress events are mapped into
            label: Name used in progress messages

        Returns:
            FetchResult with the accumulated records
        """
        key = key or resource
        label = label or resource
        result = FetchResult(resource=resource)
        offset = start_offset

        while True:
            try:
                data = await self.limiter.throttle(
                    partial(
                        self.client.list_page,
                        resource,
                        limit=self.page_size,
                        offset=offset,
                        filters=filters,
                        orders=orders,
                    )
                )
                page = data.get(key)
                if page is None:
                    page = []
                if not isinstance(page, list):
                    raise TransportError(f"Expected a list under '{key}' for {resource}", endpoint=resource)
            except TransportError as e:
                logger.error("Error loading %s at offset %d: %s", label, offset, e)
                result.error = e
                break

            result.pages += 1
            result.records.extend(page)
            total_hint = _meta_total(data)
            if total_hint is not None:
                result.total_hint = total_hint
            self._report(result, phase, progress, band, label)

            if not page:
                result.complete = True
                break

            offset += self.page_size
            if result.total_hint is not None:
                if offset >= result.total_hint:
                    result.complete = True
                    break
            elif len(page) < self.page_size:
                result.complete = True
                break

        logger.debug(
            "Fetched %d %s in %d pages (complete=%s)",
            len(result.records),
            label,
            result.pages,
            result.complete,
        )
        return result

    def _report(
        self,
        result: FetchResult,
        phase: ProgressPhase,
        progress: Optional[ProgressReporter],
        band: Tuple[float, float],
        label: str,
    ) -> None:
        loaded = len(result.records)
        if progress is None:
            logger.debug("Loaded %d %s so far", loaded, label)
            return
        total = result.total_hint if result.total_hint is not None else loaded
        fraction = min(1.0, loaded / total) if result.total_hint else 0.5
        start, end = band
        progress.report(
            phase,
            f"Loaded {loaded} {label}...",
            current=loaded,
            total=max(total, loaded),
            percentage=start + (end - start) * fraction,
        )


__all__ = ["FetchResult", "PaginatedFetcher"]
