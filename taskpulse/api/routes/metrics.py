"""
Task metrics endpoints
"""

import hmac
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Header, Query
from fastapi.responses import JSONResponse

from ... import config as settings
from ...core.aggregator import DateWindow
from ...core.errors import ConfigurationError, PipelineError, PipelineTimeoutError, TransportError
from ...services.metrics_cache import get_assignee_metrics_cache, get_metrics_cache

router = APIRouter(prefix="/task-metrics", tags=["task-metrics"])
logger = logging.getLogger(__name__)


def _error_response(exc: PipelineError) -> JSONResponse:
    if isinstance(exc, ConfigurationError):
        logger.error("Task metrics unavailable: %s", exc)
        return JSONResponse(status_code=500, content={"error": "API configuration missing"})
    if isinstance(exc, PipelineTimeoutError):
        return JSONResponse(status_code=504, content={"error": str(exc)})
    if isinstance(exc, TransportError):
        return JSONResponse(status_code=502, content={"error": str(exc)})
    return JSONResponse(status_code=500, content={"error": str(exc)})


@router.get("")
async def get_task_metrics():
    """Per-owner task metrics, served from cache while fresh"""
    try:
        result = await get_metrics_cache().get()
    except PipelineError as e:
        return _error_response(e)
    return result.to_response()


@router.get("/assignees")
async def get_assignee_metrics(window: DateWindow = Query(DateWindow.ALL_TIME)):
    """Per-assignee task metrics for tasks created within ``window``, cached per window"""
    try:
        result = await get_assignee_metrics_cache(window).get()
    except PipelineError as e:
        return _error_response(e)
    body = result.to_response()
    body["window"] = window.value
    return body


def _authorized(authorization: Optional[str]) -> bool:
    secret = settings.CRON_SECRET
    if not secret:
        logger.warning("CRON_SECRET is not configured; rejecting refresh request")
        return False
    return hmac.compare_digest(authorization or "", f"Bearer {secret}")


@router.post("/refresh")
async def refresh_task_metrics(authorization: Optional[str] = Header(default=None)) -> Any:
    """Cron-style recompute of the cached metrics"""
    if not _authorized(authorization):
        return JSONResponse(status_code=401, content={"error": "Unauthorized"})

    try:
        result = await get_metrics_cache().refresh()
    except PipelineError as e:
        return _error_response(e)

    body: Dict[str, Any] = {
        "success": True,
        "calculatedAt": result.computed_at.isoformat(),
        "metricsCount": len(result.metrics),
    }
    logger.info("Task metrics refreshed via API (%d owners)", len(result.metrics))
    return body
