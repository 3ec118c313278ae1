"""
Health check endpoints for system status
"""

from fastapi import APIRouter
from typing import Dict, Any
import logging
from datetime import datetime

from ...core.crm_client import CrmApiClient
from ...core.errors import PipelineError
from ...services.metrics_cache import get_metrics_cache

router = APIRouter(prefix="/health", tags=["health"])
logger = logging.getLogger(__name__)

@router.get("/")
async def health_check() -> Dict[str, Any]:
    """CRM connectivity and cache state"""
    health_status = {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "services": {}
    }

    # Check ActiveCampaign API connection
    try:
        async with CrmApiClient() as crm:
            authenticated = await crm.test_connection()
        health_status["services"]["crm_api"] = {
            "status": "healthy" if authenticated else "unhealthy",
            "authenticated": authenticated
        }
        if not authenticated:
            health_status["status"] = "degraded"
    except PipelineError as e:
        health_status["services"]["crm_api"] = {
            "status": "unhealthy",
            "error": str(e)
        }
        health_status["status"] = "degraded"

    cached = get_metrics_cache().peek()
    health_status["services"]["metrics_cache"] = {
        "status": "warm" if cached else "cold",
        "calculated_at": cached.computed_at.isoformat() if cached else None
    }

    return health_status

@router.get("/live")
async def liveness_check() -> Dict[str, Any]:
    """Liveness probe endpoint"""
    return {
        "status": "alive",
        "timestamp": datetime.now().isoformat()
    }
