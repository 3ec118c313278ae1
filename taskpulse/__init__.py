"""
TaskPulse - CRM deal/task metrics pipeline
"""

__version__ = "1.0.0"
__author__ = "TaskPulse Team"

from .core.crm_client import CrmApiClient
from .core.rate_limiter import RateLimiter
from .services.metrics_cache import get_cached_or_compute
from .services.metrics_pipeline import fetch_aggregates, fetch_users

__all__ = [
    "CrmApiClient",
    "RateLimiter",
    "fetch_users",
    "fetch_aggregates",
    "get_cached_or_compute",
]
