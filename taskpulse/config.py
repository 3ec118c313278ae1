"""
Configuration module for TaskPulse.
Contains CRM API settings, fetch tuning, cache and exclusion rules.
"""

import os
from typing import List, Optional
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _get_list(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [part.strip() for part in raw.split(",") if part.strip()]


def _get_optional_int(name: str) -> Optional[int]:
    raw = (os.getenv(name) or "").strip()
    return int(raw) if raw else None


# ActiveCampaign API Configuration
AC_API_URL = os.getenv("AC_API_URL")
AC_API_TOKEN = os.getenv("AC_API_TOKEN")
AC_API_PREFIX = "/api/3"

# Owners whose deals are fetched (sales reps)
OWNER_IDS = _get_list("OWNER_IDS", "58,74,85,89,95,96,111,117,18")

# Fetch tuning
PAGE_SIZE = int(os.getenv("PAGE_SIZE", "100"))
WORKER_COUNT = int(os.getenv("WORKER_COUNT", "20"))
MAX_CONCURRENT_REQUESTS = int(os.getenv("MAX_CONCURRENT_REQUESTS", "20"))
MIN_REQUEST_INTERVAL_SECONDS = float(os.getenv("MIN_REQUEST_INTERVAL_SECONDS", "0.2"))  # 5 req/s
REQUEST_TIMEOUT_SECONDS = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "30"))
PIPELINE_TIMEOUT_SECONDS = float(os.getenv("PIPELINE_TIMEOUT_SECONDS", "900"))
PROGRESS_EMIT_EVERY = int(os.getenv("PROGRESS_EMIT_EVERY", "100"))  # deals per progress event

# Only deals created within this many months (unset = all deals)
DEALS_LOOKBACK_MONTHS = _get_optional_int("DEALS_LOOKBACK_MONTHS")

# Cache
CACHE_TTL_SECONDS = int(os.getenv("CACHE_TTL_SECONDS", str(60 * 60)))  # 1 hour

# Owner exclusion (synthetic operator account)
EXCLUDED_OWNER_IDS = _get_list("EXCLUDED_OWNER_IDS", "16")
EXCLUDED_OWNER_NAME_FRAGMENTS = _get_list(
    "EXCLUDED_OWNER_NAME_FRAGMENTS", "global citizen solutions operator"
)

# Scheduled refresh (cron-style warm-up of the metrics cache)
CRON_SECRET = os.getenv("CRON_SECRET")
# Empty METRICS_REFRESH_HOUR disables the in-process scheduler
METRICS_REFRESH_HOUR = _get_optional_int("METRICS_REFRESH_HOUR") if "METRICS_REFRESH_HOUR" in os.environ else 5
METRICS_REFRESH_TIMEZONE = os.getenv("METRICS_REFRESH_TIMEZONE", "Europe/Lisbon")

# Validation configuration
REQUIRED_ENV_VARS = ["AC_API_URL", "AC_API_TOKEN"]
