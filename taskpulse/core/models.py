"""
Pydantic models for data validation and type safety.
"""

import logging
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic import field_validator
from pydantic.alias_generators import to_camel

from .errors import ConfigurationError
from .normalization import build_display_name

logger = logging.getLogger(__name__)


def _parse_api_date(value: Any, field_name: str) -> Optional[date]:
    """Date part of an API timestamp ("2025-10-21T15:00:00-05:00" -> 2025-10-21)."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        logger.warning("Ignoring unparseable %s value %r", field_name, value)
        return None


def _as_id(value: Any) -> str:
    return "" if value is None else str(value).strip()


class ProgressPhase(str, Enum):
    """Pipeline phases, in the order they are reported"""
    IDLE = "idle"
    USERS = "users"
    DEALS = "deals"
    TASKS = "tasks"
    PROCESSING = "processing"
    COMPLETE = "complete"

    @property
    def order(self) -> int:
        return list(ProgressPhase).index(self)


class TaskBucket(str, Enum):
    """Mutually exclusive completion buckets for a task"""
    COMPLETED = "completed"
    OVERDUE = "overdue"
    OPEN_FUTURE_DUE_DATE = "open_future_due_date"
    OPEN_NO_DUE_DATE = "open_no_due_date"


class ProgressEvent(BaseModel):
    """Status update emitted while the pipeline runs"""
    phase: ProgressPhase
    message: str = ""
    current: int = Field(default=0, ge=0)
    total: int = Field(default=0, ge=0)
    percentage: float = Field(default=0.0, ge=0, le=100)

    @field_validator("percentage", mode="before")
    @classmethod
    def clamp_percentage(cls, value: Any) -> float:
        if value is None:
            return 0.0
        return min(100.0, max(0.0, float(value)))


class User(BaseModel):
    """Entry of the CRM user directory"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    first_name: Optional[str] = Field(default=None, alias="firstName")
    last_name: Optional[str] = Field(default=None, alias="lastName")
    email: Optional[str] = None
    username: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> str:
        return _as_id(value)

    @property
    def display_name(self) -> str:
        return build_display_name(self.id, self.first_name, self.last_name, self.username, self.email)


class Deal(BaseModel):
    """Parent record: a deal owned by one sales rep"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    owner: str = ""
    title: Optional[str] = None
    contact: Optional[str] = None
    organization: Optional[str] = None
    created_at: Optional[date] = Field(default=None, alias="cdate")

    @field_validator("id", "owner", mode="before")
    @classmethod
    def coerce_ids(cls, value: Any) -> str:
        return _as_id(value)

    @field_validator("contact", "organization", mode="before")
    @classmethod
    def coerce_refs(cls, value: Any) -> Optional[str]:
        return None if value is None else str(value)

    @field_validator("created_at", mode="before")
    @classmethod
    def parse_created(cls, value: Any) -> Optional[date]:
        return _parse_api_date(value, "deal cdate")


class DealTask(BaseModel):
    """
    Child record: a task attached to exactly one deal.

    The API reports ``status`` as either ``1``/``0`` or ``"1"``/``"0"``; it is
    normalised once here into ``completed`` so no caller has to compare both
    representations.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    deal_id: str
    title: Optional[str] = None
    completed: bool = False
    due_date: Optional[date] = None
    assignee: Optional[str] = None
    created_at: Optional[date] = None

    @field_validator("id", "deal_id", mode="before")
    @classmethod
    def coerce_ids(cls, value: Any) -> str:
        return _as_id(value)

    @field_validator("assignee", mode="before")
    @classmethod
    def coerce_assignee(cls, value: Any) -> Optional[str]:
        text = _as_id(value)
        return text or None

    @field_validator("completed", mode="before")
    @classmethod
    def normalize_status(cls, value: Any) -> bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            return value == 1
        if isinstance(value, str):
            return value.strip() == "1"
        return False

    @field_validator("due_date", mode="before")
    @classmethod
    def parse_due_date(cls, value: Any) -> Optional[date]:
        return _parse_api_date(value, "task duedate")

    @field_validator("created_at", mode="before")
    @classmethod
    def parse_created(cls, value: Any) -> Optional[date]:
        return _parse_api_date(value, "task cdate")

    @classmethod
    def from_api(cls, raw: Dict[str, Any], deal_id: str) -> "DealTask":
        """Build a task from a ``dealTasks`` entry of ``/deals/{id}/tasks``."""
        return cls(
            id=raw.get("id"),
            deal_id=deal_id,
            title=raw.get("title"),
            completed=raw.get("status"),
            due_date=raw.get("duedate"),
            assignee=raw.get("assignee"),
            created_at=raw.get("cdate"),
        )


class OwnerTaskMetrics(BaseModel):
    """Per-owner task counters; every task lands in exactly one bucket"""
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    owner: str
    owner_id: str
    total: int = 0
    completed: int = 0
    overdue: int = 0
    open_future_due_date: int = 0
    open_no_due_date: int = 0

    def record(self, bucket: TaskBucket) -> None:
        self.total += 1
        setattr(self, bucket.value, getattr(self, bucket.value) + 1)

    @property
    def bucket_sum(self) -> int:
        return self.completed + self.overdue + self.open_future_due_date + self.open_no_due_date


_ASSIGNEE_BUCKET_FIELDS = {
    TaskBucket.COMPLETED: "completed",
    TaskBucket.OVERDUE: "overdue",
    TaskBucket.OPEN_FUTURE_DUE_DATE: "incomplete_future_due_date",
    TaskBucket.OPEN_NO_DUE_DATE: "incomplete_no_due_date",
}


class AssigneeTaskMetrics(BaseModel):
    """Per-assignee counters for the task-creation-window view"""
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    owner: str
    owner_id: str
    total: int = 0
    completed: int = 0
    overdue: int = 0
    incomplete_future_due_date: int = 0
    incomplete_no_due_date: int = 0

    def record(self, bucket: TaskBucket) -> None:
        field = _ASSIGNEE_BUCKET_FIELDS[bucket]
        self.total += 1
        setattr(self, field, getattr(self, field) + 1)

    @property
    def bucket_sum(self) -> int:
        return self.completed + self.overdue + self.incomplete_future_due_date + self.incomplete_no_due_date


class CachedMetrics(BaseModel):
    """Metrics as served by the result cache"""
    metrics: List[Union[OwnerTaskMetrics, AssigneeTaskMetrics]] = Field(default_factory=list)
    cached: bool = False
    computed_at: datetime

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "metrics": [m.model_dump(by_alias=True) for m in self.metrics],
            "cached": self.cached,
            "calculatedAt": self.computed_at.isoformat(),
        }
        if self.cached:
            body["cachedAt"] = self.computed_at.isoformat()
        return body


class PipelineConfig(BaseModel):
    """Settings for one pipeline run, snapshotted from the environment"""
    api_url: str
    api_token: str
    owner_ids: List[str] = Field(default_factory=list)
    page_size: int = Field(default=100, ge=1)
    worker_count: int = Field(default=20, ge=1)
    max_concurrent: int = Field(default=20, ge=1)
    min_interval: float = Field(default=0.2, ge=0)
    cache_ttl_seconds: float = Field(default=3600, ge=0)
    excluded_owner_ids: List[str] = Field(default_factory=list)
    excluded_owner_name_fragments: List[str] = Field(default_factory=list)
    progress_emit_every: int = Field(default=100, ge=1)
    request_timeout: float = Field(default=30.0, gt=0)
    pipeline_timeout: Optional[float] = Field(default=None, gt=0)
    deals_lookback_months: Optional[int] = Field(default=None, ge=1)

    @field_validator("api_url", mode="before")
    @classmethod
    def strip_url(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().rstrip("/")
        return value

    @field_validator("api_url", "api_token")
    @classmethod
    def require_value(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be empty")
        return value

    @classmethod
    def from_env(cls, **overrides: Any) -> "PipelineConfig":
        """
        Build a config from ``taskpulse.config`` (environment + defaults).

        Raises:
            ConfigurationError: if the API URL/token are missing or a tuning
                value is invalid. Raised before any request is made.
        """
        from .. import config as settings

        api_url = overrides.pop("api_url", settings.AC_API_URL)
        api_token = overrides.pop("api_token", settings.AC_API_TOKEN)
        if not api_url or not api_token:
            raise ConfigurationError(
                "ActiveCampaign API URL and token are required. Set AC_API_URL and AC_API_TOKEN in environment."
            )

        values: Dict[str, Any] = {
            "api_url": api_url,
            "api_token": api_token,
            "owner_ids": list(settings.OWNER_IDS),
            "page_size": settings.PAGE_SIZE,
            "worker_count": settings.WORKER_COUNT,
            "max_concurrent": settings.MAX_CONCURRENT_REQUESTS,
            "min_interval": settings.MIN_REQUEST_INTERVAL_SECONDS,
            "cache_ttl_seconds": settings.CACHE_TTL_SECONDS,
            "excluded_owner_ids": list(settings.EXCLUDED_OWNER_IDS),
            "excluded_owner_name_fragments": list(settings.EXCLUDED_OWNER_NAME_FRAGMENTS),
            "progress_emit_every": settings.PROGRESS_EMIT_EVERY,
            "request_timeout": settings.REQUEST_TIMEOUT_SECONDS,
            "pipeline_timeout": settings.PIPELINE_TIMEOUT_SECONDS or None,
            "deals_lookback_months": settings.DEALS_LOOKBACK_MONTHS,
        }
        values.update(overrides)
        try:
            return cls(**values)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid pipeline configuration: {exc}") from exc
