"""
Metrics pipeline: user directory, deals per owner, tasks per deal, aggregation.

All CRM calls of one run go through a single RateLimiter shared by every
fetcher and worker.
"""

import asyncio
import calendar
import logging
from dataclasses import dataclass, field
from datetime import date
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError

from ..config import PAGE_SIZE
from ..core.aggregator import DateWindow, aggregate_assignee_metrics, aggregate_owner_metrics
from ..core.crm_client import CrmApiClient
from ..core.errors import PipelineTimeoutError, TransportError
from ..core.models import (
    AssigneeTaskMetrics,
    Deal,
    DealTask,
    OwnerTaskMetrics,
    PipelineConfig,
    ProgressEvent,
    ProgressPhase,
    User,
)
from ..core.paginator import PaginatedFetcher
from ..core.progress import ProgressReporter, ensure_reporter
from ..core.rate_limiter import RateLimiter
from ..core.worker_pool import WorkerPool

logger = logging.getLogger(__name__)

ProgressArg = Union[ProgressReporter, Callable[[ProgressEvent], None], None]

# Percentage bands of a full run
USERS_BAND = (0.0, 5.0)
DEALS_BAND = (5.0, 30.0)
TASKS_BAND = (30.0, 95.0)
PROCESSING_PERCENT = 97.0


@dataclass
class PipelineSnapshot:
    """Raw inputs gathered by one run, before aggregation"""

    users: Dict[str, str] = field(default_factory=dict)
    deals: List[Deal] = field(default_factory=list)
    tasks: List[DealTask] = field(default_factory=list)
    failed_owners: List[str] = field(default_factory=list)
    failed_deals: List[str] = field(default_factory=list)


def _months_ago(today: date, months: int) -> date:
    month_index = today.year * 12 + (today.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(today.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def _parse_tasks(raw_tasks: List[Any], deal_id: str) -> List[DealTask]:
    tasks = []
    for raw in raw_tasks:
        if not isinstance(raw, dict):
            logger.warning("Skipping non-object task entry for deal %s", deal_id)
            continue
        try:
            tasks.append(DealTask.from_api(raw, deal_id))
        except ValidationError as e:
            logger.warning("Skipping malformed task %s of deal %s: %s", raw.get("id"), deal_id, e)
    return tasks


async def fetch_users(
    progress: ProgressArg = None,
    *,
    client: CrmApiClient,
    limiter: RateLimiter,
    page_size: int = PAGE_SIZE,
    band: Tuple[float, float] = (0.0, 100.0),
) -> Dict[str, str]:
    """
    Load the CRM user directory.

    Returns:
        Mapping of user id -> display name. A failed page leaves the
        directory partial; owners missing from it fall back to "User <id>".
    """
    reporter = ensure_reporter(progress)
    reporter.report(ProgressPhase.USERS, "Loading users...", percentage=band[0])

    fetcher = PaginatedFetcher(client, limiter, page_size)
    result = await fetcher.fetch_all(
        "users", phase=ProgressPhase.USERS, progress=reporter, band=band, label="users"
    )
    if result.failed:
        logger.warning("User directory is partial (%d users loaded): %s", len(result.records), result.error)

    directory: Dict[str, str] = {}
    for raw in result.records:
        try:
            user = User.model_validate(raw)
        except ValidationError as e:
            logger.warning("Skipping malformed user record: %s", e)
            continue
        if user.id:
            directory[user.id] = user.display_name

    reporter.report(
        ProgressPhase.USERS,
        f"✓ Users loaded ({len(directory)} users)",
        current=len(result.records),
        total=len(result.records),
        percentage=band[1],
    )
    return directory


async def fetch_deals(
    config: PipelineConfig,
    reporter: ProgressReporter,
    *,
    client: CrmApiClient,
    limiter: RateLimiter,
    today: date,
    band: Tuple[float, float] = DEALS_BAND,
) -> Tuple[List[Deal], List[str]]:
    """
    Load every deal of every configured owner, one paginated fetch per owner.

    Returns:
        (deals, failed_owner_ids). Owners whose fetch broke off still
        contribute the deals loaded before the failure.

    Raises:
        TransportError: if every owner's fetch failed and no deal was loaded.
    """
    owner_ids = list(config.owner_ids)
    if not owner_ids:
        logger.warning("No owner ids configured; skipping deal fetch")
        return [], []

    filters_base: Dict[str, Any] = {}
    if config.deals_lookback_months:
        created_after = _months_ago(today, config.deals_lookback_months)
        filters_base["created_after"] = created_after.isoformat()
        logger.info("Fetching deals created after %s", created_after)

    fetcher = PaginatedFetcher(client, limiter, config.page_size)
    failed_owners: List[str] = []

    async def load_owner(owner_id: str) -> List[Deal]:
        result = await fetcher.fetch_all(
            "deals",
            filters={**filters_base, "owner": owner_id},
            phase=ProgressPhase.DEALS,
            label=f"deals of owner {owner_id}",
        )
        if result.failed:
            failed_owners.append(owner_id)
        deals = []
        for raw in result.records:
            try:
                deal = Deal.model_validate(raw)
            except ValidationError as e:
                logger.warning("Skipping malformed deal of owner %s: %s", owner_id, e)
                continue
            if not deal.owner:
                deal.owner = owner_id
            deals.append(deal)
        logger.info("Owner %s: %d deals", owner_id, len(deals))
        return deals

    reporter.report(ProgressPhase.DEALS, "Loading deals...", total=len(owner_ids), percentage=band[0])
    pool = WorkerPool(
        config.worker_count,
        progress=reporter,
        phase=ProgressPhase.DEALS,
        emit_every=1,
        band=band,
        label="owner deal lists",
    )
    outcome = await pool.run(owner_ids, load_owner)
    failed_owners.extend(str(owner) for owner in outcome.failed_items)

    if not outcome.results and len(set(failed_owners)) == len(owner_ids):
        raise TransportError(f"Deal fetch failed for all {len(owner_ids)} owners", endpoint="deals")
    if failed_owners:
        logger.warning(
            "Deal fetch incomplete for %d of %d owners: %s",
            len(failed_owners),
            len(owner_ids),
            ", ".join(sorted(set(failed_owners))),
        )

    reporter.report(
        ProgressPhase.DEALS,
        f"✓ Deals loaded ({len(outcome.results)} deals)",
        current=len(owner_ids),
        total=len(owner_ids),
        percentage=band[1],
    )
    return outcome.results, sorted(set(failed_owners))


async def fetch_tasks(
    deals: List[Deal],
    config: PipelineConfig,
    reporter: ProgressReporter,
    *,
    client: CrmApiClient,
    limiter: RateLimiter,
    band: Tuple[float, float] = TASKS_BAND,
) -> Tuple[List[DealTask], List[str]]:
    """
    Load the tasks of every deal with the worker pool.

    Returns:
        (tasks, failed_deal_ids). A failed deal contributes no tasks.

    Raises:
        TransportError: if there were deals and every one of them failed.
    """

    async def load_deal_tasks(deal: Deal) -> List[DealTask]:
        raw_tasks = await limiter.throttle(partial(client.get_deal_tasks, deal.id))
        return _parse_tasks(raw_tasks, deal.id)

    reporter.report(
        ProgressPhase.TASKS,
        f"Loading tasks for {len(deals)} deals...",
        total=len(deals),
        percentage=band[0],
    )
    pool = WorkerPool(
        config.worker_count,
        progress=reporter,
        phase=ProgressPhase.TASKS,
        emit_every=config.progress_emit_every,
        band=band,
        label="deals",
        describe=lambda deal: f"deal {deal.id}",
    )
    outcome = await pool.run(deals, load_deal_tasks)
    failed = [deal.id for deal in outcome.failed_items]
    if deals and len(failed) == len(deals):
        raise TransportError(f"Task fetch failed for all {len(deals)} deals", endpoint="deals/tasks")
    if failed:
        logger.warning("Tasks missing for %d of %d deals", len(failed), len(deals))
    return outcome.results, failed


async def collect_snapshot(
    config: PipelineConfig,
    reporter: ProgressReporter,
    *,
    client: CrmApiClient,
    limiter: RateLimiter,
    today: date,
) -> PipelineSnapshot:
    """Run the three fetch phases in order."""
    users = await fetch_users(
        reporter, client=client, limiter=limiter, page_size=config.page_size, band=USERS_BAND
    )
    deals, failed_owners = await fetch_deals(
        config, reporter, client=client, limiter=limiter, today=today
    )
    tasks, failed_deals = await fetch_tasks(deals, config, reporter, client=client, limiter=limiter)
    return PipelineSnapshot(
        users=users,
        deals=deals,
        tasks=tasks,
        failed_owners=failed_owners,
        failed_deals=failed_deals,
    )


async def _run_bounded(config: PipelineConfig, run: Callable[[], Any]) -> Any:
    if config.pipeline_timeout is None:
        return await run()
    try:
        return await asyncio.wait_for(run(), timeout=config.pipeline_timeout)
    except asyncio.TimeoutError as e:
        logger.error("Metrics pipeline exceeded %.0fs", config.pipeline_timeout)
        raise PipelineTimeoutError(
            f"Metrics pipeline did not finish within {config.pipeline_timeout:.0f}s"
        ) from e


async def _with_resources(
    config: PipelineConfig,
    client: Optional[CrmApiClient],
    limiter: Optional[RateLimiter],
    body: Callable[[CrmApiClient, RateLimiter], Any],
) -> Any:
    owns_client = client is None
    if client is None:
        client = CrmApiClient.from_config(config)
    if limiter is None:
        limiter = RateLimiter(config.max_concurrent, config.min_interval)
    try:
        return await _run_bounded(config, lambda: body(client, limiter))
    finally:
        if owns_client:
            await client.aclose()


async def fetch_aggregates(
    config: Optional[PipelineConfig] = None,
    progress: ProgressArg = None,
    *,
    client: Optional[CrmApiClient] = None,
    limiter: Optional[RateLimiter] = None,
    today: Optional[date] = None,
) -> List[OwnerTaskMetrics]:
    """
    Run the full pipeline and return per-owner task metrics.

    Args:
        config: Run settings; read from the environment when omitted
        progress: ProgressReporter or a sink callable
        client: CRM client to reuse (a new one is opened and closed otherwise)
        limiter: Rate limiter to share (a fresh one per run otherwise)
        today: Date used for overdue classification (defaults to today)

    Raises:
        ConfigurationError: before any request if settings are missing
        TransportError: if no deals could be fetched for any owner
        PipelineTimeoutError: if the run exceeds ``config.pipeline_timeout``
    """
    config = config or PipelineConfig.from_env()
    reporter = ensure_reporter(progress)
    today = today or date.today()

    async def body(api: CrmApiClient, shared_limiter: RateLimiter) -> List[OwnerTaskMetrics]:
        snapshot = await collect_snapshot(
            config, reporter, client=api, limiter=shared_limiter, today=today
        )
        reporter.report(
            ProgressPhase.PROCESSING,
            f"Processing {len(snapshot.tasks)} tasks...",
            current=len(snapshot.tasks),
            total=len(snapshot.tasks),
            percentage=PROCESSING_PERCENT,
        )
        metrics = aggregate_owner_metrics(
            snapshot.deals,
            snapshot.tasks,
            snapshot.users,
            today=today,
            excluded_owner_ids=config.excluded_owner_ids,
            excluded_owner_name_fragments=config.excluded_owner_name_fragments,
        )
        reporter.report(
            ProgressPhase.COMPLETE,
            f"✓ Metrics ready for {len(metrics)} owners",
            current=len(metrics),
            total=len(metrics),
            percentage=100,
        )
        logger.info(
            "Pipeline finished: %d users, %d deals, %d tasks, %d owners (failed owners=%d, failed deals=%d, limiter peak=%d)",
            len(snapshot.users),
            len(snapshot.deals),
            len(snapshot.tasks),
            len(metrics),
            len(snapshot.failed_owners),
            len(snapshot.failed_deals),
            shared_limiter.peak_active,
        )
        return metrics

    return await _with_resources(config, client, limiter, body)


async def fetch_assignee_aggregates(
    window: DateWindow = DateWindow.ALL_TIME,
    config: Optional[PipelineConfig] = None,
    progress: ProgressArg = None,
    *,
    client: Optional[CrmApiClient] = None,
    limiter: Optional[RateLimiter] = None,
    today: Optional[date] = None,
) -> List[AssigneeTaskMetrics]:
    """Same fetch as ``fetch_aggregates``, grouped by task assignee within ``window``."""
    config = config or PipelineConfig.from_env()
    reporter = ensure_reporter(progress)
    today = today or date.today()

    async def body(api: CrmApiClient, shared_limiter: RateLimiter) -> List[AssigneeTaskMetrics]:
        snapshot = await collect_snapshot(
            config, reporter, client=api, limiter=shared_limiter, today=today
        )
        reporter.report(
            ProgressPhase.PROCESSING,
            f"Processing {len(snapshot.tasks)} tasks ({window.value})...",
            current=len(snapshot.tasks),
            total=len(snapshot.tasks),
            percentage=PROCESSING_PERCENT,
        )
        metrics = aggregate_assignee_metrics(
            snapshot.tasks,
            snapshot.users,
            today=today,
            window=window,
            excluded_owner_ids=config.excluded_owner_ids,
            excluded_owner_name_fragments=config.excluded_owner_name_fragments,
        )
        reporter.report(
            ProgressPhase.COMPLETE,
            f"✓ Metrics ready for {len(metrics)} assignees",
            current=len(metrics),
            total=len(metrics),
            percentage=100,
        )
        return metrics

    return await _with_resources(config, client, limiter, body)


__all__ = [
    "PipelineSnapshot",
    "fetch_users",
    "fetch_deals",
    "fetch_tasks",
    "collect_snapshot",
    "fetch_aggregates",
    "fetch_assignee_aggregates",
]
