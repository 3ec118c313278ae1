"""
Aggregation of deals and their tasks into per-owner metrics.

Everything here is pure: the caller supplies ``today`` so overdue
classification never reads the clock.
"""

import logging
from collections import OrderedDict
from datetime import date, timedelta
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .models import AssigneeTaskMetrics, Deal, DealTask, OwnerTaskMetrics, TaskBucket
from .normalization import (
    ExclusionDecision,
    check_owner_exclusion,
    clean_owner_name,
    fallback_owner_label,
    locale_sort_key,
)

logger = logging.getLogger(__name__)


class DateWindow(str, Enum):
    """Task-creation windows offered by the tasks view"""
    LAST_7_DAYS = "last7days"
    LAST_30_DAYS = "last30days"
    ALL_TIME = "alltime"

    def bounds(self, today: date) -> Optional[Tuple[date, date]]:
        """Inclusive (start, end) range, or None for no filtering."""
        if self is DateWindow.ALL_TIME:
            return None
        days = 7 if self is DateWindow.LAST_7_DAYS else 30
        return today - timedelta(days=days - 1), today


def classify_task(task: DealTask, today: date) -> TaskBucket:
    """Put a task in exactly one bucket."""
    if task.completed:
        return TaskBucket.COMPLETED
    if task.due_date is None:
        return TaskBucket.OPEN_NO_DUE_DATE
    if task.due_date < today:
        return TaskBucket.OVERDUE
    return TaskBucket.OPEN_FUTURE_DUE_DATE


def resolve_owner_name(owner_id: str, user_directory: Mapping[str, str]) -> str:
    return clean_owner_name(user_directory.get(owner_id)) or fallback_owner_label(owner_id)


def _seen_before(record_id: str, seen: set) -> bool:
    # Records without an id are never treated as duplicates
    if not record_id:
        return False
    if record_id in seen:
        return True
    seen.add(record_id)
    return False


def index_tasks_by_deal(tasks: Iterable[DealTask]) -> Dict[str, List[DealTask]]:
    """Group tasks by deal id, dropping repeated task ids."""
    by_deal: Dict[str, List[DealTask]] = {}
    seen = set()
    for task in tasks:
        if _seen_before(task.id, seen):
            logger.debug("Skipping duplicate task %s", task.id)
            continue
        by_deal.setdefault(task.deal_id, []).append(task)
    return by_deal


def sort_by_owner(metrics: Iterable[OwnerTaskMetrics]) -> List[OwnerTaskMetrics]:
    return sorted(metrics, key=lambda m: (locale_sort_key(m.owner), m.owner_id))


class _ExclusionCache:
    """One exclusion decision per owner so mismatches are logged once."""

    def __init__(self, excluded_ids: Iterable[str], excluded_name_fragments: Iterable[str]):
        self.excluded_ids = list(excluded_ids)
        self.excluded_name_fragments = list(excluded_name_fragments)
        self.decisions: Dict[str, ExclusionDecision] = {}

    def excluded(self, owner_id: str, display_name: str) -> bool:
        decision = self.decisions.get(owner_id)
        if decision is None:
            decision = check_owner_exclusion(
                owner_id, display_name, self.excluded_ids, self.excluded_name_fragments
            )
            self.decisions[owner_id] = decision
        return decision.excluded


def aggregate_owner_metrics(
    deals: Iterable[Deal],
    tasks: Iterable[DealTask],
    user_directory: Mapping[str, str],
    *,
    today: date,
    excluded_owner_ids: Iterable[str] = (),
    excluded_owner_name_fragments: Iterable[str] = (),
) -> List[OwnerTaskMetrics]:
    """
    Fold deals and their tasks into one ``OwnerTaskMetrics`` per deal owner.

    Args:
        deals: Parent records, each tagged with its owner id
        tasks: Child records, each tagged with its deal id
        user_directory: owner id -> display name
        today: Calendar date used for overdue classification
        excluded_owner_ids: Owner ids dropped from the output
        excluded_owner_name_fragments: Case-insensitive name fragments dropped from the output

    Returns:
        Accumulators sorted by display name. Owners with deals but no tasks
        are included with zero counts.
    """
    tasks_by_deal = index_tasks_by_deal(tasks)
    exclusions = _ExclusionCache(excluded_owner_ids, excluded_owner_name_fragments)
    metrics: "OrderedDict[str, OwnerTaskMetrics]" = OrderedDict()
    seen_deals = set()

    for deal in deals:
        if _seen_before(deal.id, seen_deals):
            logger.debug("Skipping duplicate deal %s", deal.id)
            continue

        owner_id = deal.owner
        owner_name = resolve_owner_name(owner_id, user_directory)
        if exclusions.excluded(owner_id, owner_name):
            continue

        metric = metrics.get(owner_id)
        if metric is None:
            metric = OwnerTaskMetrics(owner=owner_name, owner_id=owner_id)
            metrics[owner_id] = metric

        for task in tasks_by_deal.get(deal.id, []):
            metric.record(classify_task(task, today))

    excluded = sorted(oid for oid, d in exclusions.decisions.items() if d.excluded)
    if excluded:
        logger.info("Excluded owners from metrics: %s", ", ".join(excluded))
    return sort_by_owner(metrics.values())


def aggregate_assignee_metrics(
    tasks: Iterable[DealTask],
    user_directory: Mapping[str, str],
    *,
    today: date,
    window: DateWindow = DateWindow.ALL_TIME,
    excluded_owner_ids: Iterable[str] = (),
    excluded_owner_name_fragments: Iterable[str] = (),
) -> List[AssigneeTaskMetrics]:
    """
    Per-assignee task counters for tasks created inside ``window``.

    Tasks without an assignee are grouped under "Unassigned". Tasks without
    a creation date only count for the all-time window.
    """
    bounds = window.bounds(today)
    exclusions = _ExclusionCache(excluded_owner_ids, excluded_owner_name_fragments)
    metrics: Dict[str, AssigneeTaskMetrics] = {}
    seen = set()

    for task in tasks:
        if _seen_before(task.id, seen):
            continue

        if bounds is not None:
            start, end = bounds
            if task.created_at is None or not (start <= task.created_at <= end):
                continue

        assignee_id = task.assignee or ""
        if assignee_id:
            name = resolve_owner_name(assignee_id, user_directory)
            if exclusions.excluded(assignee_id, name):
                continue
        else:
            name = "Unassigned"

        metric = metrics.get(assignee_id)
        if metric is None:
            metric = AssigneeTaskMetrics(owner=name, owner_id=assignee_id)
            metrics[assignee_id] = metric
        metric.record(classify_task(task, today))

    return sorted(metrics.values(), key=lambda m: (locale_sort_key(m.owner), m.owner_id))


__all__ = [
    "DateWindow",
    "classify_task",
    "resolve_owner_name",
    "index_tasks_by_deal",
    "sort_by_owner",
    "aggregate_owner_metrics",
    "aggregate_assignee_metrics",
]
