#!/usr/bin/env python3
"""
Run the task metrics pipeline once and print the per-owner table.

Usage:
    python scripts/compute_task_metrics.py            # cached if fresh
    python scripts/compute_task_metrics.py --no-cache # always recompute
    python scripts/compute_task_metrics.py --json     # raw JSON response body
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from taskpulse.core.errors import PipelineError
from taskpulse.services.metrics_cache import get_metrics_cache

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)


def _print_table(result) -> None:
    header = f"{'Owner':<30} {'Total':>7} {'Done':>7} {'Overdue':>8} {'Future':>7} {'No due':>7}"
    print(header)
    print("-" * len(header))
    for m in result.metrics:
        print(
            f"{m.owner[:30]:<30} {m.total:>7} {m.completed:>7} {m.overdue:>8} "
            f"{m.open_future_due_date:>7} {m.open_no_due_date:>7}"
        )
    source = "cache" if result.cached else "fresh run"
    print(f"\n{len(result.metrics)} owners, calculated at {result.computed_at.isoformat()} ({source})")


async def main() -> int:
    parser = argparse.ArgumentParser(description="Compute per-owner task metrics")
    parser.add_argument("--json", action="store_true", help="Print the JSON response body")
    parser.add_argument("--no-cache", action="store_true", help="Ignore any cached result")
    args = parser.parse_args()

    cache = get_metrics_cache()
    try:
        result = await (cache.refresh() if args.no_cache else cache.get())
    except PipelineError as e:
        logger.error(f"❌ Metrics computation failed ({e.category}): {e}")
        return 1

    if args.json:
        print(json.dumps(result.to_response(), indent=2))
    else:
        _print_table(result)
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
