import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI

from .routes.health import router as health_router
from .routes.metrics import router as metrics_router
from ..config import METRICS_REFRESH_HOUR, METRICS_REFRESH_TIMEZONE
from ..services.metrics_cache import get_metrics_cache

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="TaskPulse")
app.include_router(health_router)   # /health/, /health/live
app.include_router(metrics_router)  # /task-metrics, /task-metrics/refresh

_scheduler = AsyncIOScheduler()


async def _scheduled_metrics_refresh() -> None:
    log = logging.getLogger("scheduler.metrics_refresh")
    cache = get_metrics_cache()
    try:
        result = await cache.refresh()
        log.info("Scheduled metrics refresh finished (%d owners)", len(result.metrics))
    except Exception:  # noqa: BLE001
        log.exception("Scheduled metrics refresh failed")


@app.on_event("startup")
async def _startup() -> None:
    logging.getLogger("apscheduler").setLevel(logging.INFO)

    if METRICS_REFRESH_HOUR is None:
        logger.info("METRICS_REFRESH_HOUR is empty; scheduled refresh disabled")
        return

    if not _scheduler.running:
        _scheduler.add_job(
            _scheduled_metrics_refresh,
            "cron",
            hour=METRICS_REFRESH_HOUR,
            minute=0,
            timezone=METRICS_REFRESH_TIMEZONE,
            id="metrics_refresh",
            misfire_grace_time=600,
            max_instances=1,
        )
        _scheduler.start()
        logger.info(
            "Scheduled daily metrics refresh at %02d:00 %s", METRICS_REFRESH_HOUR, METRICS_REFRESH_TIMEZONE
        )


@app.on_event("shutdown")
async def _shutdown() -> None:
    if _scheduler.running:
        _scheduler.shutdown(wait=False)
