"""Recurring feed sync, scan and retention jobs run inside the API process."""

import asyncio
import logging
from collections.abc import Callable

from correlator.core.config import Settings
from correlator.core.database import SessionLocal
from correlator.services.feed_sync import FeedSyncService
from correlator.services.retention import run_retention
from correlator.services.scan_orchestrator import ScanOrchestrator

logger = logging.getLogger(__name__)


def scheduled_sync(settings: Settings) -> None:
    with FeedSyncService(SessionLocal, settings) as service:
        service.sync_all()


def scheduled_scan(settings: Settings) -> None:
    ScanOrchestrator(SessionLocal, settings).run_scan(trigger_type="scheduled", triggered_by="scheduler")


def scheduled_retention(settings: Settings) -> None:
    db = SessionLocal()
    try:
        run_retention(db, settings)
    finally:
        db.close()


async def run_every(
    name: str,
    interval_seconds: float,
    job: Callable[[], None],
    initial_delay: float = 0.0,
) -> None:
    """Run a blocking job in a worker thread, then sleep; errors are logged and the loop continues."""
    if initial_delay > 0:
        await asyncio.sleep(initial_delay)
    while True:
        try:
            logger.info("Scheduler: running %s", name)
            await asyncio.to_thread(job)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Scheduler: %s failed", name)
        await asyncio.sleep(interval_seconds)


def start_scheduler(settings: Settings) -> list[asyncio.Task]:
    """Create the recurring tasks on the running loop. Returns them for cancellation at shutdown."""
    sync_interval = settings.SYNC_INTERVAL_HOURS * 3600
    scan_interval = settings.SCAN_INTERVAL_HOURS * 3600
    # Sync first on startup; the first scheduled scan waits one interval.
    jobs: list[tuple[str, float, float, Callable[[], None]]] = [
        ("feed sync", sync_interval, 0.0, lambda: scheduled_sync(settings)),
        ("platform scan", scan_interval, scan_interval, lambda: scheduled_scan(settings)),
    ]
    if settings.RETENTION_ENABLED:
        jobs.append(("retention", 3600.0, 0.0, lambda: scheduled_retention(settings)))
    return [
        asyncio.create_task(run_every(name, interval, job, initial_delay=delay), name=name)
        for name, interval, delay, job in jobs
    ]


async def stop_scheduler(tasks: list[asyncio.Task]) -> None:
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
