"""
APScheduler jobs for background sync.

Each dashboard configuration gets one interval job that runs a sync cycle
every `fetch_interval` ms, plus, for table mode with auto_rotate, a second
job that advances the display period every `update_interval` ms.

Sync jobs are created with max_instances=1 and coalesce=True, so a cycle that
outlasts its interval makes the next firing be skipped rather than overlap.
The orchestrator's own lock covers manual triggers from the HTTP routes.

The scheduler runs on the same event loop as the API (started in the
FastAPI lifespan).
"""
import logging
from datetime import datetime, timezone

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler

logger = logging.getLogger(__name__)


def sync_job_id(identifier: str) -> str:
    return f"sync:{identifier}"


def rotation_job_id(identifier: str) -> str:
    return f"rotate:{identifier}"


def build_scheduler() -> AsyncIOScheduler:
    """Create the scheduler (not yet started). Jobs are added per configuration."""
    return AsyncIOScheduler()


def schedule_sync(
    scheduler: AsyncIOScheduler,
    orchestrator,
    interval_ms: int,
    *,
    run_now: bool = True,
):
    """
    (Re)register the recurring sync job for one configuration.

    Args:
        orchestrator: SyncOrchestrator whose sync() the job awaits.
        interval_ms: fetch interval in milliseconds.
        run_now: also fire immediately instead of waiting one interval.

    Returns:
        The APScheduler Job.
    """
    identifier = orchestrator.identifier
    options = {}
    if run_now:
        options["next_run_time"] = datetime.now(timezone.utc)

    job = scheduler.add_job(
        run_sync,
        trigger="interval",
        seconds=interval_ms / 1000,
        id=sync_job_id(identifier),
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        kwargs={"orchestrator": orchestrator},
        **options,
    )
    logger.info("Sync for %s scheduled every %ds", identifier, interval_ms // 1000)
    return job


def schedule_rotation(scheduler: AsyncIOScheduler, manager, identifier: str, interval_ms: int):
    """(Re)register the period rotation job; each run calls manager.rotate(identifier)."""
    job = scheduler.add_job(
        _run_rotation,
        trigger="interval",
        seconds=interval_ms / 1000,
        id=rotation_job_id(identifier),
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        kwargs={"manager": manager, "identifier": identifier},
    )
    logger.info("Period rotation for %s every %ds", identifier, interval_ms // 1000)
    return job


def _remove(scheduler: AsyncIOScheduler, job_id: str) -> None:
    try:
        scheduler.remove_job(job_id)
    except JobLookupError:
        pass


def unschedule_rotation(scheduler: AsyncIOScheduler, identifier: str) -> None:
    """Remove the rotation job of a configuration, if present."""
    _remove(scheduler, rotation_job_id(identifier))


def unschedule_sync(scheduler: AsyncIOScheduler, identifier: str) -> None:
    """Remove the sync job of a configuration, if present."""
    _remove(scheduler, sync_job_id(identifier))


async def run_sync(orchestrator) -> None:
    """
    Job body: one sync cycle.

    Never raises, so one failing configuration cannot stop the scheduler.
    """
    try:
        status = await orchestrator.sync()
        logger.info("Sync for %s finished: %s", orchestrator.identifier, status.status)
    except Exception:
        logger.exception("Sync job for %s failed", orchestrator.identifier)


async def _run_rotation(manager, identifier: str) -> None:
    try:
        manager.rotate(identifier)
    except Exception:
        logger.exception("Period rotation for %s failed", identifier)
