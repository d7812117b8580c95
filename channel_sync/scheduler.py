"""
Background jobs for the sync engine, run by an APScheduler AsyncIOScheduler
inside the FastAPI process:

- sync_all_sellers: sweep every seller with an active credential
- refresh_tokens: rotate access tokens close to expiry
- cleanup_events: drop sync events past the retention window (daily, 02:00)
"""

import logging
from typing import Any, Dict, List, Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, JobExecutionEvent
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from channel_sync.core.config import Settings, get_settings
from channel_sync.core.exceptions import BaseServiceError
from channel_sync.services.sync_services import SyncOrchestrator

logger = logging.getLogger(__name__)

# Process-wide instance, owned by the application lifespan
scheduler: Optional[AsyncIOScheduler] = None


async def sync_all_sellers_task(orchestrator: SyncOrchestrator):
    """Sweep every seller with an active credential"""
    logger.info("=== SCHEDULED SYNC STARTING ===")
    try:
        reports = await orchestrator.run_scheduled()
    except BaseServiceError as e:
        logger.error(f"Scheduled sync aborted: {e}")
        return

    synced = sum(r.synced for r in reports)
    failed = sum(r.failed for r in reports)
    reconnect = sum(1 for r in reports for c in r.credentials if c.requires_reconnect)
    logger.info(
        f"Scheduled sync completed: {len(reports)} sellers, {synced} orders synced, "
        f"{failed} failed, {reconnect} credentials need reconnection"
    )


async def refresh_tokens_task(orchestrator: SyncOrchestrator):
    try:
        summary = await orchestrator.credential_service.refresh_expiring()
    except BaseServiceError as e:
        logger.error(f"Token refresh aborted: {e}")
        return
    if summary["checked"]:
        logger.info(f"Token refresh completed: {summary}")


async def cleanup_old_events_task(orchestrator: SyncOrchestrator):
    try:
        deleted = await orchestrator.purge_events()
    except BaseServiceError as e:
        logger.error(f"Sync event cleanup failed: {e}")
        return
    logger.info(f"Cleanup completed: {deleted} sync events deleted")


def job_listener(event: JobExecutionEvent):
    if event.exception:
        logger.error(f"Job {event.job_id} crashed: {event.exception}")
    else:
        logger.debug(f"Job {event.job_id} finished (scheduled for {event.scheduled_run_time})")


def _job_definitions(settings: Settings) -> List[Dict[str, Any]]:
    return [
        {
            "func": sync_all_sellers_task,
            "trigger": IntervalTrigger(minutes=settings.SYNC_INTERVAL_MINUTES),
            "id": "sync_all_sellers",
            "name": "Sync All Sellers",
            # Missed sweeps collapse into a single run
            "misfire_grace_time": settings.SYNC_INTERVAL_MINUTES * 60,
            "coalesce": True,
        },
        {
            "func": refresh_tokens_task,
            "trigger": IntervalTrigger(minutes=settings.TOKEN_REFRESH_INTERVAL_MINUTES),
            "id": "refresh_tokens",
            "name": "Refresh Expiring Tokens",
        },
        {
            "func": cleanup_old_events_task,
            "trigger": CronTrigger(hour=2, minute=0),
            "id": "cleanup_events",
            "name": "Cleanup Old Sync Events",
        },
    ]


def create_scheduler(orchestrator: SyncOrchestrator, settings: Optional[Settings] = None) -> AsyncIOScheduler:
    """Build the scheduler once; later calls return the same instance."""
    global scheduler

    if scheduler is not None:
        return scheduler

    settings = settings or get_settings()
    scheduler = AsyncIOScheduler()
    scheduler.add_listener(job_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)

    if not settings.SYNC_SCHEDULE_ENABLED:
        logger.info("Scheduled sync is disabled. Set SYNC_SCHEDULE_ENABLED=true to enable")
        return scheduler

    for definition in _job_definitions(settings):
        # One run of each job at a time
        scheduler.add_job(args=[orchestrator], replace_existing=True, max_instances=1, **definition)
        logger.info(f"Scheduled job '{definition['name']}' ({definition['trigger']})")

    return scheduler


async def start_scheduler(orchestrator: SyncOrchestrator, settings: Optional[Settings] = None) -> AsyncIOScheduler:
    instance = create_scheduler(orchestrator, settings)
    if not instance.running:
        instance.start()
        logger.info(f"Scheduler started with {len(instance.get_jobs())} jobs")
    return instance


async def stop_scheduler():
    global scheduler

    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
    scheduler = None


def get_scheduler_status() -> Dict[str, Any]:
    if scheduler is None:
        return {"status": "not_initialized", "jobs": []}

    return {
        "status": "running" if scheduler.running else "stopped",
        "jobs": [
            {
                "id": job.id,
                "name": job.name,
                # Pending jobs of a scheduler that was never started have no next run yet
                "next_run": job.next_run_time.isoformat() if getattr(job, "next_run_time", None) else None,
                "trigger": str(job.trigger),
            }
            for job in scheduler.get_jobs()
        ],
    }
