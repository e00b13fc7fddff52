"""Background job scheduler for remote status checks."""
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from puffin.sync.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


async def remote_check_job(orchestrator: SyncOrchestrator):
    """Refresh the recorded cloud checksum so divergence stays visible offline."""
    if orchestrator.is_syncing or not orchestrator.state.get_config().is_configured:
        return
    try:
        result = await orchestrator.check_status()
        logger.info(f"Background sync check: {result.reason}")
    except Exception as e:
        logger.error(f"Background sync check failed: {e}")


def start_scheduler(orchestrator: SyncOrchestrator, interval_minutes: int):
    """Start the background scheduler. An interval of 0 disables the check."""
    if interval_minutes <= 0:
        logger.info("Background sync check disabled")
        return
    scheduler.add_job(
        remote_check_job,
        trigger=IntervalTrigger(minutes=interval_minutes),
        args=[orchestrator],
        id="remote_sync_check",
        replace_existing=True,
    )
    scheduler.start()
    logger.info(f"Scheduler started, checking Drive every {interval_minutes} minutes")


def shutdown_scheduler():
    """Graceful shutdown."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler shut down")
