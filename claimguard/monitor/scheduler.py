"""
Scheduled assignment monitoring.

Every interval:
- Sync assignments of the watched repositories
- Run one monitor cycle over everything tracked
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Optional

from claimguard.errors import ClaimguardError

if TYPE_CHECKING:
    from claimguard.runtime import Runtime

logger = logging.getLogger(__name__)

_scheduler_running = False
_scheduler_task: Optional[asyncio.Task] = None


async def run_cycle(runtime: "Runtime"):
    """Sync watched repositories, then check every tracked assignment."""
    for repository in runtime.settings.repositories:
        try:
            recorded = await runtime.service.sync_repository(repository)
            logger.info(f"Synced {repository}: {len(recorded)} assignments")
        except ClaimguardError as e:
            logger.error(f"Error syncing {repository}: {e}")

    return await runtime.monitor.run()


async def _scheduler_loop(runtime: "Runtime"):
    """Main scheduler loop - runs every CLAIMGUARD_MONITOR_INTERVAL_MINUTES."""
    interval = runtime.settings.monitor_interval_minutes * 60
    logger.info(f"Scheduler started (every {runtime.settings.monitor_interval_minutes:g} minutes)")

    while _scheduler_running:
        try:
            await run_cycle(runtime)
        except asyncio.CancelledError:
            logger.info("Scheduler cancelled")
            break
        except Exception as e:
            # Failed cycle; the next interval retries from scratch
            logger.error(f"Scheduler error: {e}", exc_info=True)

        try:
            await asyncio.sleep(interval)
        except asyncio.CancelledError:
            logger.info("Scheduler cancelled")
            break

    logger.info("Scheduler stopped")


def start_scheduler(runtime: "Runtime"):
    """Start the background scheduler in the running event loop."""
    global _scheduler_running, _scheduler_task

    if _scheduler_running:
        logger.warning("Scheduler already running")
        return

    _scheduler_running = True
    loop = asyncio.get_running_loop()
    _scheduler_task = loop.create_task(_scheduler_loop(runtime))


def stop_scheduler():
    """Stop the background scheduler."""
    global _scheduler_running, _scheduler_task

    if not _scheduler_running:
        return

    _scheduler_running = False
    if _scheduler_task:
        _scheduler_task.cancel()
        _scheduler_task = None
    logger.info("Scheduler stopping")


def is_running() -> bool:
    return _scheduler_running
