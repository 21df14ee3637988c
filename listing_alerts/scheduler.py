"""
Scheduler module for Listing Alerts.

Uses APScheduler for every timed thing in the engine:
- Dwell expiry timers on the "default" executor
- Hot-zone / dwell checks and delivery timers (push sends) on the "network" executor
- Hourly: sweep expired records from the notification logs
"""

import logging
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .config import get_app_config

logger = logging.getLogger(__name__)

NETWORK_WORKERS = 4


def create_scheduler() -> BackgroundScheduler:
    """
    Create the APScheduler used by the engine.

    A single worker runs state callbacks (timers) one at a time. Network
    checks and push sends get their own pool so a slow request never
    delays a timer.

    Returns:
        Configured BackgroundScheduler (not started)
    """
    executors = {
        "default": ThreadPoolExecutor(1),
        "network": ThreadPoolExecutor(NETWORK_WORKERS),
    }
    return BackgroundScheduler(executors=executors)


def add_maintenance_jobs(scheduler: BackgroundScheduler, engine, interval_minutes: int = None) -> None:
    """
    Register periodic jobs for an engine.

    Jobs:
    1. sweep_expired: drop notification records past the retention age
    """
    minutes = interval_minutes or get_app_config().sweep_interval_minutes
    scheduler.add_job(
        run_sweep_job,
        trigger=IntervalTrigger(minutes=minutes),
        args=(engine,),
        id="sweep_expired",
        name="Sweep expired notifications",
        replace_existing=True,
        max_instances=1,
    )
    logger.info(f"Retention sweep scheduled every {minutes} minutes")


def run_sweep_job(engine) -> None:
    """Wrapper for the retention sweep to handle logging."""
    try:
        removed = engine.sweep_expired()
        if removed:
            logger.info(f"Retention sweep removed {removed} records")
        else:
            logger.debug("Retention sweep removed nothing")
    except Exception as e:
        logger.error(f"Retention sweep failed: {e}")
