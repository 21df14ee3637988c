"""
Cancellable keyed timers on top of APScheduler.

Every timer is a one-shot date-trigger job whose job id is derived from a
caller-chosen key. Arming a key always removes the existing job first, so
at most one live timer exists per key.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.jobstores.base import JobLookupError
from apscheduler.triggers.date import DateTrigger

logger = logging.getLogger(__name__)


class TimerRegistry:
    """
    Keyed one-shot timers.

    Usage:
        timers = TimerRegistry(scheduler, namespace="dwell")
        timers.arm("current", 180, on_dwell_expired)
        timers.cancel("current")
    """

    def __init__(
        self,
        scheduler: BaseScheduler,
        namespace: str,
        executor: str = "default",
    ):
        self.scheduler = scheduler
        self.namespace = namespace
        self.executor = executor

    def _job_id(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def arm(self, key: str, delay_seconds: float, func: Callable, *args) -> datetime:
        """
        Arm a timer, replacing any pending timer with the same key.

        Returns:
            The datetime the timer is due
        """
        self.cancel(key)

        run_date = datetime.now() + timedelta(seconds=max(0.0, delay_seconds))
        self.scheduler.add_job(
            self._run,
            trigger=DateTrigger(run_date=run_date),
            id=self._job_id(key),
            name=f"{self.namespace} timer {key}",
            args=(key, func, args),
            executor=self.executor,
            misfire_grace_time=None,
            replace_existing=True,
        )
        logger.debug(f"Armed {self._job_id(key)} for {delay_seconds:.0f}s")
        return run_date

    def run_soon(self, key: str, func: Callable, *args) -> None:
        """Run func as soon as an executor thread is free."""
        self.scheduler.add_job(
            self._run,
            id=self._job_id(key),
            name=f"{self.namespace} task {key}",
            args=(key, func, args),
            executor=self.executor,
            misfire_grace_time=None,
            replace_existing=True,
        )

    def cancel(self, key: str) -> bool:
        """Remove a pending timer without firing it. Returns True if one existed."""
        try:
            self.scheduler.remove_job(self._job_id(key))
        except JobLookupError:
            return False
        logger.debug(f"Cancelled {self._job_id(key)}")
        return True

    def is_armed(self, key: str) -> bool:
        return self.scheduler.get_job(self._job_id(key)) is not None

    def due_at(self, key: str) -> Optional[datetime]:
        """When the pending timer for key is due, or None."""
        job = self.scheduler.get_job(self._job_id(key))
        if job is None:
            return None
        run_date = getattr(job.trigger, "run_date", None)
        return run_date.replace(tzinfo=None) if run_date else None

    def pending_keys(self) -> list[str]:
        prefix = f"{self.namespace}:"
        return [
            job.id[len(prefix):]
            for job in self.scheduler.get_jobs()
            if job.id.startswith(prefix)
        ]

    def cancel_all(self) -> int:
        """Cancel every pending timer in this namespace."""
        cancelled = 0
        for key in self.pending_keys():
            if self.cancel(key):
                cancelled += 1
        return cancelled

    def _run(self, key: str, func: Callable, args: tuple) -> None:
        try:
            func(*args)
        except Exception as e:
            logger.error(f"Timer {self._job_id(key)} failed: {e}", exc_info=True)
