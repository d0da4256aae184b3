"""Scheduler for the periodic reconcile timer and deferred task jobs."""

import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.schedulers.base import STATE_PAUSED, STATE_STOPPED
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger


logger = logging.getLogger(__name__)

JobFunc = Callable[..., Awaitable[Any]]


class TaskScheduler:
    """Thin wrapper over APScheduler's AsyncIOScheduler keyed by explicit job ids.

    ``stop`` discards pending jobs and pauses the underlying scheduler, so a
    following ``start`` resumes it in the same event loop.
    """

    def __init__(self, scheduler: AsyncIOScheduler | None = None) -> None:
        self._scheduler = scheduler or AsyncIOScheduler(timezone=UTC)
        self._started = False

    @property
    def running(self) -> bool:
        return self._started

    def start(self) -> None:
        """Start (or resume) the scheduler inside the running event loop."""
        if self._started:
            return
        logger.info("Starting scheduler")
        if self._scheduler.state == STATE_STOPPED:
            self._scheduler.start()
        elif self._scheduler.state == STATE_PAUSED:
            self._scheduler.resume()
        self._started = True
        logger.info("Scheduler started successfully")

    def stop(self) -> None:
        """Stop the scheduler, discarding jobs that have not run."""
        if not self._started:
            return
        logger.info("Stopping scheduler")
        self._started = False
        self._scheduler.remove_all_jobs()
        self._scheduler.pause()
        logger.info("Scheduler stopped")

    def add_interval_job(
        self,
        job_id: str,
        func: JobFunc,
        *,
        seconds: float,
        kwargs: dict[str, Any] | None = None,
        name: str | None = None,
    ) -> None:
        """Register (or replace) a job that runs every ``seconds``."""
        self._scheduler.add_job(
            func,
            trigger=IntervalTrigger(seconds=seconds),
            id=job_id,
            name=name or job_id,
            kwargs=kwargs or {},
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        logger.info("Scheduled interval job %s: every %ss", job_id, seconds)

    def schedule_once(
        self,
        job_id: str,
        run_at: datetime,
        func: JobFunc,
        *,
        kwargs: dict[str, Any] | None = None,
        name: str | None = None,
    ) -> None:
        """Register (or replace) a job that runs once at ``run_at``."""
        self._scheduler.add_job(
            func,
            trigger=DateTrigger(run_date=run_at),
            id=job_id,
            name=name or job_id,
            kwargs=kwargs or {},
            replace_existing=True,
            misfire_grace_time=None,
        )
        logger.debug("Scheduled one-off job %s at %s", job_id, run_at.isoformat())

    def cancel(self, job_id: str) -> bool:
        """Remove a job; False when no such job was pending."""
        try:
            self._scheduler.remove_job(job_id)
        except JobLookupError:
            return False
        logger.debug("Cancelled job %s", job_id)
        return True

    def has_job(self, job_id: str) -> bool:
        return self._scheduler.get_job(job_id) is not None

    def job_ids(self, prefix: str = "") -> list[str]:
        return [job.id for job in self._scheduler.get_jobs() if job.id.startswith(prefix)]
