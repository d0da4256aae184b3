"""Job execution tracking and monitoring for scheduled jobs."""

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from taskcycle.core.config import Constants


logger = logging.getLogger(__name__)


class JobTracker:
    """Track job execution history and health status."""

    def __init__(self) -> None:
        self._storage: dict[str, dict[str, Any]] = {}
        self._dead_letter_queue: deque[tuple[str, str, str]] = deque(
            maxlen=Constants.TRACKER_DEAD_LETTER_QUEUE_MAXLEN
        )

    def _entry(self, job_name: str) -> dict[str, Any]:
        return self._storage.setdefault(job_name, {})

    def record_job_start(self, job_name: str) -> None:
        self._entry(job_name)["current_run"] = datetime.now(UTC).isoformat()

    def record_job_success(self, job_name: str) -> None:
        entry = self._entry(job_name)
        entry["last_success"] = datetime.now(UTC).isoformat()
        entry["consecutive_failures"] = 0
        entry["success_count"] = entry.get("success_count", 0) + 1
        entry.pop("current_run", None)

    def record_job_failure(self, job_name: str, error: str) -> int:
        """Record failed job execution and return the consecutive failure count."""
        entry = self._entry(job_name)
        entry["last_failure"] = datetime.now(UTC).isoformat()
        entry["last_error"] = error[:500]
        entry["consecutive_failures"] = entry.get("consecutive_failures", 0) + 1
        entry["failure_count"] = entry.get("failure_count", 0) + 1
        entry.pop("current_run", None)
        return entry["consecutive_failures"]

    def get_job_status(self, job_name: str) -> dict[str, Any]:
        job_data = self._storage.get(job_name, {})
        return {
            "job_name": job_name,
            "last_success": job_data.get("last_success"),
            "last_failure": job_data.get("last_failure"),
            "last_error": job_data.get("last_error"),
            "consecutive_failures": job_data.get("consecutive_failures", 0),
            "success_count": job_data.get("success_count", 0),
            "failure_count": job_data.get("failure_count", 0),
            "currently_running": "current_run" in job_data,
            "current_run_started": job_data.get("current_run"),
        }

    def add_to_dead_letter_queue(self, job_name: str, error: str, context: str) -> None:
        """Add a persistently failing job to the dead letter queue."""
        self._dead_letter_queue.append((job_name, error, context))
        logger.error(
            "Job added to dead letter queue",
            extra={
                "job_name": job_name,
                "error": error,
                "context": context,
                "timestamp": datetime.now(UTC).isoformat(),
            },
        )

    def get_dead_letter_queue(self) -> list[dict[str, str]]:
        return [
            {
                "job_name": job_name,
                "error": error,
                "context": context,
            }
            for job_name, error, context in self._dead_letter_queue
        ]


# Global job tracker instance
job_tracker = JobTracker()


async def retry_job_with_backoff(
    job_func: Callable[[], Awaitable[Any]],
    job_name: str,
    max_retries: int = 3,
    base_delay: float = 2.0,
    tracker: JobTracker | None = None,
) -> bool:
    """Execute job with retry logic and exponential backoff.

    Args:
        job_func: Async function to execute
        job_name: Name of the job for tracking
        max_retries: Maximum number of retry attempts
        base_delay: Base delay in seconds for exponential backoff
        tracker: Tracker to record into (defaults to the global one)

    Returns:
        True if an attempt succeeded
    """
    tracker = tracker or job_tracker
    tracker.record_job_start(job_name)

    last_error = None
    for attempt in range(max_retries):
        try:
            logger.debug("Executing %s (attempt %d/%d)", job_name, attempt + 1, max_retries)
            await job_func()
            tracker.record_job_success(job_name)
            return True
        except Exception as e:
            last_error = str(e)
            logger.error(
                "%s failed on attempt %d/%d: %s",
                job_name,
                attempt + 1,
                max_retries,
                last_error,
            )

            if attempt < max_retries - 1:
                delay = base_delay * (2**attempt)
                logger.info("Retrying %s in %ss", job_name, delay)
                await asyncio.sleep(delay)

    error_msg = f"Failed after {max_retries} attempts: {last_error}"
    consecutive_failures = tracker.record_job_failure(job_name, error_msg)

    logger.error(
        f"{job_name} failed after all retry attempts",
        extra={
            "error": error_msg,
            "consecutive_failures": consecutive_failures,
        },
    )

    if consecutive_failures >= Constants.TRACKER_FAILURE_THRESHOLD:
        tracker.add_to_dead_letter_queue(
            job_name=job_name,
            error=last_error or "Unknown error",
            context=f"Failed {consecutive_failures} consecutive times",
        )
    return False
