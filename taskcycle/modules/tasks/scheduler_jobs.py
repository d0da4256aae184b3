"""Scheduled jobs for the tasks module.

This module provides scheduled jobs for:
- Periodic reconciliation of each watched group
- Deferred reset or deletion of a task after its completion grace delay
"""

import logging
from typing import TYPE_CHECKING

from taskcycle.core.config import Constants
from taskcycle.core.errors import TaskcycleError
from taskcycle.core.logging import span
from taskcycle.core.scheduler_tracker import retry_job_with_backoff


if TYPE_CHECKING:
    from taskcycle.modules.tasks.controller import TaskLifecycleController


logger = logging.getLogger(__name__)


def reconcile_job_id(group_id: str) -> str:
    return f"{Constants.RECONCILE_JOB_PREFIX}:{group_id}"


def deferred_completion_job_id(task_id: str) -> str:
    return f"{Constants.DEFERRED_COMPLETION_JOB_PREFIX}:{task_id}"


async def reconcile_group(*, controller: "TaskLifecycleController", group_id: str) -> None:
    """Reconcile one group on the periodic timer.

    Runs every ``reconcile_interval_seconds`` per watched group, retrying
    transient failures; the job history is kept by the job tracker.
    """

    async def _run() -> None:
        await controller.reconcile(group_id)

    await retry_job_with_backoff(
        _run,
        reconcile_job_id(group_id),
        max_retries=Constants.RECONCILE_JOB_MAX_RETRIES,
        base_delay=Constants.RECONCILE_JOB_BASE_DELAY,
    )


async def finalize_completion(
    *,
    controller: "TaskLifecycleController",
    task_id: str,
    expected_version: int,
) -> None:
    """Reset or delete a completed task once its grace delay has elapsed.

    A failure here is not retried; the next reconcile pass finalizes the task instead.
    """
    with span("scheduler_jobs.finalize_completion", task_id=task_id):
        try:
            await controller.run_deferred_completion(task_id, expected_version)
        except TaskcycleError as e:
            logger.warning(
                "Deferred completion failed, leaving it to the next reconcile",
                extra={"task_id": task_id, "error": str(e)},
            )
