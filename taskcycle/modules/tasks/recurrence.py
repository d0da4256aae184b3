"""Reset or termination of a task after completion or expiry."""

import logging
from datetime import datetime, timedelta
from typing import NamedTuple

from taskcycle.domain.task import Task
from taskcycle.stores.base import TaskStore


logger = logging.getLogger(__name__)


class Reset(NamedTuple):
    task: Task


class Delete(NamedTuple):
    task_id: str


Outcome = Reset | Delete


class RecurrenceResetter:
    """Computes and persists the next state of a finished task."""

    def __init__(self, store: TaskStore) -> None:
        self._store = store

    def apply(self, task: Task, now: datetime) -> Outcome:
        """Recurring tasks restart ``original_duration_days`` after ``now``; others are deleted."""
        if not task.recurring:
            return Delete(task.id)

        return Reset(
            task.model_copy(
                update={
                    "deadline": now + timedelta(days=task.original_duration_days),
                    "days_remaining": task.original_duration_days,
                    "completed": False,
                    "completed_at": None,
                    "completed_by": None,
                    "overdue_processed": False,
                    "overdue_claimed_at": None,
                }
            )
        )

    async def execute(self, outcome: Outcome, *, expected_version: int | None = None) -> bool:
        """Persist ``outcome``; False when a versioned reset lost to a concurrent write."""
        if isinstance(outcome, Delete):
            deleted = await self._store.delete(outcome.task_id)
            if not deleted:
                logger.debug("Task already deleted", extra={"task_id": outcome.task_id})
            return True

        stored = await self._store.upsert(outcome.task, expected_version=expected_version)
        if stored is None:
            return False
        logger.info(
            "Reset recurring task",
            extra={"task_id": stored.id, "deadline": stored.deadline.isoformat() if stored.deadline else None},
        )
        return True
