"""Durable once-only guard for overdue processing."""

import logging
from datetime import UTC, datetime, timedelta

from taskcycle.core.config import Constants
from taskcycle.domain.task import Task
from taskcycle.stores.base import TaskStore


logger = logging.getLogger(__name__)


class IdempotencyGuard:
    """Overdue marker kept on the task row itself.

    The marker is claimed with a conditional update on the task's version, so
    at most one of several interleaving triggers wins a given overdue event.
    """

    def __init__(self, store: TaskStore, *, lease_seconds: float | None = None) -> None:
        self._store = store
        self._lease = timedelta(
            seconds=Constants.OVERDUE_CLAIM_LEASE_SECONDS if lease_seconds is None else lease_seconds
        )

    def should_process(self, task: Task) -> bool:
        return not task.completed and not task.overdue_processed

    async def claim(self, task: Task, now: datetime) -> Task | None:
        """Set the marker if ``task`` is unchanged since it was read; the claimed row or None."""
        if not self.should_process(task):
            return None
        claimed = await self._store.claim_overdue(task.id, task.version, now)
        if claimed is None:
            logger.info("Overdue claim lost", extra={"task_id": task.id, "version": task.version})
        return claimed

    async def mark_processed(self, task: Task, now: datetime | None = None) -> bool:
        return await self.claim(task, now or datetime.now(UTC)) is not None

    async def clear(self, task_id: str) -> None:
        await self._store.set_overdue_processed(task_id, False)

    async def release(self, task_id: str) -> None:
        """Undo a claim whose penalty could not be applied."""
        await self._store.set_overdue_processed(task_id, False)
        logger.warning("Released overdue claim", extra={"task_id": task_id})

    def is_abandoned_claim(self, task: Task, now: datetime) -> bool:
        """Marker set on an active task whose reset never happened within the lease."""
        if task.completed or not task.overdue_processed:
            return False
        if task.overdue_claimed_at is None:
            return True
        return now - task.overdue_claimed_at >= self._lease
