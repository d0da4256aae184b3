"""Overdue detection and the penalty, reset and delete sequence."""

import logging
from collections.abc import Iterable
from datetime import datetime

from taskcycle.core.errors import TaskcycleError
from taskcycle.core.logging import log_with_task_context
from taskcycle.domain.task import Task
from taskcycle.models.service_models import ReconcileFailure
from taskcycle.modules.tasks.deadlines import is_overdue
from taskcycle.modules.tasks.idempotency import IdempotencyGuard
from taskcycle.modules.tasks.recurrence import RecurrenceResetter
from taskcycle.modules.tasks.stats_ledger import StatsLedger


logger = logging.getLogger(__name__)


class OverdueStageError(TaskcycleError):
    """Processing of one overdue task failed at ``stage``."""

    def __init__(self, task_id: str, stage: str, cause: Exception) -> None:
        super().__init__(f"Overdue processing of {task_id} failed during {stage}: {cause}")
        self.task_id = task_id
        self.stage = stage


class OverdueScanner:
    """Applies each overdue event exactly once: claim, penalize, then reset or delete."""

    def __init__(self, *, guard: IdempotencyGuard, resetter: RecurrenceResetter, ledger: StatsLedger) -> None:
        self._guard = guard
        self._resetter = resetter
        self._ledger = ledger

    async def process(self, task: Task, now: datetime) -> bool:
        """Handle one task; True if this call applied its overdue transition.

        Raises:
            OverdueStageError: If a store call failed; a failed penalty leaves the
                marker released, a failed reset leaves it set for recovery
        """
        if task.deadline is None or not is_overdue(task.deadline, task.completed, now):
            return False

        if task.overdue_processed:
            if not self._guard.is_abandoned_claim(task, now):
                return False
            # Penalty already applied by the claim holder; only the reset is left
            return await self._finish(task, now, recovered=True)

        try:
            claimed = await self._guard.claim(task, now)
        except Exception as e:
            raise OverdueStageError(task.id, "claim", e) from e
        if claimed is None:
            return False

        if claimed.assigned_to:
            try:
                await self._ledger.penalize(
                    claimed.group_id,
                    claimed.assigned_to,
                    overdue_delta=1,
                    stars_delta=-claimed.difficulty,
                )
            except Exception as e:
                try:
                    await self._guard.release(claimed.id)
                except TaskcycleError:
                    logger.exception("Failed to release overdue claim", extra={"task_id": claimed.id})
                raise OverdueStageError(claimed.id, "penalty", e) from e

        return await self._finish(claimed, now, recovered=False)

    async def _finish(self, task: Task, now: datetime, *, recovered: bool) -> bool:
        outcome = self._resetter.apply(task, now)
        try:
            applied = await self._resetter.execute(outcome, expected_version=task.version)
        except Exception as e:
            raise OverdueStageError(task.id, "reset", e) from e

        log_with_task_context(
            logger,
            "info",
            "Recovered abandoned overdue claim" if recovered else "Processed overdue task",
            task_id=task.id,
            group_id=task.group_id,
            assigned_to=task.assigned_to,
            outcome=type(outcome).__name__.lower(),
            applied=applied,
        )
        return applied

    async def scan(self, tasks: Iterable[Task], now: datetime) -> tuple[list[str], list[ReconcileFailure]]:
        """Process every task, collecting failures instead of stopping at the first one."""
        processed: list[str] = []
        failures: list[ReconcileFailure] = []
        for task in tasks:
            try:
                if await self.process(task, now):
                    processed.append(task.id)
            except OverdueStageError as e:
                logger.error(
                    "Overdue processing failed",
                    extra={"task_id": e.task_id, "stage": e.stage, "error": str(e.__cause__)},
                )
                failures.append(ReconcileFailure(task_id=e.task_id, stage=e.stage, error=str(e.__cause__)))
        return processed, failures
