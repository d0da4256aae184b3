"""Task lifecycle controller.

Single entry point for task mutations and reconciliation. Every trigger (the
periodic timer, change notifications and manual refresh) funnels into
``reconcile``, which is safe to run any number of times and concurrently:
overdue events are applied once through the durable marker on the task row,
and deferred completions re-check the task version before acting.
"""

import logging
import uuid
from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import datetime, timedelta
from typing import Any

from taskcycle.core.clock import Clock, system_clock
from taskcycle.core.config import Constants, settings
from taskcycle.core.errors import Forbidden, NotFound, StorageUnavailable, ValidationError
from taskcycle.core.logging import log_with_task_context, span
from taskcycle.core.scheduler import TaskScheduler
from taskcycle.domain.task import SyncStatus, Task, TaskInput
from taskcycle.models.service_models import MemberStanding, ReconcileFailure, ReconcileReport, TaskView
from taskcycle.modules.tasks.analytics import (
    AssignedSort,
    build_task_view,
    rank_standings,
    sort_assigned,
    sort_by_deadline,
)
from taskcycle.modules.tasks.deadlines import duration_days, parse_deadline, resolve_deadline
from taskcycle.modules.tasks.idempotency import IdempotencyGuard
from taskcycle.modules.tasks.overdue import OverdueScanner
from taskcycle.modules.tasks.recurrence import RecurrenceResetter
from taskcycle.modules.tasks.scheduler_jobs import (
    deferred_completion_job_id,
    finalize_completion,
    reconcile_group,
    reconcile_job_id,
)
from taskcycle.modules.tasks.stats_ledger import StatsLedger
from taskcycle.stores.base import ChangeEvent, ChangeNotifier, MemberDirectory, StatsStore, TaskStore, Unsubscribe
from taskcycle.stores.members import UNASSIGNED_NAME, StaticMemberDirectory


logger = logging.getLogger(__name__)

_CLEAR_OVERDUE_MARKER: dict[str, Any] = {"overdue_processed": False, "overdue_claimed_at": None}
_UNCOMPLETE: dict[str, Any] = {"completed": False, "completed_at": None, "completed_by": None}


def _dedupe(tasks: Iterable[Task]) -> list[Task]:
    """Drop repeated IDs, keeping the first occurrence."""
    seen: dict[str, Task] = {}
    for task in tasks:
        seen.setdefault(task.id, task)
    return list(seen.values())


class TaskLifecycleController:
    """Create, edit, delete and complete tasks, and reconcile a group's task set."""

    def __init__(
        self,
        *,
        task_store: TaskStore,
        stats_store: StatsStore,
        members: MemberDirectory | None = None,
        notifier: ChangeNotifier | None = None,
        scheduler: TaskScheduler | None = None,
        clock: Clock | None = None,
        completion_grace_seconds: float | None = None,
        reconcile_interval_seconds: float | None = None,
        timezone: str | None = None,
    ) -> None:
        self._tasks = task_store
        self._members = members or StaticMemberDirectory()
        self._notifier = notifier
        self._owns_scheduler = scheduler is None
        self._scheduler = scheduler or TaskScheduler()
        self._clock = clock or system_clock
        self._grace = timedelta(
            seconds=settings.completion_grace_seconds if completion_grace_seconds is None else completion_grace_seconds
        )
        self._reconcile_interval = reconcile_interval_seconds or settings.reconcile_interval_seconds
        self._timezone = timezone or settings.timezone

        self.guard = IdempotencyGuard(task_store)
        self.resetter = RecurrenceResetter(task_store)
        self.ledger = StatsLedger(stats_store)
        self.scanner = OverdueScanner(guard=self.guard, resetter=self.resetter, ledger=self.ledger)

        # Records whose create or edit could not be persisted, keyed by task ID
        self._pending: dict[str, Task] = {}
        self._subscriptions: dict[str, Unsubscribe] = {}
        self._watched: set[str] = set()
        self._stopped = False

    def pending(self, group_id: str | None = None) -> list[Task]:
        """Unsynced records, optionally limited to one group."""
        return [task for task in self._pending.values() if group_id is None or task.group_id == group_id]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _validated_fields(self, task_input: TaskInput, now: datetime) -> dict[str, Any]:
        name = task_input.name.strip()
        if not name:
            msg = "Task name is required"
            raise ValidationError(msg)
        if not Constants.MIN_DIFFICULTY <= task_input.difficulty <= Constants.MAX_DIFFICULTY:
            msg = (
                f"Difficulty must be between {Constants.MIN_DIFFICULTY} and {Constants.MAX_DIFFICULTY}, "
                f"got {task_input.difficulty}"
            )
            raise ValidationError(msg)

        deadline = parse_deadline(task_input.deadline_date, task_input.deadline_time, self._timezone)
        if deadline <= now:
            msg = "Deadline must be in the future"
            raise ValidationError(msg)

        duration = duration_days(deadline, now)
        return {
            "name": name,
            "difficulty": task_input.difficulty,
            "deadline": deadline,
            "days_remaining": duration,
            "original_duration_days": duration,
            "assigned_to": task_input.assigned_to or None,
            "recurring": task_input.recurring,
        }

    def _keep_pending(self, task: Task) -> Task:
        pending = task.model_copy(update={"sync_status": SyncStatus.PENDING_SYNC})
        self._pending[task.id] = pending
        log_with_task_context(
            logger, "warning", "Storage unavailable, keeping task as pending sync", task_id=task.id, group_id=task.group_id
        )
        return pending

    async def _update(
        self,
        task_id: str,
        change: Callable[[Task], Task],
        *,
        keep_pending_on_failure: bool = False,
    ) -> tuple[Task, Task]:
        """Read, change and write a task under its version; returns (previous, stored)."""
        for attempt in range(Constants.WRITE_RETRY_ATTEMPTS):
            current = await self._tasks.get(task_id)
            if current is None:
                msg = f"Task {task_id} not found"
                raise NotFound(msg)

            updated = change(current)
            try:
                stored = await self._tasks.upsert(updated, expected_version=current.version)
            except StorageUnavailable:
                if keep_pending_on_failure:
                    return current, self._keep_pending(updated)
                raise
            if stored is not None:
                return current, stored
            logger.info("Task changed concurrently, retrying write", extra={"task_id": task_id, "attempt": attempt + 1})

        msg = f"Task {task_id} kept changing concurrently; write abandoned"
        raise StorageUnavailable(msg)

    async def create(self, group_id: str, task_input: TaskInput, acting_user_id: str) -> Task:
        """Create an active task.

        Raises:
            ValidationError: If the name, difficulty or deadline is invalid
        """
        with span("controller.create", group_id=group_id):
            now = self._clock.now()
            task = Task(
                id=uuid.uuid4().hex,
                group_id=group_id,
                created_by=acting_user_id,
                created_at=now,
                **self._validated_fields(task_input, now),
            )
            try:
                stored = await self._tasks.upsert(task)
            except StorageUnavailable:
                return self._keep_pending(task)

            logger.info("Created task: %s (assigned to: %s)", task.name, task.assigned_to or "unassigned")
            return stored or task

    async def edit(self, task_id: str, task_input: TaskInput) -> Task:
        """Replace the editable fields of a task and restart its duration.

        An edited task is active again: a completion still waiting for its
        grace delay is dropped without resetting or deleting the task, and
        its credit is kept.

        Raises:
            ValidationError: If the name, difficulty or deadline is invalid
            NotFound: If the task does not exist
        """
        with span("controller.edit", task_id=task_id):
            now = self._clock.now()
            fields = {**self._validated_fields(task_input, now), **_CLEAR_OVERDUE_MARKER, **_UNCOMPLETE}

            if task_id in self._pending:
                updated = self._pending[task_id].model_copy(update=fields)
                self._pending[task_id] = updated
                return updated

            self._scheduler.cancel(deferred_completion_job_id(task_id))
            _, stored = await self._update(
                task_id,
                lambda current: current.model_copy(update=fields),
                keep_pending_on_failure=True,
            )
            logger.info("Edited task %s", task_id)
            return stored

    async def delete(self, task_id: str) -> None:
        """Delete a task, first taking back the credit of a completed one.

        Deleting a task that no longer exists is not an error.
        """
        with span("controller.delete", task_id=task_id):
            self._scheduler.cancel(deferred_completion_job_id(task_id))
            if self._pending.pop(task_id, None) is not None:
                logger.info("Dropped pending task %s", task_id)

            for attempt in range(Constants.WRITE_RETRY_ATTEMPTS):
                task = await self._tasks.get(task_id)
                if task is None:
                    logger.info("Task %s already deleted", task_id)
                    return

                # Only the call that removed this exact version takes back its credit
                if await self._tasks.delete(task_id, expected_version=task.version):
                    break
                logger.info(
                    "Task changed concurrently, retrying delete", extra={"task_id": task_id, "attempt": attempt + 1}
                )
            else:
                msg = f"Task {task_id} kept changing concurrently; delete abandoned"
                raise StorageUnavailable(msg)

            log_with_task_context(logger, "info", "Deleted task", task_id=task_id, group_id=task.group_id)
            if task.completed:
                credited = task.completed_by or task.assigned_to
                if credited:
                    await self.ledger.reverse_credit(task.group_id, credited, task.difficulty)

    async def toggle_completion(self, task_id: str, acting_user_id: str) -> Task:
        """Complete an active task or reopen a completed one.

        Completing credits the member and schedules the deferred reset or
        deletion. Reopening only clears the flag.

        Raises:
            Forbidden: If the task is assigned to someone other than ``acting_user_id``
            NotFound: If the task does not exist
            StorageUnavailable: If the task has not been persisted yet
        """
        with span("controller.toggle_completion", task_id=task_id, user_id=acting_user_id):
            if task_id in self._pending:
                msg = f"Task {task_id} has not been saved yet"
                raise StorageUnavailable(msg)

            now = self._clock.now()

            def _toggle(current: Task) -> Task:
                if current.assigned_to and current.assigned_to != acting_user_id:
                    msg = f"Task {task_id} is assigned to another member"
                    raise Forbidden(msg, task_id=task_id, user_id=acting_user_id)
                if current.completed:
                    return current.model_copy(update=_UNCOMPLETE)
                return current.model_copy(
                    update={
                        "completed": True,
                        "completed_at": now,
                        "completed_by": current.assigned_to or acting_user_id,
                        **_CLEAR_OVERDUE_MARKER,
                    }
                )

            _, stored = await self._update(task_id, _toggle)

            if not stored.completed:
                self._scheduler.cancel(deferred_completion_job_id(task_id))
                logger.info("Reopened task %s", task_id)
                return stored

            await self._credit_completion(stored)
            self._schedule_deferred_completion(stored)
            logger.info("Completed task %s (credited: %s)", task_id, stored.completed_by)
            return stored

    async def _credit_completion(self, task: Task) -> None:
        credited = task.completed_by or ""
        try:
            await self.ledger.credit(task.group_id, credited, stars_delta=task.difficulty, count_delta=1)
        except StorageUnavailable:
            logger.error("Credit failed, reverting completion", extra={"task_id": task.id})
            try:
                await self._tasks.upsert(task.model_copy(update=_UNCOMPLETE), expected_version=task.version)
            except StorageUnavailable:
                logger.exception("Failed to revert completion", extra={"task_id": task.id})
            raise

    def _schedule_deferred_completion(self, task: Task) -> None:
        run_at = (task.completed_at or self._clock.now()) + self._grace
        self._scheduler.schedule_once(
            deferred_completion_job_id(task.id),
            run_at,
            finalize_completion,
            kwargs={"controller": self, "task_id": task.id, "expected_version": task.version},
        )

    async def _finalize(self, task: Task, base: datetime) -> bool:
        outcome = self.resetter.apply(task, base)
        return await self.resetter.execute(outcome, expected_version=task.version)

    async def run_deferred_completion(self, task_id: str, expected_version: int) -> bool:
        """Reset or delete a completed task if it is unchanged since completion."""
        if self._stopped:
            logger.debug("Controller stopped, skipping deferred completion of %s", task_id)
            return False

        task = await self._tasks.get(task_id)
        if task is None or not task.completed or task.version != expected_version:
            logger.debug("Deferred completion of %s no longer applies", task_id)
            return False
        # Completion time is the reset base for the on-time path
        return await self._finalize(task, task.completed_at or self._clock.now())

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def _sync_pending(self, group_id: str, report: ReconcileReport) -> None:
        for task in self.pending(group_id):
            synced = task.model_copy(update={"sync_status": SyncStatus.SYNCED})
            # Pending edits carry the version they were based on; unsaved creates carry 0
            expected_version = task.version or None
            try:
                stored = await self._tasks.upsert(synced, expected_version=expected_version)
            except StorageUnavailable as e:
                report.failures.append(ReconcileFailure(task_id=task.id, stage="sync", error=str(e)))
                continue
            self._pending.pop(task.id, None)
            if stored is None:
                log_with_task_context(
                    logger, "warning", "Dropped pending edit of a task changed or deleted meanwhile", task_id=task.id
                )
                report.dropped.append(task.id)
                continue
            report.synced.append(task.id)

    async def _resolve_deadlines(self, tasks: list[Task], report: ReconcileReport) -> list[Task]:
        resolved: list[Task] = []
        for task in tasks:
            if task.deadline is not None:
                resolved.append(task)
                continue

            updated = task.model_copy(
                update={
                    "deadline": resolve_deadline(
                        created_at=task.created_at,
                        stored_deadline=None,
                        days_remaining=task.days_remaining,
                    )
                }
            )
            try:
                stored = await self._tasks.upsert(updated, expected_version=task.version)
            except StorageUnavailable as e:
                report.failures.append(ReconcileFailure(task_id=task.id, stage="resolve_deadline", error=str(e)))
                stored = None
            resolved.append(stored or updated)
            report.resolved_deadlines.append(task.id)
        return resolved

    async def _finalize_stale_completions(self, tasks: list[Task], now: datetime, report: ReconcileReport) -> None:
        """Finish completions whose deferred job never ran (e.g. after a restart)."""
        for task in tasks:
            if not task.completed or task.completed_at is None or task.completed_at + self._grace > now:
                continue
            self._scheduler.cancel(deferred_completion_job_id(task.id))
            try:
                # A late finalize restarts from now so the task does not come back already overdue
                if await self._finalize(task, now):
                    report.finalized.append(task.id)
            except StorageUnavailable as e:
                report.failures.append(ReconcileFailure(task_id=task.id, stage="finalize", error=str(e)))

    def _merge_pending(self, group_id: str, tasks: list[Task]) -> list[Task]:
        pending = {task.id: task for task in self.pending(group_id)}
        merged = [pending.pop(task.id, task) for task in tasks]
        return merged + list(pending.values())

    async def reconcile_with_report(self, group_id: str, now: datetime | None = None) -> ReconcileReport:
        """Bring a group's tasks up to date at ``now``.

        Retries pending-sync records, fills in missing deadlines, finishes
        stale completions and applies each overdue event once. Failures of
        individual tasks are collected in the report.

        Raises:
            StorageUnavailable: If the group's tasks cannot be listed
        """
        with span("controller.reconcile", group_id=group_id):
            now = now or self._clock.now()
            report = ReconcileReport(group_id=group_id, now=now)

            await self._sync_pending(group_id, report)

            tasks = _dedupe(await self._tasks.list_by_group(group_id))
            tasks = await self._resolve_deadlines(tasks, report)
            await self._finalize_stale_completions(tasks, now, report)

            processed, failures = await self.scanner.scan(tasks, now)
            report.processed.extend(processed)
            report.failures.extend(failures)

            if report.processed or report.finalized:
                tasks = _dedupe(await self._tasks.list_by_group(group_id))
            report.tasks = self._merge_pending(group_id, tasks)

            logger.info(
                "Reconciled group %s",
                group_id,
                extra={
                    "tasks": len(report.tasks),
                    "processed": len(report.processed),
                    "finalized": len(report.finalized),
                    "resolved_deadlines": len(report.resolved_deadlines),
                    "synced": len(report.synced),
                    "failures": len(report.failures),
                },
            )
            return report

    async def reconcile(self, group_id: str, now: datetime | None = None) -> list[Task]:
        report = await self.reconcile_with_report(group_id, now)
        return report.tasks

    async def refresh(self, group_id: str) -> list[Task]:
        """Manual refresh trigger."""
        return await self.reconcile(group_id)

    async def _on_change(self, event: ChangeEvent) -> None:
        logger.debug("Change on %s/%s, reconciling", event.table, event.record_id, extra={"group_id": event.group_id})
        await self.reconcile(event.group_id)

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    async def start(self, group_ids: Sequence[str]) -> None:
        """Watch groups with the periodic timer and change notifications."""
        self._stopped = False
        for group_id in group_ids:
            if group_id in self._watched:
                continue
            self._scheduler.add_interval_job(
                reconcile_job_id(group_id),
                reconcile_group,
                seconds=self._reconcile_interval,
                kwargs={"controller": self, "group_id": group_id},
            )
            if self._notifier is not None:
                self._subscriptions[group_id] = await self._notifier.subscribe(group_id, self._on_change)
            self._watched.add(group_id)
            logger.info("Watching group %s", group_id)
        self._scheduler.start()

    async def stop(self) -> None:
        """Stop every trigger; deferred completions not yet run become no-ops."""
        self._stopped = True
        for job_id in self._scheduler.job_ids(f"{Constants.DEFERRED_COMPLETION_JOB_PREFIX}:"):
            self._scheduler.cancel(job_id)
        for group_id in self._watched:
            self._scheduler.cancel(reconcile_job_id(group_id))
        for unsubscribe in self._subscriptions.values():
            await unsubscribe()
        self._subscriptions.clear()
        self._watched.clear()
        if self._owns_scheduler:
            self._scheduler.stop()
        logger.info("Task lifecycle controller stopped")

    # ------------------------------------------------------------------
    # Projections
    # ------------------------------------------------------------------

    async def _display_names(self, user_ids: Iterable[str | None]) -> dict[str, str]:
        names: dict[str, str] = {}
        for user_id in user_ids:
            if user_id and user_id not in names:
                names[user_id] = await self._members.resolve_display_name(user_id)
        return names

    async def task_views(self, group_id: str, now: datetime | None = None) -> list[TaskView]:
        """A group's tasks for display, most urgent first."""
        now = now or self._clock.now()
        tasks = self._merge_pending(group_id, _dedupe(await self._tasks.list_by_group(group_id)))
        names = await self._display_names(task.assigned_to for task in tasks)
        return [
            build_task_view(
                task,
                now=now,
                assignee_name=names[task.assigned_to] if task.assigned_to else UNASSIGNED_NAME,
            )
            for task in sort_by_deadline(tasks)
        ]

    async def standings(self, group_id: str) -> list[MemberStanding]:
        stats = await self.ledger.standings(group_id)
        names = await self._display_names(stat.user_id for stat in stats)
        return rank_standings(stats, names)

    async def assigned_tasks(
        self,
        user_id: str,
        group_ids: Sequence[str],
        sort_by: AssignedSort | str = AssignedSort.DEADLINE,
        *,
        group_names: Mapping[str, str] | None = None,
        now: datetime | None = None,
    ) -> list[TaskView]:
        """Tasks assigned to ``user_id`` across ``group_ids``."""
        now = now or self._clock.now()
        tasks = _dedupe(await self._tasks.list_assigned(user_id, group_ids))
        stored_ids = {task.id for task in tasks}
        tasks += [
            task
            for task in self._pending.values()
            if task.assigned_to == user_id and task.group_id in group_ids and task.id not in stored_ids
        ]
        display_name = await self._members.resolve_display_name(user_id)
        return [
            build_task_view(task, now=now, assignee_name=display_name)
            for task in sort_assigned(tasks, sort_by, group_names=group_names)
        ]
