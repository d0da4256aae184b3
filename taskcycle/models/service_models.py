"""Pydantic models for controller return types.

These models give hosts typed objects at the controller boundary instead of
raw store rows.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from taskcycle.domain.task import SyncStatus, Task, TaskStatus


class ReconcileFailure(BaseModel):
    """One task that could not be processed during a reconcile pass."""

    task_id: str
    stage: str
    error: str


class ReconcileReport(BaseModel):
    """Outcome of a reconcile pass over one group."""

    group_id: str
    now: datetime
    tasks: list[Task] = Field(default_factory=list)
    processed: list[str] = Field(default_factory=list, description="Task IDs whose overdue transition was applied")
    finalized: list[str] = Field(
        default_factory=list, description="Completed task IDs reset or deleted after their grace delay"
    )
    resolved_deadlines: list[str] = Field(default_factory=list, description="Task IDs whose deadline was computed")
    synced: list[str] = Field(default_factory=list, description="Pending-sync task IDs persisted in this pass")
    dropped: list[str] = Field(
        default_factory=list, description="Pending edits discarded because the stored task changed or was deleted"
    )
    failures: list[ReconcileFailure] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


class TaskView(BaseModel):
    """Task projected for display."""

    id: str
    group_id: str
    name: str
    difficulty: int
    assigned_to: str | None
    assignee_name: str
    completed: bool
    recurring: bool
    deadline: datetime | None
    hours_remaining: int | None
    minutes_remaining: int | None
    status: TaskStatus
    is_urgent: bool
    sync_status: SyncStatus


class MemberStanding(BaseModel):
    """Member row of the group standings."""

    user_id: str
    display_name: str
    completed_count: int
    completed_stars: int
    overdue_count: int
    rank: int
