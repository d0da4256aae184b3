"""Task domain models and enums."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field


class TaskStatus(StrEnum):
    """Derived lifecycle classification of a task at a given instant."""

    ACTIVE = "active"
    COMPLETED = "completed"
    OVERDUE = "overdue"


class SyncStatus(StrEnum):
    """Whether the record is known to be persisted in the durable store."""

    SYNCED = "synced"
    PENDING_SYNC = "pending_sync"


class Task(BaseModel):
    """Task data transfer object."""

    id: str = Field(..., description="Unique task ID (uuid4 hex), stable across recurring resets")
    group_id: str = Field(..., description="Owning group ID")
    name: str = Field(..., description="Task name (e.g., 'Take out the trash')")
    difficulty: int = Field(..., ge=1, le=5, description="Difficulty weight in stars")
    created_by: str | None = Field(default=None, description="Member who created the task")
    assigned_to: str | None = Field(default=None, description="Assigned member ID, None when anyone may complete it")
    completed: bool = Field(default=False, description="Completion flag")
    recurring: bool = Field(default=False, description="Reset instead of terminating on completion or expiry")
    deadline: datetime | None = Field(default=None, description="Absolute deadline; resolvable when missing")
    days_remaining: int | None = Field(default=None, description="Day count used to resolve a missing deadline")
    original_duration_days: int = Field(default=1, ge=1, description="Reset interval for recurring tasks")
    overdue_processed: bool = Field(default=False, description="Overdue idempotency marker")
    overdue_claimed_at: datetime | None = Field(default=None, description="When the overdue marker was set")
    created_at: datetime = Field(..., description="Creation timestamp")
    completed_at: datetime | None = Field(default=None, description="When the task last became completed")
    completed_by: str | None = Field(default=None, description="Member credited for the completion")
    version: int = Field(default=0, description="Store-side write counter")
    sync_status: SyncStatus = Field(default=SyncStatus.SYNCED, description="Persistence state of this record")

    @property
    def is_synced(self) -> bool:
        return self.sync_status == SyncStatus.SYNCED

    def status_at(self, now: datetime) -> TaskStatus:
        """Classify the task at ``now``; overdue applies only to active tasks."""
        if self.completed:
            return TaskStatus.COMPLETED
        if self.deadline is not None and self.deadline <= now:
            return TaskStatus.OVERDUE
        return TaskStatus.ACTIVE


class TaskInput(BaseModel):
    """Caller-supplied fields for creating or editing a task.

    Values are validated by the controller so that bad input surfaces as
    ``taskcycle.core.errors.ValidationError``.
    """

    name: str
    difficulty: int = 3
    deadline_date: str = Field(..., description="Deadline date as YYYY-MM-DD")
    deadline_time: str = Field(..., description="Deadline time as HH:MM")
    assigned_to: str | None = None
    recurring: bool = True
