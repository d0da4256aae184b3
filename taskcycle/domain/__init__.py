"""Domain models and DTOs."""

from taskcycle.domain.stats import MemberStat, StatsDelta
from taskcycle.domain.task import SyncStatus, Task, TaskInput, TaskStatus


__all__ = [
    "MemberStat",
    "StatsDelta",
    "SyncStatus",
    "Task",
    "TaskInput",
    "TaskStatus",
]
