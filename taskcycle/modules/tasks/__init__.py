"""Task lifecycle: deadlines, overdue processing, recurrence and member stats."""

from taskcycle.modules.tasks.controller import TaskLifecycleController


__all__ = ["TaskLifecycleController"]
