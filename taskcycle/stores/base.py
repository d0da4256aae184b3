"""Collaborator interfaces consumed by the lifecycle engine."""

from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime
from typing import Protocol

from pydantic import BaseModel

from taskcycle.domain.stats import MemberStat, StatsDelta
from taskcycle.domain.task import Task


class TaskStore(Protocol):
    """Durable task records."""

    async def list_by_group(self, group_id: str) -> list[Task]: ...

    async def list_assigned(self, user_id: str, group_ids: Sequence[str]) -> list[Task]: ...

    async def get(self, task_id: str) -> Task | None: ...

    async def upsert(self, task: Task, *, expected_version: int | None = None) -> Task | None:
        """Insert or replace a task.

        With ``expected_version`` the write only happens if the stored version
        still matches; None is returned when it does not.
        """
        ...

    async def delete(self, task_id: str, *, expected_version: int | None = None) -> bool:
        """Delete a task; False when it was already gone or its version no longer matches."""
        ...

    async def claim_overdue(self, task_id: str, expected_version: int, claimed_at: datetime) -> Task | None:
        """Atomically set the overdue marker on an active, unmarked task at ``expected_version``.

        Returns the claimed task, or None if another caller changed it first.
        """
        ...

    async def set_overdue_processed(self, task_id: str, value: bool) -> bool: ...


class StatsStore(Protocol):
    """Durable per-member counters."""

    async def apply_delta(self, group_id: str, user_id: str, delta: StatsDelta) -> MemberStat:
        """Upsert the row and apply ``delta`` in one atomic step, clamping counts at zero."""
        ...

    async def get(self, group_id: str, user_id: str) -> MemberStat | None: ...

    async def list_by_group(self, group_id: str) -> list[MemberStat]: ...


class MemberDirectory(Protocol):
    """Resolves member display names for projections."""

    async def resolve_display_name(self, user_id: str) -> str: ...


class ChangeEvent(BaseModel):
    """Out-of-band change to a task or stats row."""

    group_id: str
    table: str
    record_id: str | None = None
    source: str | None = None


ChangeCallback = Callable[[ChangeEvent], Awaitable[None]]
Unsubscribe = Callable[[], Awaitable[None]]


class ChangeNotifier(Protocol):
    """Emits an event whenever a task or stats row changes out-of-band."""

    async def subscribe(self, group_id: str, callback: ChangeCallback) -> Unsubscribe: ...

    async def publish(self, event: ChangeEvent) -> None: ...
