"""aiosqlite-backed implementations of the task and stats stores."""

import logging
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from taskcycle.core import db_client
from taskcycle.domain.stats import MemberStat, StatsDelta
from taskcycle.domain.task import Task


logger = logging.getLogger(__name__)


# Columns written by upsert; version and updated are maintained by the store
_TASK_COLUMNS: tuple[str, ...] = (
    "id",
    "group_id",
    "name",
    "difficulty",
    "created_by",
    "assigned_to",
    "completed",
    "recurring",
    "deadline",
    "days_remaining",
    "original_duration_days",
    "overdue_processed",
    "overdue_claimed_at",
    "created_at",
    "completed_at",
    "completed_by",
)

_STATS_COLUMNS = "group_id, user_id, completed_count, completed_stars, overdue_count"


def _task_values(task: Task) -> list[Any]:
    data = task.model_dump(include=set(_TASK_COLUMNS))
    return [data[column] for column in _TASK_COLUMNS]


def _to_task(record: dict[str, Any]) -> Task:
    return Task.model_validate(record)


class SqliteTaskStore:
    """Task records in the ``tasks`` table."""

    def __init__(self, *, db_path: str | None = None) -> None:
        self._db_path = db_path

    async def list_by_group(self, group_id: str) -> list[Task]:
        records = await db_client.fetch_all(
            "SELECT * FROM tasks WHERE group_id = ? ORDER BY created_at ASC, id ASC",
            (group_id,),
            db_path=self._db_path,
        )
        logger.debug("Listed %d tasks for group %s", len(records), group_id)
        return [_to_task(record) for record in records]

    async def list_assigned(self, user_id: str, group_ids: Sequence[str]) -> list[Task]:
        if not group_ids:
            return []
        placeholders = ", ".join("?" for _ in group_ids)
        records = await db_client.fetch_all(
            f"SELECT * FROM tasks WHERE assigned_to = ? AND group_id IN ({placeholders}) ORDER BY created_at ASC",  # noqa: S608 - placeholders only
            (user_id, *group_ids),
            db_path=self._db_path,
        )
        return [_to_task(record) for record in records]

    async def get(self, task_id: str) -> Task | None:
        record = await db_client.fetch_one("SELECT * FROM tasks WHERE id = ?", (task_id,), db_path=self._db_path)
        return None if record is None else _to_task(record)

    async def upsert(self, task: Task, *, expected_version: int | None = None) -> Task | None:
        values = _task_values(task)

        if expected_version is not None:
            set_clause = ", ".join(f"{column} = ?" for column in _TASK_COLUMNS[1:])
            record = await db_client.execute_returning(
                f"UPDATE tasks SET {set_clause}, version = version + 1, updated = datetime('now') "  # noqa: S608 - fixed columns
                "WHERE id = ? AND version = ? RETURNING *",
                (*values[1:], task.id, expected_version),
                db_path=self._db_path,
            )
            if record is None:
                logger.info(
                    "Skipped stale task write",
                    extra={"task_id": task.id, "expected_version": expected_version},
                )
                return None
            return _to_task(record)

        columns = ", ".join(_TASK_COLUMNS)
        placeholders = ", ".join("?" for _ in _TASK_COLUMNS)
        updates = ", ".join(f"{column} = excluded.{column}" for column in _TASK_COLUMNS[1:])
        record = await db_client.execute_returning(
            f"INSERT INTO tasks ({columns}, version) VALUES ({placeholders}, 1) "  # noqa: S608 - fixed columns
            f"ON CONFLICT(id) DO UPDATE SET {updates}, version = tasks.version + 1, updated = datetime('now') "
            "RETURNING *",
            values,
            db_path=self._db_path,
        )
        if record is None:
            msg = f"Upsert returned no row for task {task.id}"
            raise RuntimeError(msg)
        logger.info("Upserted task", extra={"task_id": task.id, "version": record["version"]})
        return _to_task(record)

    async def delete(self, task_id: str, *, expected_version: int | None = None) -> bool:
        if expected_version is None:
            deleted = await db_client.execute("DELETE FROM tasks WHERE id = ?", (task_id,), db_path=self._db_path)
        else:
            deleted = await db_client.execute(
                "DELETE FROM tasks WHERE id = ? AND version = ?",
                (task_id, expected_version),
                db_path=self._db_path,
            )
        if deleted:
            logger.info("Deleted task", extra={"task_id": task_id})
        return bool(deleted)

    async def claim_overdue(self, task_id: str, expected_version: int, claimed_at: datetime) -> Task | None:
        record = await db_client.execute_returning(
            "UPDATE tasks SET overdue_processed = 1, overdue_claimed_at = ?, version = version + 1, "
            "updated = datetime('now') "
            "WHERE id = ? AND version = ? AND overdue_processed = 0 AND completed = 0 RETURNING *",
            (claimed_at, task_id, expected_version),
            db_path=self._db_path,
        )
        return None if record is None else _to_task(record)

    async def set_overdue_processed(self, task_id: str, value: bool) -> bool:
        changed = await db_client.execute(
            "UPDATE tasks SET overdue_processed = ?, overdue_claimed_at = NULL, version = version + 1, "
            "updated = datetime('now') WHERE id = ?",
            (value, task_id),
            db_path=self._db_path,
        )
        return bool(changed)


class SqliteStatsStore:
    """Member counters in the ``member_stats`` table."""

    def __init__(self, *, db_path: str | None = None) -> None:
        self._db_path = db_path

    async def apply_delta(self, group_id: str, user_id: str, delta: StatsDelta) -> MemberStat:
        # Single statement: the row is created with clamped deltas or updated in place
        record = await db_client.execute_returning(
            "INSERT INTO member_stats (group_id, user_id, completed_count, completed_stars, overdue_count) "
            "VALUES (?, ?, MAX(0, ?), ?, MAX(0, ?)) "
            "ON CONFLICT(group_id, user_id) DO UPDATE SET "
            "completed_count = MAX(0, member_stats.completed_count + ?), "
            "completed_stars = member_stats.completed_stars + ?, "
            "overdue_count = MAX(0, member_stats.overdue_count + ?), "
            "updated = datetime('now') "
            f"RETURNING {_STATS_COLUMNS}",
            (
                group_id,
                user_id,
                delta.completed_count,
                delta.completed_stars,
                delta.overdue_count,
                delta.completed_count,
                delta.completed_stars,
                delta.overdue_count,
            ),
            db_path=self._db_path,
        )
        if record is None:
            msg = f"Stats upsert returned no row for {group_id}/{user_id}"
            raise RuntimeError(msg)
        return MemberStat.model_validate(record)

    async def get(self, group_id: str, user_id: str) -> MemberStat | None:
        record = await db_client.fetch_one(
            f"SELECT {_STATS_COLUMNS} FROM member_stats WHERE group_id = ? AND user_id = ?",  # noqa: S608 - fixed columns
            (group_id, user_id),
            db_path=self._db_path,
        )
        return None if record is None else MemberStat.model_validate(record)

    async def list_by_group(self, group_id: str) -> list[MemberStat]:
        records = await db_client.fetch_all(
            f"SELECT {_STATS_COLUMNS} FROM member_stats WHERE group_id = ? ORDER BY user_id",  # noqa: S608 - fixed columns
            (group_id,),
            db_path=self._db_path,
        )
        return [MemberStat.model_validate(record) for record in records]
