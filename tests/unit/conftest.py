"""Pytest configuration and fixtures for unit tests."""

from collections.abc import AsyncGenerator
from datetime import UTC, datetime

import pytest

from taskcycle.core import db_client
from taskcycle.core.clock import FrozenClock
from taskcycle.modules.tasks.controller import TaskLifecycleController
from taskcycle.stores.members import StaticMemberDirectory
from taskcycle.stores.sqlite import SqliteStatsStore, SqliteTaskStore
from tests.unit.mocks import GRACE_SECONDS, InMemoryStatsStore, InMemoryTaskStore, RecordingScheduler


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 3, 2, 9, 0, tzinfo=UTC))


@pytest.fixture
def task_store() -> InMemoryTaskStore:
    return InMemoryTaskStore()


@pytest.fixture
def stats_store() -> InMemoryStatsStore:
    return InMemoryStatsStore()


@pytest.fixture
def scheduler() -> RecordingScheduler:
    return RecordingScheduler()


@pytest.fixture
def members() -> StaticMemberDirectory:
    return StaticMemberDirectory({"alice": "Alice", "bob": "Bob", "carol": "Carol"})


@pytest.fixture
def controller(
    task_store: InMemoryTaskStore,
    stats_store: InMemoryStatsStore,
    scheduler: RecordingScheduler,
    clock: FrozenClock,
    members: StaticMemberDirectory,
) -> TaskLifecycleController:
    """Controller wired to in-memory stores and a recording scheduler."""
    return TaskLifecycleController(
        task_store=task_store,
        stats_store=stats_store,
        members=members,
        scheduler=scheduler,  # type: ignore[arg-type]
        clock=clock,
        completion_grace_seconds=GRACE_SECONDS,
        reconcile_interval_seconds=60,
        timezone="UTC",
    )


@pytest.fixture
async def sqlite_db(tmp_path) -> AsyncGenerator[str, None]:
    """Fresh SQLite database with the schema applied."""
    db_path = str(tmp_path / "taskcycle.db")
    await db_client.init_db(db_path=db_path)
    yield db_path
    await db_client.close_connection(db_path=db_path)


@pytest.fixture
def sqlite_controller(
    sqlite_db: str,
    scheduler: RecordingScheduler,
    clock: FrozenClock,
    members: StaticMemberDirectory,
) -> TaskLifecycleController:
    """Controller wired to SQLite stores."""
    return TaskLifecycleController(
        task_store=SqliteTaskStore(db_path=sqlite_db),
        stats_store=SqliteStatsStore(db_path=sqlite_db),
        members=members,
        scheduler=scheduler,  # type: ignore[arg-type]
        clock=clock,
        completion_grace_seconds=GRACE_SECONDS,
        reconcile_interval_seconds=60,
        timezone="UTC",
    )
