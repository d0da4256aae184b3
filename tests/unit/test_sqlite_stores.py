"""Unit tests for the aiosqlite-backed stores, run against a temporary database."""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from taskcycle.core import db_client
from taskcycle.core.clock import FrozenClock
from taskcycle.core.errors import StorageUnavailable
from taskcycle.domain.stats import StatsDelta
from taskcycle.modules.tasks.controller import TaskLifecycleController
from taskcycle.stores.members import UNKNOWN_MEMBER_NAME, SqliteMemberDirectory
from taskcycle.stores.sqlite import SqliteStatsStore, SqliteTaskStore
from tests.unit.mocks import make_task, task_input


NOW = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


@pytest.mark.unit
class TestSqliteTaskStore:
    async def test_insert_assigns_version_and_round_trips_fields(self, sqlite_db: str):
        """Test inserting a task stores version 1 and reads back every field."""
        store = SqliteTaskStore(db_path=sqlite_db)

        stored = await store.upsert(make_task(now=NOW, version=0, completed_by=None))

        assert stored is not None
        assert stored.version == 1
        fetched = await store.get("task-1")
        assert fetched == stored
        assert fetched.deadline == NOW + timedelta(days=1)
        assert fetched.recurring is True
        assert fetched.completed is False

    async def test_every_write_bumps_version(self, sqlite_db: str):
        """Test each upsert increments the stored version."""
        store = SqliteTaskStore(db_path=sqlite_db)
        first = await store.upsert(make_task(now=NOW))
        assert first is not None

        second = await store.upsert(first.model_copy(update={"name": "Water the garden"}))

        assert second is not None
        assert second.version == 2
        assert second.name == "Water the garden"

    async def test_versioned_write_rejects_stale_snapshot(self, sqlite_db: str):
        """Test a write based on an old version is refused."""
        store = SqliteTaskStore(db_path=sqlite_db)
        first = await store.upsert(make_task(now=NOW))
        assert first is not None
        await store.upsert(first.model_copy(update={"difficulty": 4}))

        assert await store.upsert(first.model_copy(update={"difficulty": 1}), expected_version=first.version) is None
        current = await store.get("task-1")
        assert current is not None
        assert current.difficulty == 4

    async def test_versioned_write_does_not_recreate_deleted_task(self, sqlite_db: str):
        """Test a versioned write to a deleted task writes nothing."""
        store = SqliteTaskStore(db_path=sqlite_db)
        first = await store.upsert(make_task(now=NOW))
        assert first is not None
        await store.delete(first.id)

        assert await store.upsert(first, expected_version=first.version) is None
        assert await store.get(first.id) is None

    async def test_claim_overdue_wins_once(self, sqlite_db: str):
        """Test only the first claim at a version succeeds."""
        store = SqliteTaskStore(db_path=sqlite_db)
        task = await store.upsert(make_task(now=NOW - timedelta(days=2)))
        assert task is not None

        first = await store.claim_overdue(task.id, task.version, NOW)
        second = await store.claim_overdue(task.id, task.version, NOW)

        assert first is not None
        assert first.overdue_processed is True
        assert first.overdue_claimed_at == NOW
        assert second is None

    async def test_completed_task_cannot_be_claimed(self, sqlite_db: str):
        """Test completed tasks are never marked overdue."""
        store = SqliteTaskStore(db_path=sqlite_db)
        task = await store.upsert(make_task(now=NOW, completed=True, completed_at=NOW))
        assert task is not None

        assert await store.claim_overdue(task.id, task.version, NOW) is None

    async def test_set_overdue_processed_clears_claim_time(self, sqlite_db: str):
        """Test releasing the overdue marker also clears its claim time."""
        store = SqliteTaskStore(db_path=sqlite_db)
        task = await store.upsert(make_task(now=NOW))
        assert task is not None
        await store.claim_overdue(task.id, task.version, NOW)

        assert await store.set_overdue_processed(task.id, False) is True
        released = await store.get(task.id)
        assert released is not None
        assert released.overdue_processed is False
        assert released.overdue_claimed_at is None

    async def test_delete_reports_whether_row_existed(self, sqlite_db: str):
        """Test delete returns True only when a row was removed."""
        store = SqliteTaskStore(db_path=sqlite_db)
        await store.upsert(make_task(now=NOW))

        assert await store.delete("task-1") is True
        assert await store.delete("task-1") is False
        assert await store.get("task-1") is None

    async def test_versioned_delete_skips_changed_task(self, sqlite_db: str):
        """Test a delete at an old version leaves the newer row in place."""
        store = SqliteTaskStore(db_path=sqlite_db)
        first = await store.upsert(make_task(now=NOW))
        assert first is not None
        second = await store.upsert(first.model_copy(update={"difficulty": 5}))
        assert second is not None

        assert await store.delete(first.id, expected_version=first.version) is False
        assert await store.get(first.id) is not None
        assert await store.delete(first.id, expected_version=second.version) is True
        assert await store.get(first.id) is None

    async def test_list_by_group_and_assigned(self, sqlite_db: str):
        """Test listing by group is ordered by creation and assignment spans groups."""
        store = SqliteTaskStore(db_path=sqlite_db)
        await store.upsert(make_task(now=NOW, id="a", group_id="g1", assigned_to="alice"))
        await store.upsert(make_task(now=NOW + timedelta(minutes=1), id="b", group_id="g1", assigned_to="bob"))
        await store.upsert(make_task(now=NOW, id="c", group_id="g2", assigned_to="alice"))

        assert [t.id for t in await store.list_by_group("g1")] == ["a", "b"]
        assert sorted(t.id for t in await store.list_assigned("alice", ["g1", "g2"])) == ["a", "c"]
        assert await store.list_assigned("alice", []) == []

    async def test_missing_schema_surfaces_as_storage_unavailable(self, tmp_path):
        """Test querying an uninitialized database raises StorageUnavailable."""
        db_path = str(tmp_path / "empty.db")
        store = SqliteTaskStore(db_path=db_path)
        try:
            with pytest.raises(StorageUnavailable, match="init_db"):
                await store.get("task-1")
        finally:
            await db_client.close_connection(db_path=db_path)


@pytest.mark.unit
class TestSqliteStatsStore:
    async def test_missing_row_is_created_with_delta(self, sqlite_db: str):
        """Test the first delta creates the member row."""
        store = SqliteStatsStore(db_path=sqlite_db)

        stat = await store.apply_delta("g1", "alice", StatsDelta(completed_count=1, completed_stars=3))

        assert (stat.completed_count, stat.completed_stars, stat.overdue_count) == (1, 3, 0)

    async def test_counts_clamp_at_zero_but_stars_go_negative(self, sqlite_db: str):
        """Test counts stop at zero while stars keep the full delta."""
        store = SqliteStatsStore(db_path=sqlite_db)
        await store.apply_delta("g1", "alice", StatsDelta(completed_count=1, completed_stars=2))

        stat = await store.apply_delta(
            "g1", "alice", StatsDelta(completed_count=-3, completed_stars=-7, overdue_count=-1)
        )

        assert (stat.completed_count, stat.completed_stars, stat.overdue_count) == (0, -5, 0)

    async def test_negative_delta_on_fresh_row_is_clamped(self, sqlite_db: str):
        """Test a negative first delta creates a row with zero counts."""
        store = SqliteStatsStore(db_path=sqlite_db)

        stat = await store.apply_delta("g1", "bob", StatsDelta(completed_count=-1, completed_stars=-4))

        assert (stat.completed_count, stat.completed_stars) == (0, -4)

    async def test_concurrent_deltas_are_not_lost(self, sqlite_db: str):
        """Test concurrent deltas to one member all land."""
        store = SqliteStatsStore(db_path=sqlite_db)

        await asyncio.gather(
            *(store.apply_delta("g1", "alice", StatsDelta(completed_count=1, completed_stars=2)) for _ in range(25))
        )

        stat = await store.get("g1", "alice")
        assert stat is not None
        assert (stat.completed_count, stat.completed_stars) == (25, 50)

    async def test_list_by_group(self, sqlite_db: str):
        """Test stats are listed per group ordered by user id."""
        store = SqliteStatsStore(db_path=sqlite_db)
        await store.apply_delta("g1", "bob", StatsDelta(overdue_count=1))
        await store.apply_delta("g1", "alice", StatsDelta(completed_count=1))
        await store.apply_delta("g2", "carol", StatsDelta(completed_count=1))

        assert [s.user_id for s in await store.list_by_group("g1")] == ["alice", "bob"]

    async def test_timed_out_write_is_rolled_back(self, sqlite_db: str, monkeypatch: pytest.MonkeyPatch):
        """Test a write that times out before commit never reaches the database."""
        store = SqliteStatsStore(db_path=sqlite_db)
        await store.apply_delta("g1", "alice", StatsDelta(overdue_count=1))
        conn = await db_client.get_connection(db_path=sqlite_db)
        real_commit = conn.commit

        async def slow_commit() -> None:
            await asyncio.sleep(1)
            await real_commit()

        monkeypatch.setattr(conn, "commit", slow_commit)
        monkeypatch.setattr(db_client.settings, "storage_timeout_seconds", 0.05)

        with pytest.raises(StorageUnavailable, match="timed out"):
            await store.apply_delta("g1", "alice", StatsDelta(overdue_count=1))

        monkeypatch.undo()
        await store.apply_delta("g1", "bob", StatsDelta(completed_count=1))

        alice = await store.get("g1", "alice")
        assert alice is not None
        assert alice.overdue_count == 1
        bob = await store.get("g1", "bob")
        assert bob is not None
        assert bob.completed_count == 1


@pytest.mark.unit
class TestSqliteMemberDirectory:
    async def test_display_name_falls_back_to_email(self, sqlite_db: str):
        """Test names fall back to email and then to the unknown placeholder."""
        await db_client.execute(
            "INSERT INTO members (id, display_name, email) VALUES (?, ?, ?), (?, ?, ?)",
            ("alice", "Alice", "alice@example.com", "bob", None, "bob@example.com"),
            db_path=sqlite_db,
        )
        directory = SqliteMemberDirectory(db_path=sqlite_db)

        assert await directory.resolve_display_name("alice") == "Alice"
        assert await directory.resolve_display_name("bob") == "bob@example.com"
        assert await directory.resolve_display_name("nobody") == UNKNOWN_MEMBER_NAME


@pytest.mark.unit
class TestSqliteLifecycle:
    async def test_overdue_recurring_task_end_to_end(
        self, sqlite_controller: TaskLifecycleController, sqlite_db: str, clock: FrozenClock
    ):
        """Test an overdue recurring task is penalized and rolled forward."""
        task = await sqlite_controller.create(
            "g1", task_input(clock.now(), difficulty=3, assigned_to="alice"), "alice"
        )

        clock.advance(hours=25)
        tasks = await sqlite_controller.reconcile("g1")

        assert [t.id for t in tasks] == [task.id]
        assert tasks[0].deadline == clock.now() + timedelta(days=1)
        stat = await SqliteStatsStore(db_path=sqlite_db).get("g1", "alice")
        assert stat is not None
        assert (stat.overdue_count, stat.completed_stars) == (1, -3)

    async def test_concurrent_reconciles_penalize_once(
        self, sqlite_controller: TaskLifecycleController, sqlite_db: str, clock: FrozenClock
    ):
        """Test concurrent reconciles apply each overdue penalty once."""
        await sqlite_controller.create("g1", task_input(clock.now(), difficulty=2, assigned_to="alice"), "alice")
        await sqlite_controller.create(
            "g1", task_input(clock.now(), difficulty=4, assigned_to="bob", recurring=False), "bob"
        )
        clock.advance(days=2)

        results = await asyncio.gather(*(sqlite_controller.reconcile("g1") for _ in range(6)))

        stats = {s.user_id: s for s in await SqliteStatsStore(db_path=sqlite_db).list_by_group("g1")}
        assert (stats["alice"].overdue_count, stats["alice"].completed_stars) == (1, -2)
        assert (stats["bob"].overdue_count, stats["bob"].completed_stars) == (1, -4)
        assert len(await SqliteTaskStore(db_path=sqlite_db).list_by_group("g1")) == 1
        assert all(len(tasks) <= 2 for tasks in results)

    async def test_complete_then_delete_restores_stats(
        self, sqlite_controller: TaskLifecycleController, sqlite_db: str, clock: FrozenClock
    ):
        """Test deleting a completed task takes back its credit."""
        task = await sqlite_controller.create("g1", task_input(clock.now(), difficulty=5), "alice")
        await sqlite_controller.toggle_completion(task.id, "carol")

        await sqlite_controller.delete(task.id)

        stat = await SqliteStatsStore(db_path=sqlite_db).get("g1", "carol")
        assert stat is not None
        assert (stat.completed_count, stat.completed_stars) == (0, 0)
        assert await SqliteTaskStore(db_path=sqlite_db).get(task.id) is None

    async def test_concurrent_deletes_reverse_credit_once(
        self, sqlite_controller: TaskLifecycleController, sqlite_db: str, clock: FrozenClock
    ):
        """Test overlapping deletes of a completed task take back its credit once."""
        task = await sqlite_controller.create("g1", task_input(clock.now(), difficulty=3), "alice")
        await sqlite_controller.toggle_completion(task.id, "carol")

        await asyncio.gather(sqlite_controller.delete(task.id), sqlite_controller.delete(task.id))

        stat = await SqliteStatsStore(db_path=sqlite_db).get("g1", "carol")
        assert stat is not None
        assert (stat.completed_count, stat.completed_stars) == (0, 0)
        assert await SqliteTaskStore(db_path=sqlite_db).get(task.id) is None
