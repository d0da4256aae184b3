"""SQLite database client wrapper shared by the durable stores."""

import asyncio
import json
import logging
import threading
from collections.abc import Awaitable, Sequence
from datetime import datetime
from pathlib import Path
from typing import Any, TypeVar

import aiosqlite

from taskcycle.core.config import settings
from taskcycle.core.errors import StorageUnavailable


logger = logging.getLogger(__name__)

T = TypeVar("T")

Params = Sequence[Any]


def get_db_path(db_path: str | None = None) -> Path:
    """Get the resolved SQLite database file path."""
    path_str = db_path or settings.sqlite_db_path
    return Path(path_str).resolve()


def to_db_value(value: Any) -> Any:  # noqa: ANN401
    """Convert a Python value into something SQLite can bind."""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, dict | list):
        return json.dumps(value)
    return value


_db_connections: dict[tuple[int, int, str], aiosqlite.Connection] = {}
_db_locks: dict[int, asyncio.Lock] = {}


def _get_lock(loop_id: int) -> asyncio.Lock:
    """Connection-cache lock for the given event loop."""
    return _db_locks.setdefault(loop_id, asyncio.Lock())


_write_locks: dict[tuple[int, str], asyncio.Lock] = {}


def _get_write_lock(db_path: str | None) -> asyncio.Lock:
    """Serializes statement-and-commit pairs on the shared connection.

    A write with RETURNING stays in progress until its rows are fetched, and
    SQLite refuses to commit while one is pending.
    """
    key = (id(asyncio.get_running_loop()), str(get_db_path(db_path)))
    return _write_locks.setdefault(key, asyncio.Lock())


async def get_connection(*, db_path: str | None = None) -> aiosqlite.Connection:
    """Get or create a cached connection for the current thread, loop, and db path."""
    thread_id = threading.get_ident()
    loop = asyncio.get_running_loop()
    loop_id = id(loop)
    path = get_db_path(db_path)
    cache_key = (thread_id, loop_id, str(path))

    if cache_key in _db_connections:
        return _db_connections[cache_key]

    # Create new connection with async lock to prevent races
    async with _get_lock(loop_id):
        # Double-check after acquiring lock
        if cache_key in _db_connections:
            return _db_connections[cache_key]

        path.parent.mkdir(parents=True, exist_ok=True)

        conn = await aiosqlite.connect(str(path))
        await conn.execute("PRAGMA journal_mode = WAL")
        await conn.execute("PRAGMA busy_timeout = 5000")

        _db_connections[cache_key] = conn

        logger.info(
            "Created new SQLite connection",
            extra={"db_path": str(path), "thread_id": thread_id, "loop_id": loop_id},
        )
        return conn


async def close_connection(*, db_path: str | None = None) -> None:
    """Close the cached SQLite connection for the current thread, loop, and db path."""
    thread_id = threading.get_ident()
    loop_id = id(asyncio.get_running_loop())
    path = get_db_path(db_path)
    cache_key = (thread_id, loop_id, str(path))

    _write_locks.pop((loop_id, str(path)), None)
    if cache_key not in _db_connections:
        return

    try:
        async with _get_lock(loop_id):
            conn = _db_connections.pop(cache_key, None)
            if conn is not None:
                await conn.close()
                logger.info(
                    "Closed SQLite connection",
                    extra={"thread_id": thread_id, "loop_id": loop_id, "db_path": str(path)},
                )
    except aiosqlite.Error as e:
        logger.warning(
            "Error closing SQLite connection",
            extra={"error": str(e), "thread_id": thread_id, "loop_id": loop_id},
        )


async def init_db(*, db_path: str | None = None) -> None:
    """Initialize the database schema by delegating to schema.init_db()."""
    from taskcycle.core import schema

    await schema.init_db(db_path=db_path)


async def _guarded(operation: str, awaitable: Awaitable[T]) -> T:
    """Run a storage call under the configured timeout, mapping failures to StorageUnavailable."""
    try:
        return await asyncio.wait_for(awaitable, timeout=settings.storage_timeout_seconds)
    except TimeoutError as e:
        logger.error("storage_timeout", extra={"operation": operation})
        msg = f"Storage call '{operation}' timed out after {settings.storage_timeout_seconds}s"
        raise StorageUnavailable(msg) from e
    except aiosqlite.OperationalError as e:
        if "no such table" in str(e):
            msg = "Storage schema missing. Call init_db() first."
            logger.error("Table not found", extra={"operation": operation})
            raise StorageUnavailable(msg) from e
        logger.error("storage_failed", extra={"operation": operation, "error": str(e)})
        raise StorageUnavailable(f"Storage call '{operation}' failed: {e}") from e
    except aiosqlite.Error as e:
        logger.error("storage_failed", extra={"operation": operation, "error": str(e)})
        raise StorageUnavailable(f"Storage call '{operation}' failed: {e}") from e


def _row_to_dict(cursor: aiosqlite.Cursor, row: Sequence[Any]) -> dict[str, Any]:
    columns = [description[0] for description in cursor.description]
    return dict(zip(columns, row, strict=True))


async def fetch_one(query: str, params: Params = (), *, db_path: str | None = None) -> dict[str, Any] | None:
    """Return the first row of a SELECT as a dict, or None."""

    async def _run() -> dict[str, Any] | None:
        conn = await get_connection(db_path=db_path)
        cursor = await conn.execute(query, [to_db_value(p) for p in params])
        row = await cursor.fetchone()
        return None if row is None else _row_to_dict(cursor, row)

    return await _guarded("fetch_one", _run())


async def fetch_all(query: str, params: Params = (), *, db_path: str | None = None) -> list[dict[str, Any]]:
    """Return every row of a SELECT as a list of dicts."""

    async def _run() -> list[dict[str, Any]]:
        conn = await get_connection(db_path=db_path)
        cursor = await conn.execute(query, [to_db_value(p) for p in params])
        rows = await cursor.fetchall()
        return [_row_to_dict(cursor, row) for row in rows]

    return await _guarded("fetch_all", _run())


async def _rollback(conn: aiosqlite.Connection) -> None:
    """Discard a write whose statement or commit did not finish.

    aiosqlite keeps running a statement after its awaiting coroutine is
    cancelled; the rollback is queued behind it on the same worker thread.
    """
    try:
        await asyncio.shield(conn.rollback())
    except aiosqlite.Error as e:
        logger.warning("Rollback after failed write did not complete", extra={"error": str(e)})


async def execute(query: str, params: Params = (), *, db_path: str | None = None) -> int:
    """Execute a single write statement, commit, and return the affected row count."""

    async def _run() -> int:
        async with _get_write_lock(db_path):
            conn = await get_connection(db_path=db_path)
            try:
                cursor = await conn.execute(query, [to_db_value(p) for p in params])
                await conn.commit()
            except BaseException:
                await _rollback(conn)
                raise
            return cursor.rowcount

    return await _guarded("execute", _run())


async def execute_returning(query: str, params: Params = (), *, db_path: str | None = None) -> dict[str, Any] | None:
    """Execute a write statement with a RETURNING clause and return the produced row."""

    async def _run() -> dict[str, Any] | None:
        async with _get_write_lock(db_path):
            conn = await get_connection(db_path=db_path)
            try:
                cursor = await conn.execute(query, [to_db_value(p) for p in params])
                rows = await cursor.fetchall()
                result = _row_to_dict(cursor, rows[0]) if rows else None
                await conn.commit()
            except BaseException:
                await _rollback(conn)
                raise
            return result

    return await _guarded("execute_returning", _run())


async def execute_script(statements: Sequence[str], *, db_path: str | None = None) -> None:
    """Execute several DDL statements in order and commit once."""

    async def _run() -> None:
        async with _get_write_lock(db_path):
            conn = await get_connection(db_path=db_path)
            try:
                for statement in statements:
                    await conn.execute(statement)
                await conn.commit()
            except BaseException:
                await _rollback(conn)
                raise

    await _guarded("execute_script", _run())
