"""SQLite schema for the lifecycle engine (code-first approach)."""

import logging

from taskcycle.core import db_client


logger = logging.getLogger(__name__)


# Central mapping of every table owned by the engine
TABLE_SCHEMAS: dict[str, str] = {
    "tasks": """CREATE TABLE IF NOT EXISTS tasks (
        id TEXT PRIMARY KEY,
        group_id TEXT NOT NULL,
        name TEXT NOT NULL,
        difficulty INTEGER NOT NULL CHECK (difficulty BETWEEN 1 AND 5),
        created_by TEXT,
        assigned_to TEXT,
        completed INTEGER NOT NULL DEFAULT 0,
        recurring INTEGER NOT NULL DEFAULT 0,
        deadline TEXT,
        days_remaining INTEGER,
        original_duration_days INTEGER NOT NULL DEFAULT 1 CHECK (original_duration_days >= 1),
        overdue_processed INTEGER NOT NULL DEFAULT 0,
        overdue_claimed_at TEXT,
        created_at TEXT NOT NULL,
        completed_at TEXT,
        completed_by TEXT,
        version INTEGER NOT NULL DEFAULT 1,
        updated TEXT NOT NULL DEFAULT (datetime('now'))
    )""",
    "member_stats": """CREATE TABLE IF NOT EXISTS member_stats (
        group_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        completed_count INTEGER NOT NULL DEFAULT 0 CHECK (completed_count >= 0),
        completed_stars INTEGER NOT NULL DEFAULT 0,
        overdue_count INTEGER NOT NULL DEFAULT 0 CHECK (overdue_count >= 0),
        updated TEXT NOT NULL DEFAULT (datetime('now')),
        PRIMARY KEY (group_id, user_id)
    )""",
    "members": """CREATE TABLE IF NOT EXISTS members (
        id TEXT PRIMARY KEY,
        display_name TEXT,
        email TEXT
    )""",
}

INDEXES: list[str] = [
    "CREATE INDEX IF NOT EXISTS idx_tasks_group_id ON tasks (group_id)",
    "CREATE INDEX IF NOT EXISTS idx_tasks_assigned_to ON tasks (assigned_to)",
    "CREATE INDEX IF NOT EXISTS idx_member_stats_group_id ON member_stats (group_id)",
]


async def init_db(*, db_path: str | None = None) -> None:
    """Create every table and index if missing (idempotent)."""
    logger.info("Initializing SQLite schema", extra={"tables": list(TABLE_SCHEMAS)})
    await db_client.execute_script([*TABLE_SCHEMAS.values(), *INDEXES], db_path=db_path)
    logger.info("SQLite schema ready")
