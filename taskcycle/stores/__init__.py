"""Collaborator interfaces and their durable implementations."""

from taskcycle.stores.base import (
    ChangeCallback,
    ChangeEvent,
    ChangeNotifier,
    MemberDirectory,
    StatsStore,
    TaskStore,
    Unsubscribe,
)
from taskcycle.stores.members import SqliteMemberDirectory, StaticMemberDirectory
from taskcycle.stores.sqlite import SqliteStatsStore, SqliteTaskStore


__all__ = [
    "ChangeCallback",
    "ChangeEvent",
    "ChangeNotifier",
    "MemberDirectory",
    "SqliteMemberDirectory",
    "SqliteStatsStore",
    "SqliteTaskStore",
    "StaticMemberDirectory",
    "StatsStore",
    "TaskStore",
    "Unsubscribe",
]
