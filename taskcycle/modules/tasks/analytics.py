"""Read-side projections of tasks and member statistics.

This module provides functions for:
- Ordering a group's tasks by urgency (soonest deadline first, no deadline last)
- Projecting tasks for display with hours/minutes remaining and urgency
- Ranking members by stars for the group standings
- Ordering a member's assigned tasks across groups

Key Concepts:
- Urgent: fewer than 24 whole hours remain (overdue tasks count as urgent).
- Standings: members ranked by completed stars, then completed count, then
  fewest missed deadlines. Tied members share a rank.
"""

import logging
from collections.abc import Iterable, Mapping
from datetime import datetime
from enum import StrEnum

from taskcycle.domain.stats import MemberStat
from taskcycle.domain.task import Task
from taskcycle.models.service_models import MemberStanding, TaskView
from taskcycle.modules.tasks.deadlines import is_urgent, remaining


logger = logging.getLogger(__name__)

UNKNOWN_GROUP_NAME = "Unknown group"


class AssignedSort(StrEnum):
    """Orderings offered for a member's tasks across groups."""

    DEADLINE = "deadline"
    DIFFICULTY = "difficulty"
    GROUP = "group"


def sort_by_deadline(tasks: Iterable[Task]) -> list[Task]:
    """Soonest deadline first; tasks without a deadline go last in their original order."""
    tasks = list(tasks)
    with_deadline = sorted(
        (task for task in tasks if task.deadline is not None),
        key=lambda task: task.deadline,  # type: ignore[arg-type,return-value]
    )
    return with_deadline + [task for task in tasks if task.deadline is None]


def build_task_view(task: Task, *, now: datetime, assignee_name: str) -> TaskView:
    hours: int | None = None
    minutes: int | None = None
    urgent = False
    if task.deadline is not None:
        hours, minutes = remaining(task.deadline, now)
        urgent = not task.completed and is_urgent(task.deadline, now)

    return TaskView(
        id=task.id,
        group_id=task.group_id,
        name=task.name,
        difficulty=task.difficulty,
        assigned_to=task.assigned_to,
        assignee_name=assignee_name,
        completed=task.completed,
        recurring=task.recurring,
        deadline=task.deadline,
        hours_remaining=hours,
        minutes_remaining=minutes,
        status=task.status_at(now),
        is_urgent=urgent,
        sync_status=task.sync_status,
    )


def rank_standings(stats: Iterable[MemberStat], names: Mapping[str, str]) -> list[MemberStanding]:
    """Rank members with standard competition ranking (1, 2, 2, 4)."""
    ordered = sorted(
        stats,
        key=lambda stat: (-stat.completed_stars, -stat.completed_count, stat.overdue_count, stat.user_id),
    )

    standings: list[MemberStanding] = []
    previous_key: tuple[int, int, int] | None = None
    rank = 0
    for position, stat in enumerate(ordered, start=1):
        key = (stat.completed_stars, stat.completed_count, stat.overdue_count)
        if key != previous_key:
            rank = position
            previous_key = key
        standings.append(
            MemberStanding(
                user_id=stat.user_id,
                display_name=names.get(stat.user_id, stat.user_id),
                completed_count=stat.completed_count,
                completed_stars=stat.completed_stars,
                overdue_count=stat.overdue_count,
                rank=rank,
            )
        )
    return standings


def sort_assigned(
    tasks: Iterable[Task],
    sort_by: AssignedSort | str = AssignedSort.DEADLINE,
    *,
    group_names: Mapping[str, str] | None = None,
) -> list[Task]:
    """Order a member's tasks by deadline, by difficulty (hardest first) or by group name."""
    sort_by = AssignedSort(sort_by)
    tasks = list(tasks)

    if sort_by == AssignedSort.DIFFICULTY:
        return sorted(tasks, key=lambda task: -task.difficulty)
    if sort_by == AssignedSort.GROUP:
        names = group_names or {}
        return sorted(tasks, key=lambda task: names.get(task.group_id, UNKNOWN_GROUP_NAME).casefold())
    return sort_by_deadline(tasks)
