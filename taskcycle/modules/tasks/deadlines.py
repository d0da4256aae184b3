"""Pure deadline arithmetic for tasks."""

import math
import re
from datetime import UTC, datetime, timedelta
from typing import NamedTuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from taskcycle.core.config import Constants
from taskcycle.core.errors import ValidationError


DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
TIME_PATTERN = re.compile(r"^\d{2}:\d{2}$")

_DAY = timedelta(days=1)


class Remaining(NamedTuple):
    """Whole hours and leftover minutes until a deadline, never negative."""

    hours: int
    minutes: int


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def resolve_deadline(
    *,
    created_at: datetime,
    stored_deadline: datetime | None,
    days_remaining: int | None,
) -> datetime:
    """Return the stored deadline, or derive it from the creation time and day count.

    Legacy records without a day count resolve to their creation time.
    """
    if stored_deadline is not None:
        return stored_deadline
    return created_at + timedelta(days=days_remaining or 0)


def remaining(deadline: datetime, now: datetime) -> Remaining:
    """Time left until ``deadline``, floored to whole minutes and clamped at zero."""
    total_minutes = max(0, math.floor((deadline - now).total_seconds() / 60))
    return Remaining(hours=total_minutes // 60, minutes=total_minutes % 60)


def is_overdue(deadline: datetime, completed: bool, now: datetime) -> bool:
    return not completed and deadline <= now


def is_urgent(deadline: datetime, now: datetime) -> bool:
    """Less than a day's worth of whole hours left (overdue tasks are urgent too)."""
    return remaining(deadline, now).hours < Constants.URGENT_THRESHOLD_HOURS


def duration_days(deadline: datetime, now: datetime) -> int:
    """Days between ``now`` and ``deadline`` rounded up, at least one."""
    return max(Constants.MIN_DURATION_DAYS, math.ceil((deadline - now) / _DAY))


def parse_deadline(date_str: str, time_str: str, tz: str | None = None) -> datetime:
    """Parse ``YYYY-MM-DD`` and ``HH:MM`` in timezone ``tz`` into an aware UTC datetime.

    Raises:
        ValidationError: If either part is malformed, out of range, or names
            an impossible calendar date, or the timezone is unknown
    """
    date_str = (date_str or "").strip()
    time_str = (time_str or "").strip()
    if not DATE_PATTERN.match(date_str):
        msg = f"Invalid deadline date {date_str!r}, expected YYYY-MM-DD"
        raise ValidationError(msg)
    if not TIME_PATTERN.match(time_str):
        msg = f"Invalid deadline time {time_str!r}, expected HH:MM"
        raise ValidationError(msg)

    try:
        zone = ZoneInfo(tz or "UTC")
    except (ZoneInfoNotFoundError, ValueError) as e:
        msg = f"Unknown timezone {tz!r}"
        raise ValidationError(msg) from e

    try:
        naive = datetime.strptime(f"{date_str} {time_str}", f"{Constants.DATE_FORMAT} {Constants.TIME_FORMAT}")
    except ValueError as e:
        msg = f"Invalid deadline {date_str} {time_str}: {e}"
        raise ValidationError(msg) from e

    return naive.replace(tzinfo=zone).astimezone(UTC)
