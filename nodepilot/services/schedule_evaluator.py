"""
NodePilot - Schedule Evaluator
==============================

Pure decision logic: given a schedule and the current time, should the
associated action fire during this minute?

No I/O and no clock access happen here; the scheduler computes `now` once
per tick and passes it in, so every machine in a tick is judged against the
same instant.
"""

import logging
from datetime import date, datetime, time
from typing import Optional

from ..models.schedule import Schedule, ScheduleType


logger = logging.getLogger(__name__)


def normalize_time(value: Optional[str]) -> Optional[str]:
    """
    Normalize an `H:MM` / `HH:MM` string to zero-padded `HH:MM`.

    Returns None when the value is empty or not a valid 24-hour time.
    """
    if not value:
        return None
    parts = value.strip().split(":")
    if len(parts) != 2:
        return None
    try:
        parsed = time(hour=int(parts[0]), minute=int(parts[1]))
    except ValueError:
        return None
    return parsed.strftime("%H:%M")


def minute_of_day(now: datetime) -> str:
    """Truncate a timestamp to its `HH:MM` minute of day."""
    return now.strftime("%H:%M")


def _as_date(value) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    return value


def is_within_range(current: date, from_date, to_date) -> bool:
    """Inclusive date-only containment check. Missing bounds never match."""
    start, end = _as_date(from_date), _as_date(to_date)
    if start is None or end is None:
        return False
    return start <= current <= end


def should_fire(schedule: Schedule, now: datetime) -> bool:
    """
    Decide whether `schedule` fires at `now`.

    1. Disabled schedules never fire.
    2. The minute of day of `now` must equal the schedule time.
    3. Daily schedules fire every day at that minute.
    4. Range schedules additionally require the date of `now` to fall
       within [from_date, to_date], inclusive.
    Unknown schedule types do not fire.
    """
    if not schedule.enabled:
        return False

    scheduled_minute = normalize_time(schedule.time)
    if scheduled_minute is None or minute_of_day(now) != scheduled_minute:
        return False

    if schedule.type == ScheduleType.DAILY.value:
        return True

    if schedule.type == ScheduleType.RANGE.value:
        return is_within_range(now.date(), schedule.from_date, schedule.to_date)

    logger.warning(f"Unknown schedule type {schedule.type!r}; not firing")
    return False
