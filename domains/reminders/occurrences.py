"""Occurrence expansion for single and recurring reminders.

Pure functions: given a reminder and a half-open window [start, end), return
the occurrence timestamps inside it. Calendar intervals (days and up) step in
the reminder's timezone and keep the local wall-clock time across DST changes.
"""

import math
from datetime import date, datetime, time, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from dateutil.relativedelta import relativedelta

from . import config
from .types import Reminder

MINUTE_MS = 60 * 1000

FIXED_INTERVALS_MS = {
    "5m": 5 * MINUTE_MS,
    "15m": 15 * MINUTE_MS,
    "30m": 30 * MINUTE_MS,
    "1h": 60 * MINUTE_MS,
    "4h": 4 * 60 * MINUTE_MS,
}

# interval -> (step days, step months)
CALENDAR_INTERVALS = {
    "1D": (1, 0),
    "1W": (7, 0),
    "1M": (0, 1),
    "1Q": (0, 3),
    "1Y": (0, 12),
}

SUPPORTED_INTERVALS = set(FIXED_INTERVALS_MS) | set(CALENDAR_INTERVALS)


def _to_local(epoch_ms: int, tz: ZoneInfo) -> datetime:
    return datetime.fromtimestamp(epoch_ms / 1000, tz)


def _local_epoch_ms(day: date, at: time, tz: ZoneInfo) -> int:
    return int(datetime.combine(day, at, tzinfo=tz).timestamp() * 1000)


def _parse_local_date(value) -> Optional[date]:
    if not value:
        return None
    try:
        year, month, day = (int(part) for part in str(value).split("-")[:3])
        return date(year, month, day)
    except ValueError:
        return None


def _parse_local_time(value) -> Optional[time]:
    if not value:
        return None
    try:
        hour, minute = (int(part) for part in str(value).split(":")[:2])
        return time(hour, minute)
    except ValueError:
        return None


def _until_epoch_ms(reminder: Reminder, at: time, tz: ZoneInfo) -> Optional[int]:
    recurrence = reminder.recurrence
    if recurrence.ends_type != "onDate":
        return None
    until_date = _parse_local_date(recurrence.ends_until_local_date)
    if until_date is None:
        return None
    return _local_epoch_ms(until_date, at, tz)


def _max_count(reminder: Reminder) -> Optional[int]:
    recurrence = reminder.recurrence
    if recurrence.ends_type != "after":
        return None
    return max(1, recurrence.ends_count or 1)


def expand(
    reminder: Reminder,
    range_start_ms: int,
    range_end_ms: int,
    max_occurrences: int = config.MAX_OCCURRENCES_PER_EXPANSION,
) -> list[int]:
    """Return occurrence epochs of a reminder inside [range_start_ms, range_end_ms).

    Non-recurring reminders yield their base time when it falls in the window.
    Recurring reminders with an unknown interval or no base time yield nothing.
    """
    base = reminder.base_epoch_ms
    recurrence = reminder.recurrence

    if recurrence is None or not recurrence.active:
        if base is None or not (range_start_ms <= base < range_end_ms):
            return []
        return [base]

    if base is None or range_end_ms <= range_start_ms:
        return []

    if recurrence.interval in FIXED_INTERVALS_MS:
        return _expand_fixed(reminder, range_start_ms, range_end_ms, max_occurrences)
    if recurrence.interval in CALENDAR_INTERVALS:
        return _expand_calendar(reminder, range_start_ms, range_end_ms, max_occurrences)
    return []


def _expand_fixed(reminder: Reminder, start: int, end: int, max_occurrences: int) -> list[int]:
    base = reminder.base_epoch_ms
    step = FIXED_INTERVALS_MS[reminder.recurrence.interval]
    tz = ZoneInfo(reminder.timezone)

    start_index = max(0, math.ceil((start - base) / step))
    last_index = math.ceil((end - base) / step) - 1

    local_base = _to_local(base, tz)
    until = _until_epoch_ms(reminder, local_base.time().replace(second=0, microsecond=0), tz)
    if until is not None:
        last_index = min(last_index, math.floor((until - base) / step))

    count = _max_count(reminder)
    if count is not None:
        last_index = min(last_index, count - 1)

    occurrences = []
    for index in range(start_index, last_index + 1):
        occurrences.append(base + index * step)
        if len(occurrences) >= max_occurrences:
            break
    return occurrences


def _expand_calendar(reminder: Reminder, start: int, end: int, max_occurrences: int) -> list[int]:
    base = reminder.base_epoch_ms
    step_days, step_months = CALENDAR_INTERVALS[reminder.recurrence.interval]
    tz = ZoneInfo(reminder.timezone)

    local_base = _to_local(base, tz)
    base_date = _parse_local_date(reminder.metadata.get("localDate")) or local_base.date()
    at = _parse_local_time(reminder.metadata.get("localTime"))
    sub_second_ms = 0
    if at is None:
        # No explicit wall-clock time: occurrence 0 is exactly the base
        at = time(local_base.hour, local_base.minute, local_base.second)
        sub_second_ms = base % 1000

    until = _until_epoch_ms(reminder, at, tz)
    if until is not None:
        until += sub_second_ms
    count = _max_count(reminder)

    # Jump close to the window instead of walking from the base date
    range_start_date = _to_local(start, tz).date()
    index = 0
    if step_days:
        diff_days = (range_start_date - base_date).days
        index = diff_days // step_days if diff_days > 0 else 0
    else:
        diff_months = (
            (range_start_date.year - base_date.year) * 12
            + (range_start_date.month - base_date.month)
        )
        index = diff_months // step_months if diff_months > 0 else 0
    # One step back covers occurrences shifted across the date line by the time of day
    index = max(0, index - 1)

    occurrences = []
    while len(occurrences) < max_occurrences:
        if count is not None and index >= count:
            break

        if step_days:
            day = base_date + timedelta(days=index * step_days)
        else:
            day = base_date + relativedelta(months=index * step_months)

        occurrence = _local_epoch_ms(day, at, tz) + sub_second_ms
        index += 1
        if occurrence < start:
            continue
        if occurrence >= end:
            break
        if until is not None and occurrence > until:
            break
        occurrences.append(occurrence)

    return occurrences
