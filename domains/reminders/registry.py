"""Reminder keys and record normalization.

Key formats:
- Trigger:              event_key|occurrence_epoch_ms|minutes_before|channel
- OccurrenceChannelKey: event_key|occurrence_epoch_ms|channel
- Series key:           source:series:name:currency:impact:category
"""

import math
from datetime import timezone as dt_timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil.parser import parse as parse_datetime

from logger import logger
from . import config
from .errors import ReminderValidationError
from .types import (
    Channel,
    Recurrence,
    Reminder,
    ReminderOffset,
    ReminderScope,
)


def build_trigger_id(event_key: str, occurrence_epoch_ms: int, minutes_before: int, channel: Channel) -> str:
    return f"{event_key}|{occurrence_epoch_ms}|{minutes_before}|{Channel(channel).value}"


def build_occurrence_key(event_key: str, occurrence_epoch_ms: int, channel: Channel) -> str:
    return f"{event_key}|{occurrence_epoch_ms}|{Channel(channel).value}"


def build_browser_tag(event_key: str, occurrence_epoch_ms: int) -> str:
    """OS notification tag; the OS collapses notifications sharing a tag."""
    return f"t2t-{event_key}|{occurrence_epoch_ms}"


def _normalize_key(value: Any) -> Optional[str]:
    if value is None:
        return None
    trimmed = str(value).strip().lower()
    return trimmed or None


def resolve_event_title(event: dict) -> str:
    for field_name in ("title", "name", "Name", "canonicalName", "eventName"):
        if event.get(field_name):
            return str(event[field_name])
    return "Event reminder"


def resolve_event_impact(event: dict) -> str:
    for field_name in ("impact", "strength", "strengthValue"):
        if event.get(field_name):
            return str(event[field_name])
    return "unknown"


def build_series_key(event: dict, event_source: Optional[str] = None) -> str:
    """Template key matching every instance of a recurring upstream event."""
    source = event_source or event.get("source") or event.get("sourceKey") or "canonical"
    name_key = _normalize_key(event.get("canonicalName") or resolve_event_title(event)) or "event"
    currency_key = _normalize_key(event.get("currency") or event.get("Currency")) or "na"
    impact_key = _normalize_key(resolve_event_impact(event)) or "unknown"
    category_key = _normalize_key(event.get("category") or event.get("Category")) or "na"
    return f"{source}:series:{name_key}:{currency_key}:{impact_key}:{category_key}"


def to_epoch_ms(value: Any) -> Optional[int]:
    """Coerce a number or ISO timestamp to epoch milliseconds, None if unusable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        return int(value)
    try:
        parsed = parse_datetime(str(value))
    except (ValueError, OverflowError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt_timezone.utc)
    return int(parsed.timestamp() * 1000)


def event_epoch_ms(event: dict) -> Optional[int]:
    """Epoch of an upstream event instance."""
    for field_name in ("epochMs", "eventEpochMs", "event_epoch_ms", "date", "time"):
        epoch = to_epoch_ms(event.get(field_name))
        if epoch is not None:
            return epoch
    return None


def resolve_timezone(name: Any) -> str:
    """Validate an IANA timezone name, falling back to the default."""
    if name and not isinstance(name, str):
        logger.warning(f"Timezone {name!r} is not a name, using {config.DEFAULT_TIMEZONE}")
        return config.DEFAULT_TIMEZONE
    if name:
        try:
            ZoneInfo(name)
            return name
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Unknown timezone '{name}', using {config.DEFAULT_TIMEZONE}")
    return config.DEFAULT_TIMEZONE


def normalize_channels(raw: Any) -> frozenset:
    """Accept {'inApp': True, ...} or ['inApp', ...]; unknown names are dropped."""
    if isinstance(raw, dict):
        names = [name for name, enabled in raw.items() if enabled]
    elif isinstance(raw, (list, tuple, set, frozenset)):
        names = list(raw)
    else:
        return frozenset()

    channels = set()
    for name in names:
        try:
            channels.add(Channel(name))
        except ValueError:
            continue
    return frozenset(channels)


def normalize_offsets(raw: Any) -> list[ReminderOffset]:
    """Drop invalid offsets, sort ascending, keep at most MAX_REMINDERS_PER_EVENT."""
    if not isinstance(raw, list):
        return []

    offsets = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        minutes = item.get("minutesBefore", item.get("minutes_before"))
        try:
            minutes = float(minutes)
        except (TypeError, ValueError):
            continue
        if not math.isfinite(minutes) or minutes < 0:
            continue
        offsets.append(ReminderOffset(
            minutes_before=int(minutes),
            channels=normalize_channels(item.get("channels")),
        ))

    offsets.sort(key=lambda o: o.minutes_before)
    return offsets[:config.MAX_REMINDERS_PER_EVENT]


def normalize_recurrence(raw: Any, event_key: Optional[str] = None) -> Optional[Recurrence]:
    if not isinstance(raw, dict):
        return None
    ends = raw.get("ends") or {}
    if not isinstance(ends, dict):
        raise ReminderValidationError(event_key, f"recurrence end is not an object: {ends!r}")
    count = ends.get("count")
    try:
        count = max(1, int(count)) if count is not None else None
    except (TypeError, ValueError):
        count = None
    return Recurrence(
        enabled=raw.get("enabled") is True,
        interval=str(raw.get("interval") or "none"),
        ends_type=ends.get("type") or "never",
        ends_count=count,
        ends_until_local_date=ends.get("untilLocalDate") or ends.get("until_local_date"),
    )


def normalize_reminder(row: dict) -> Optional[Reminder]:
    """Build a Reminder from a stored record.

    Returns None when the reminder has no usable offsets (equivalent to deleted).

    Raises:
        ReminderValidationError: If the record cannot describe a reminder
    """
    if not isinstance(row, dict):
        raise ReminderValidationError(None, f"record is not an object: {type(row).__name__}")
    event_key = row.get("event_key") or row.get("eventKey")
    if not event_key:
        raise ReminderValidationError(None, "missing event key")

    offsets = normalize_offsets(row.get("reminders", row.get("offsets")))
    if not offsets:
        return None

    raw_metadata = row.get("metadata") or {}
    if not isinstance(raw_metadata, dict):
        raise ReminderValidationError(event_key, "metadata is not an object")
    metadata = dict(raw_metadata)
    scope_value = row.get("scope") or metadata.get("scope") or "event"
    try:
        scope = ReminderScope(scope_value)
    except ValueError:
        raise ReminderValidationError(event_key, f"unknown scope '{scope_value}'")

    series_key = row.get("series_key") or row.get("seriesKey")
    if scope == ReminderScope.SERIES and not series_key:
        raise ReminderValidationError(event_key, "series reminder without series key")
    if series_key is not None and not isinstance(series_key, str):
        raise ReminderValidationError(event_key, "series key is not a string")

    raw_epoch = row.get("event_epoch_ms", row.get("eventEpochMs"))
    base_epoch_ms = to_epoch_ms(raw_epoch)
    if raw_epoch is not None and base_epoch_ms is None:
        raise ReminderValidationError(event_key, f"non-finite event time {raw_epoch!r}")

    recurrence = normalize_recurrence(metadata.get("recurrence") or row.get("recurrence"), event_key)
    if scope == ReminderScope.EVENT and base_epoch_ms is None:
        raise ReminderValidationError(event_key, "event reminder without event time")

    return Reminder(
        event_key=str(event_key),
        offsets=offsets,
        scope=scope,
        series_key=series_key if scope == ReminderScope.SERIES else None,
        enabled=row.get("enabled") is not False,
        timezone=resolve_timezone(row.get("timezone")),
        base_epoch_ms=base_epoch_ms,
        recurrence=recurrence,
        title=row.get("title") or "Event reminder",
        impact=row.get("impact") or "unknown",
        event_source=row.get("event_source") or row.get("eventSource") or "unknown",
        metadata=metadata,
    )
