"""Type definitions for the reminder scheduling engine.

All timestamps are integer epoch milliseconds.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Optional


class Channel(str, Enum):
    """Delivery surface for a reminder."""
    IN_APP = "inApp"      # Notification Store list
    BROWSER = "browser"   # OS notification raised by the running client
    PUSH = "push"         # Delivered by the external push pipeline


# Evaluation order inside one offset
CHANNEL_ORDER = (Channel.IN_APP, Channel.BROWSER, Channel.PUSH)


class ClientCapabilityClass(str, Enum):
    """What kind of client this process is, resolved once per session."""
    INSTALLED = "installed"  # Receives push while not foregrounded
    STANDARD = "standard"    # Only notifies while open


class ReminderScope(str, Enum):
    EVENT = "event"
    SERIES = "series"


class TriggerStatus(str, Enum):
    """Outcome of evaluating one (occurrence, offset, channel)."""
    SENT = "sent"
    SKIPPED_QUIET_HOURS = "skipped-quiet-hours"
    SKIPPED_CAP = "skipped-cap"
    SKIPPED_PUSH_HANDLES_BROWSER = "skipped-pwa-push-handles-browser"
    SKIPPED_PLATFORM_NOT_APPLICABLE = "skipped-platform-not-applicable"
    # Verdicts below are never persisted
    ALREADY_HANDLED = "already-handled"
    DUPLICATE = "duplicate"
    THROTTLED = "throttled"

    @property
    def persisted(self) -> bool:
        return self not in (
            TriggerStatus.ALREADY_HANDLED,
            TriggerStatus.DUPLICATE,
            TriggerStatus.THROTTLED,
        )


@dataclass(frozen=True)
class ReminderOffset:
    """One 'N minutes before' entry with its enabled channels."""
    minutes_before: int
    channels: frozenset = frozenset()


@dataclass(frozen=True)
class Recurrence:
    """Stored recurrence rule of a custom event."""
    enabled: bool
    interval: str  # "none", "1h", "1D", "1W", "1M", ...
    ends_type: str = "never"  # "never" | "after" | "onDate"
    ends_count: Optional[int] = None
    ends_until_local_date: Optional[str] = None  # "YYYY-MM-DD"

    @property
    def active(self) -> bool:
        return self.enabled and bool(self.interval) and self.interval != "none"


@dataclass
class Reminder:
    """A user's reminder configuration for one event or series."""
    event_key: str
    offsets: list[ReminderOffset]
    scope: ReminderScope = ReminderScope.EVENT
    series_key: Optional[str] = None
    enabled: bool = True
    timezone: str = "America/New_York"
    base_epoch_ms: Optional[int] = None
    recurrence: Optional[Recurrence] = None
    title: str = "Event reminder"
    impact: str = "unknown"
    event_source: str = "unknown"
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def has_stored_recurrence(self) -> bool:
        return (
            self.recurrence is not None
            and self.recurrence.active
            and self.base_epoch_ms is not None
        )

    @property
    def max_minutes_before(self) -> int:
        return max((o.minutes_before for o in self.offsets), default=0)


@dataclass(frozen=True)
class Occurrence:
    """A concrete point in time at which a reminder's event happens."""
    event_key: str
    occurrence_epoch_ms: int
    # Upstream event this occurrence was matched from (rule-less series only)
    event: Optional[dict] = None


@dataclass(frozen=True)
class Candidate:
    """One due (reminder, occurrence, offset, channel) tuple."""
    reminder: Reminder
    occurrence: Occurrence
    offset: ReminderOffset
    channel: Channel

    @property
    def fire_at_ms(self) -> int:
        return self.occurrence.occurrence_epoch_ms - self.offset.minutes_before * 60 * 1000


@dataclass(frozen=True)
class TriggerRecord:
    """Persisted record of a handled trigger."""
    trigger_id: str
    event_key: str
    occurrence_epoch_ms: int
    minutes_before: int
    channel: Channel
    status: TriggerStatus
    scheduled_for_ms: int

    def to_db_row(self, user_id: str) -> dict:
        return {
            "user_id": user_id,
            "trigger_id": self.trigger_id,
            "event_key": self.event_key,
            "occurrence_epoch_ms": self.occurrence_epoch_ms,
            "minutes_before": self.minutes_before,
            "channel": self.channel.value,
            "status": self.status.value,
            "scheduled_for_ms": self.scheduled_for_ms,
        }


@dataclass(frozen=True)
class QuietHours:
    enabled: bool = True
    start_hour: int = 21
    end_hour: int = 6

    @classmethod
    def from_db_row(cls, row: Optional[dict]) -> "QuietHours":
        if not row:
            return cls()
        return cls(
            enabled=row.get("quiet_hours_enabled", True) is not False,
            start_hour=_hour_or_default(row.get("quiet_hours_start"), 21),
            end_hour=_hour_or_default(row.get("quiet_hours_end"), 6),
        )


def _hour_or_default(value: Any, default: int) -> int:
    """Null, non-numeric and out-of-range hours fall back to the default."""
    if value is None or isinstance(value, bool):
        return default
    try:
        hour = int(value)
    except (TypeError, ValueError):
        return default
    return hour if 0 <= hour <= 23 else default


@dataclass
class Notification:
    """An in-app notification record."""
    id: str
    event_key: Optional[str]
    title: str
    message: Optional[str]
    channel: str = Channel.IN_APP.value
    event_id: Optional[str] = None
    event_source: Optional[str] = None
    event_time: Optional[str] = None
    impact: Optional[str] = None
    impact_label: Optional[str] = None
    minutes_before: Optional[int] = None
    event_epoch_ms: Optional[int] = None
    scheduled_for_ms: Optional[int] = None
    sent_at_ms: Optional[int] = None
    read: bool = False
    deleted: bool = False

    @property
    def status(self) -> str:
        if self.deleted:
            return "deleted"
        if self.read:
            return "read"
        return "unread"

    @property
    def occurrence_key(self) -> str:
        """Key collapsing notifications of the same occurrence+channel."""
        if self.event_key and self.event_epoch_ms is not None:
            return f"{self.event_key}|{self.event_epoch_ms}|{self.channel or Channel.IN_APP.value}"
        return self.id

    def with_changes(self, **changes) -> "Notification":
        return replace(self, **changes)

    @classmethod
    def from_db_row(cls, row: dict) -> "Notification":
        """Create Notification from a database row (remote or local cache)."""
        return cls(
            id=str(row["id"]),
            event_key=row.get("event_key"),
            title=row.get("title") or "Reminder",
            message=row.get("message"),
            channel=row.get("channel") or Channel.IN_APP.value,
            event_id=row.get("event_id"),
            event_source=row.get("event_source"),
            event_time=row.get("event_time"),
            impact=row.get("impact"),
            impact_label=row.get("impact_label"),
            minutes_before=row.get("minutes_before"),
            event_epoch_ms=row.get("event_epoch_ms"),
            scheduled_for_ms=row.get("scheduled_for_ms"),
            sent_at_ms=row.get("sent_at_ms"),
            read=bool(row.get("read")),
            deleted=bool(row.get("deleted")),
        )

    def to_db_row(self) -> dict:
        return {
            "id": self.id,
            "event_key": self.event_key,
            "title": self.title,
            "message": self.message,
            "channel": self.channel,
            "event_id": self.event_id,
            "event_source": self.event_source,
            "event_time": self.event_time,
            "impact": self.impact,
            "impact_label": self.impact_label,
            "minutes_before": self.minutes_before,
            "event_epoch_ms": self.event_epoch_ms,
            "scheduled_for_ms": self.scheduled_for_ms,
            "sent_at_ms": self.sent_at_ms,
            "read": self.read,
            "deleted": self.deleted,
            "status": self.status,
        }
