"""Event reminders - scheduling and deduplication engine.

Notifies a user ahead of scheduled economic events over three channels
(in-app list, OS notification, push) with at most one notification per
event occurrence per channel, across restarts, processes and devices.

Storage: Supabase + device-local SQLite cache
"""

from .types import (
    Channel,
    CHANNEL_ORDER,
    ClientCapabilityClass,
    ReminderScope,
    TriggerStatus,
    ReminderOffset,
    Recurrence,
    Reminder,
    Occurrence,
    Candidate,
    TriggerRecord,
    QuietHours,
    Notification,
)
from .errors import ReminderError, ReminderValidationError, RemoteStoreError
from .registry import (
    build_trigger_id,
    build_occurrence_key,
    build_series_key,
    normalize_reminder,
)
from .occurrences import expand
from .ledger import TriggerLedger, CachedTriggerLedger
from .policy import PolicyEngine, DailyCounter, Verdict, is_due, is_within_quiet_hours
from .capability import (
    NotificationCapability,
    WebhookCapability,
    UnsupportedCapability,
    build_capability,
)
from .dispatcher import Dispatcher, build_notification
from .notifications import NotificationStore
from .reminder_store import ReminderStore
from .upcoming import UpcomingEvents
from .scheduler import SchedulerLoop, TickResult
from .session import ReminderSession

__all__ = [
    # Types
    "Channel",
    "CHANNEL_ORDER",
    "ClientCapabilityClass",
    "ReminderScope",
    "TriggerStatus",
    "ReminderOffset",
    "Recurrence",
    "Reminder",
    "Occurrence",
    "Candidate",
    "TriggerRecord",
    "QuietHours",
    "Notification",
    # Errors
    "ReminderError",
    "ReminderValidationError",
    "RemoteStoreError",
    # Keys
    "build_trigger_id",
    "build_occurrence_key",
    "build_series_key",
    "normalize_reminder",
    # Engine
    "expand",
    "TriggerLedger",
    "CachedTriggerLedger",
    "PolicyEngine",
    "DailyCounter",
    "Verdict",
    "is_due",
    "is_within_quiet_hours",
    "NotificationCapability",
    "WebhookCapability",
    "UnsupportedCapability",
    "build_capability",
    "Dispatcher",
    "build_notification",
    "NotificationStore",
    "ReminderStore",
    "UpcomingEvents",
    "SchedulerLoop",
    "TickResult",
    "ReminderSession",
]
