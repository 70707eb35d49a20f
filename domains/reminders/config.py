"""Reminder engine configuration - tick timing, policy limits, cache paths."""

import os

from config import DATA_DIR

# Scheduler loop
TICK_INTERVAL_SECONDS = int(os.environ.get("REMINDERS_TICK_SECONDS", 15))

# A reminder is due from its fire time until fire time + NOW_WINDOW_MS.
# The same window is used as look-back when expanding occurrences.
NOW_WINDOW_MS = 9 * 60 * 1000
LOOKAHEAD_MS = 24 * 60 * 60 * 1000

# Policy limits
DAILY_REMINDER_CAP = int(os.environ.get("REMINDERS_DAILY_CAP", 50))
THROTTLE_WINDOW_MS = 2 * 60 * 1000
MAX_REMINDERS_PER_EVENT = 3

# Default quiet hours (local time of the reminder's timezone)
DEFAULT_QUIET_HOURS_ENABLED = True
DEFAULT_QUIET_HOURS_START = 21
DEFAULT_QUIET_HOURS_END = 6

DEFAULT_TIMEZONE = os.environ.get("REMINDERS_DEFAULT_TIMEZONE", "America/New_York")

# Recurrence
# High-frequency repeats are expandable but never fire reminders
DISALLOWED_REPEAT_INTERVALS = {"5m", "15m", "30m"}
MAX_OCCURRENCES_PER_EXPANSION = 5000

# Notification history
NOTIFICATIONS_LIMIT = 200
AUTO_READ_AGE_MS = 24 * 60 * 60 * 1000

# Device cache (SQLite, shared by every client process on this machine)
LOCAL_CACHE_DB = os.environ.get(
    "REMINDERS_CACHE_DB",
    str(DATA_DIR / "reminders_cache.db")
)

# Remote store
REMOTE_TIMEOUT_SECONDS = 10
TRIGGER_BATCH_SIZE = 400

# Subscription poll intervals
REMINDERS_POLL_SECONDS = 30
NOTIFICATIONS_POLL_SECONDS = 30
TRIGGERS_POLL_SECONDS = 60
PREFERENCES_POLL_SECONDS = 60
UPCOMING_EVENTS_POLL_SECONDS = 15 * 60
