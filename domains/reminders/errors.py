"""Reminder engine exceptions.

Nothing here is allowed to escape a scheduler tick. Validation errors skip one
reminder; remote store errors are logged and the session carries on with its
in-memory view.
"""


class ReminderError(Exception):
    """Base class for reminder engine errors."""


class ReminderValidationError(ReminderError):
    """A reminder record is malformed (missing offsets, bad timestamps, bad interval)."""

    def __init__(self, event_key: str | None, reason: str):
        self.event_key = event_key
        self.reason = reason
        super().__init__(f"Invalid reminder {event_key or '<no key>'}: {reason}")


class RemoteStoreError(ReminderError):
    """A Supabase read or write failed."""

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Remote store {operation} failed: {detail}")
