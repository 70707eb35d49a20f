"""Reminder Store - the user's reminder configuration as seen by the engine.

Read-only from the engine's side. Remote snapshots replace the stored set;
locally created custom reminders are merged in only where no remote reminder
shares their event key.
"""

from typing import Iterable, Optional

from logger import logger
from .errors import ReminderValidationError
from .registry import normalize_reminder
from .types import Reminder, ReminderScope


def _normalize_rows(rows: Iterable[dict], origin: str) -> list[Reminder]:
    reminders = []
    for row in rows:
        try:
            reminder = normalize_reminder(row)
        except ReminderValidationError as e:
            logger.warning(f"Skipping {origin} reminder: {e}")
            continue
        except (TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Skipping malformed {origin} reminder: {type(e).__name__}: {e}")
            continue
        if reminder is not None:
            reminders.append(reminder)
    return reminders


class ReminderStore:
    """Holds normalized reminders for one session."""

    def __init__(self):
        self._remote: list[Reminder] = []
        self._custom: list[Reminder] = []

    def apply_snapshot(self, rows: Iterable[dict]) -> None:
        self._remote = _normalize_rows(rows, "stored")
        logger.debug(f"Reminder snapshot: {len(self._remote)} reminder(s)")

    def set_custom_reminders(self, rows: Iterable[dict]) -> None:
        """Replace locally defined reminders.

        Recurring copies of one custom event share a series id; only the first
        of each is kept.
        """
        seen_series = set()
        custom = []
        for reminder in _normalize_rows(rows, "custom"):
            series_id = reminder.metadata.get("seriesId")
            if series_id:
                series_id = str(series_id)
                if series_id in seen_series:
                    continue
                seen_series.add(series_id)
            custom.append(reminder)
        self._custom = custom

    def clear(self) -> None:
        self._remote = []
        self._custom = []

    def all(self) -> list[Reminder]:
        remote_keys = {r.event_key for r in self._remote}
        return self._remote + [r for r in self._custom if r.event_key not in remote_keys]

    def enabled_reminders(self) -> list[Reminder]:
        return [r for r in self.all() if r.enabled and r.offsets]

    def get(self, event_key: str) -> Optional[Reminder]:
        for reminder in self.all():
            if reminder.event_key == event_key:
                return reminder
        return None

    @property
    def has_series_reminders(self) -> bool:
        """Whether any enabled series reminder depends on upstream event instances."""
        return any(
            r.scope == ReminderScope.SERIES and not r.has_stored_recurrence
            for r in self.enabled_reminders()
        )

    def __len__(self) -> int:
        return len(self.all())
