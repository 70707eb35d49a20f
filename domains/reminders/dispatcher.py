"""Dispatcher - turns a "sent" verdict into one outbound action per channel.

- inApp:   optimistic Notification Store add + idempotent remote insert
- browser: OS notification tagged per occurrence, only with permission
- push:    nothing; the push pipeline delivers on its own

Outbound I/O is queued and awaited together in flush(), once per tick.
"""

import asyncio
from datetime import datetime
from typing import Awaitable, Optional
from zoneinfo import ZoneInfo

from logger import logger
from .capability import GRANTED, NotificationCapability
from .notifications import NotificationStore
from .registry import build_browser_tag, resolve_event_impact, resolve_event_title
from .types import Candidate, Channel, Notification

# (label, icon, substrings matched against the lowercased impact)
IMPACT_LEVELS = [
    ("High Impact", "!!!", ("strong", "high")),
    ("Medium Impact", "!!", ("moderate", "medium")),
    ("Low Impact", "!", ("weak", "low")),
    ("Data Not Loaded", "?", ("not loaded",)),
    ("Non-Economic", "~", ("non-economic",)),
]


def resolve_impact_meta(impact: Optional[str]) -> tuple[str, str]:
    """Return (label, icon) for an impact string."""
    normalized = (impact or "").lower()
    if normalized == "none":
        return "Non-Economic", "~"
    for label, icon, needles in IMPACT_LEVELS:
        if any(needle in normalized for needle in needles):
            return label, icon
    return "Unknown", "?"


def format_event_time(epoch_ms: int, timezone: str) -> str:
    return datetime.fromtimestamp(epoch_ms / 1000, ZoneInfo(timezone)).strftime("%H:%M")


def build_notification(candidate: Candidate, trigger_id: str, now_ms: int) -> Notification:
    reminder = candidate.reminder
    matched = candidate.occurrence.event or {}
    occurrence_ms = candidate.occurrence.occurrence_epoch_ms
    minutes = candidate.offset.minutes_before

    impact = resolve_event_impact(matched) if matched else reminder.impact
    impact_label, icon = resolve_impact_meta(impact)
    title = resolve_event_title(matched) if matched else (reminder.title or "Event reminder")
    event_time = format_event_time(occurrence_ms, reminder.timezone)

    return Notification(
        id=trigger_id,
        event_key=reminder.event_key,
        event_id=(
            (matched.get("id") if matched else None)
            or reminder.metadata.get("seriesId")
            or reminder.metadata.get("eventId")
            or reminder.event_key
        ),
        event_source=reminder.event_source,
        title=title,
        message=f"{icon} {impact_label} • {event_time} • in {minutes} min",
        event_time=event_time,
        impact=impact,
        impact_label=impact_label,
        minutes_before=minutes,
        event_epoch_ms=occurrence_ms,
        scheduled_for_ms=candidate.fire_at_ms,
        sent_at_ms=now_ms,
        channel=candidate.channel.value,
    )


class Dispatcher:
    """Executes dispatch decisions and batches their I/O."""

    def __init__(self, notifications: NotificationStore, capability: NotificationCapability):
        self.notifications = notifications
        self.capability = capability
        self._effects: list[Awaitable] = []

    @property
    def pending_effects(self) -> int:
        return len(self._effects)

    def dispatch(self, candidate: Candidate, trigger_id: str, now_ms: int) -> Optional[Notification]:
        """Act on a sent trigger. Returns the notification built, if any."""
        if candidate.channel == Channel.PUSH:
            logger.debug(f"Push for {trigger_id} left to the push pipeline")
            return None

        notification = build_notification(candidate, trigger_id, now_ms)

        if candidate.channel == Channel.IN_APP:
            if self.notifications.add_optimistic(notification):
                self._effects.append(self.notifications.persist(notification))
                logger.info(f"In-app reminder: {notification.title} ({notification.message})")
            return notification

        if self.capability.permission != GRANTED:
            logger.debug(f"Browser notification for {trigger_id} skipped: permission {self.capability.permission}")
            return None

        tag = build_browser_tag(candidate.reminder.event_key, candidate.occurrence.occurrence_epoch_ms)
        self._effects.append(self.capability.show(notification.title, notification.message, tag))
        logger.info(f"Browser reminder: {notification.title} ({notification.message})")
        return notification

    async def flush(self) -> int:
        """Await queued effects. Returns the number that failed."""
        if not self._effects:
            return 0
        effects, self._effects = self._effects, []
        results = await asyncio.gather(*effects, return_exceptions=True)
        failures = [r for r in results if isinstance(r, Exception)]
        for error in failures:
            logger.error(f"Reminder dispatch effect failed: {error}")
        return len(failures)

    def discard(self) -> None:
        """Drop queued effects without running them (session teardown)."""
        for effect in self._effects:
            close = getattr(effect, "close", None)
            if close:
                close()
        self._effects = []
