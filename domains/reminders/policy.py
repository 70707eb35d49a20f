"""Reminder policy - due window, quiet hours, daily cap, throttle, platform rules.

The engine evaluates one due (reminder, occurrence, offset, channel) at a
time, in a fixed order. Every verdict except "throttled" and "duplicate"
leaves a ledger mark so the same tuple is never evaluated again.
"""

import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from logger import logger
from . import config
from .ledger import TriggerLedger
from .local_cache import LocalCache
from .registry import build_occurrence_key, build_trigger_id
from .types import (
    Candidate,
    Channel,
    ClientCapabilityClass,
    QuietHours,
    TriggerRecord,
    TriggerStatus,
)


def is_due(fire_at_ms: int, now_ms: int, window_ms: int = config.NOW_WINDOW_MS) -> bool:
    """Due from the fire time (occurrence - offset) until fire time + window.

    The window is anchored on the fire time, not the event time, so its width
    does not grow with the offset.
    """
    return fire_at_ms <= now_ms < fire_at_ms + window_ms


def _local(epoch_ms: int, timezone: str) -> datetime:
    return datetime.fromtimestamp(epoch_ms / 1000, ZoneInfo(timezone))


def day_key(epoch_ms: int, timezone: str) -> str:
    """Local calendar day, YYYY-MM-DD."""
    return _local(epoch_ms, timezone).strftime("%Y-%m-%d")


def is_within_quiet_hours(epoch_ms: int, timezone: str, quiet_hours: QuietHours) -> bool:
    """Whether the local hour falls in [start, end), wrapping past midnight."""
    if not quiet_hours.enabled:
        return False
    start, end = quiet_hours.start_hour, quiet_hours.end_hour
    if start == end:
        return False
    hour = _local(epoch_ms, timezone).hour
    if start < end:
        return start <= hour < end
    return hour >= start or hour < end


class DailyCounter:
    """Sent notifications per local day, persisted in the device cache."""

    def __init__(self, user_id: Optional[str], cache: LocalCache):
        self.user_id = user_id
        self.cache = cache
        self._counts: dict[str, int] = {}
        self._dirty = False
        self.merge()

    def merge(self) -> None:
        """Take the higher of our count and the cached count for every day."""
        try:
            cached = self.cache.load_daily_counts(self.user_id)
        except sqlite3.Error as e:
            logger.warning(f"Daily count merge skipped: {e}")
            return
        for day, count in cached.items():
            if count > self._counts.get(day, 0):
                self._counts[day] = count

    def get(self, day: str) -> int:
        return self._counts.get(day, 0)

    def increment(self, day: str) -> int:
        self._counts[day] = self._counts.get(day, 0) + 1
        self._dirty = True
        return self._counts[day]

    def save(self) -> bool:
        if not self._dirty:
            return True
        try:
            self.cache.save_daily_counts(self.user_id, self._counts)
        except sqlite3.Error as e:
            logger.error(f"Failed to save daily counts: {e}")
            return False
        self._dirty = False
        return True


@dataclass(frozen=True)
class Verdict:
    status: TriggerStatus
    trigger_id: str
    occurrence_key: str

    @property
    def dispatch(self) -> bool:
        return self.status == TriggerStatus.SENT


class PolicyEngine:
    """Decides, per due candidate, whether to dispatch or how to skip."""

    def __init__(
        self,
        ledger: TriggerLedger,
        counter: DailyCounter,
        capability_class: ClientCapabilityClass,
        quiet_hours: Optional[QuietHours] = None,
        daily_cap: Optional[int] = None,
        throttle_window_ms: Optional[int] = None,
    ):
        self.ledger = ledger
        self.counter = counter
        self.capability_class = ClientCapabilityClass(capability_class)
        self.quiet_hours = quiet_hours or QuietHours(
            enabled=config.DEFAULT_QUIET_HOURS_ENABLED,
            start_hour=config.DEFAULT_QUIET_HOURS_START,
            end_hour=config.DEFAULT_QUIET_HOURS_END,
        )
        self.daily_cap = daily_cap if daily_cap is not None else config.DAILY_REMINDER_CAP
        self.throttle_window_ms = (
            throttle_window_ms if throttle_window_ms is not None else config.THROTTLE_WINDOW_MS
        )
        self._last_sent: dict[tuple[str, Channel], int] = {}

    @property
    def throttled_keys(self) -> int:
        return len(self._last_sent)

    def prune_throttle(self, now_ms: int) -> None:
        """Forget sends that can no longer throttle anything."""
        self._last_sent = {
            key: sent_at for key, sent_at in self._last_sent.items()
            if now_ms - sent_at < self.throttle_window_ms
        }

    def _record(self, candidate: Candidate, trigger_id: str, status: TriggerStatus) -> TriggerRecord:
        return TriggerRecord(
            trigger_id=trigger_id,
            event_key=candidate.reminder.event_key,
            occurrence_epoch_ms=candidate.occurrence.occurrence_epoch_ms,
            minutes_before=candidate.offset.minutes_before,
            channel=candidate.channel,
            status=status,
            scheduled_for_ms=candidate.fire_at_ms,
        )

    def _skip(self, candidate: Candidate, trigger_id: str, occurrence_key: str,
              status: TriggerStatus, block_occurrence: bool) -> Verdict:
        self.ledger.mark_fired(trigger_id, self._record(candidate, trigger_id, status))
        if block_occurrence:
            self.ledger.mark_fired(occurrence_key)
        logger.debug(f"Trigger {trigger_id}: {status.value}")
        return Verdict(status, trigger_id, occurrence_key)

    def evaluate(self, candidate: Candidate, now_ms: int) -> Verdict:
        reminder = candidate.reminder
        channel = candidate.channel
        occurrence_ms = candidate.occurrence.occurrence_epoch_ms
        trigger_id = build_trigger_id(
            reminder.event_key, occurrence_ms, candidate.offset.minutes_before, channel
        )
        occurrence_key = build_occurrence_key(reminder.event_key, occurrence_ms, channel)

        if self.ledger.has_fired(trigger_id):
            return Verdict(TriggerStatus.DUPLICATE, trigger_id, occurrence_key)

        # 1. Another offset already covered this occurrence+channel
        if self.ledger.has_fired(occurrence_key):
            self.ledger.mark_fired(trigger_id)
            return Verdict(TriggerStatus.ALREADY_HANDLED, trigger_id, occurrence_key)

        # 2. Quiet hours, judged at the fire time in the reminder's timezone
        fire_at = candidate.fire_at_ms
        if is_within_quiet_hours(fire_at, reminder.timezone, self.quiet_hours):
            return self._skip(candidate, trigger_id, occurrence_key,
                              TriggerStatus.SKIPPED_QUIET_HOURS, block_occurrence=False)

        # 3. Daily cap
        day = day_key(fire_at, reminder.timezone)
        if self.counter.get(day) >= self.daily_cap:
            return self._skip(candidate, trigger_id, occurrence_key,
                              TriggerStatus.SKIPPED_CAP, block_occurrence=True)

        # 4. Throttle - transient, leaves no mark
        throttle_key = (reminder.event_key, channel)
        last_sent = self._last_sent.get(throttle_key)
        if last_sent is not None and now_ms - last_sent < self.throttle_window_ms:
            return Verdict(TriggerStatus.THROTTLED, trigger_id, occurrence_key)

        # 5. Platform exclusivity
        if channel == Channel.BROWSER and self.capability_class == ClientCapabilityClass.INSTALLED:
            return self._skip(candidate, trigger_id, occurrence_key,
                              TriggerStatus.SKIPPED_PUSH_HANDLES_BROWSER, block_occurrence=True)
        if channel == Channel.PUSH and self.capability_class == ClientCapabilityClass.STANDARD:
            return self._skip(candidate, trigger_id, occurrence_key,
                              TriggerStatus.SKIPPED_PLATFORM_NOT_APPLICABLE, block_occurrence=True)

        # 6. Dispatch
        self.counter.increment(day)
        self._last_sent[throttle_key] = now_ms
        self.ledger.mark_fired(trigger_id, self._record(candidate, trigger_id, TriggerStatus.SENT))
        self.ledger.mark_fired(occurrence_key)
        if channel == Channel.PUSH:
            # The push pipeline's own handler raises the OS notification
            self.ledger.mark_fired(build_occurrence_key(reminder.event_key, occurrence_ms, Channel.BROWSER))

        return Verdict(TriggerStatus.SENT, trigger_id, occurrence_key)
