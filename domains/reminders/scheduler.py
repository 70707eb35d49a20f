"""Scheduler Loop - the single timer that turns reminders into notifications.

Every tick:
1. merge the trigger ledger and daily counts with the device cache
2. expand each enabled reminder's occurrences around now
3. evaluate every due (occurrence, offset, channel) through the policy engine
4. dispatch the sent ones
5. flush ledger, counters and dispatch effects once

A tick that starts while the previous one is still running is dropped, not
queued. The next interval picks up anything it would have seen.
"""

import asyncio
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Optional

from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.interval import IntervalTrigger

from logger import logger
from . import config
from .dispatcher import Dispatcher
from .ledger import TriggerLedger
from .occurrences import expand
from .policy import DailyCounter, PolicyEngine, Verdict, is_due
from .reminder_store import ReminderStore
from .types import CHANNEL_ORDER, Candidate, Occurrence, Reminder, ReminderScope, TriggerStatus
from .upcoming import UpcomingEvents


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class TickResult:
    """What one tick evaluated."""
    now_ms: int
    verdicts: list[Verdict] = field(default_factory=list)
    failed_reminders: list[str] = field(default_factory=list)

    def count(self, status: TriggerStatus) -> int:
        return sum(1 for v in self.verdicts if v.status == status)

    @property
    def sent(self) -> list[Verdict]:
        return [v for v in self.verdicts if v.dispatch]

    def summary(self) -> dict[str, int]:
        return dict(Counter(v.status.value for v in self.verdicts))


class SchedulerLoop:
    """Orchestrates one session's ticks."""

    JOB_ID = "reminder_tick"

    def __init__(
        self,
        reminders: ReminderStore,
        ledger: TriggerLedger,
        counter: DailyCounter,
        policy: PolicyEngine,
        dispatcher: Dispatcher,
        upcoming: Optional[UpcomingEvents] = None,
    ):
        self.reminders = reminders
        self.ledger = ledger
        self.counter = counter
        self.policy = policy
        self.dispatcher = dispatcher
        self.upcoming = upcoming
        self._running = False
        self._idle = asyncio.Event()
        self._idle.set()
        self._scheduler: Optional[BaseScheduler] = None
        self.job_id = self.JOB_ID

    @property
    def running(self) -> bool:
        return self._running

    def _occurrences(self, reminder: Reminder, start: int, end: int) -> list[Occurrence]:
        if reminder.scope == ReminderScope.SERIES and not reminder.has_stored_recurrence:
            if self.upcoming is None:
                return []
            return self.upcoming.occurrences(reminder, start, end)
        return [Occurrence(reminder.event_key, epoch) for epoch in expand(reminder, start, end)]

    def _evaluate_reminder(self, reminder: Reminder, now: int, result: TickResult) -> None:
        recurrence = reminder.recurrence
        if recurrence and recurrence.active and recurrence.interval in config.DISALLOWED_REPEAT_INTERVALS:
            logger.debug(f"Reminder {reminder.event_key} repeats every {recurrence.interval}; not notified")
            return

        # Look ahead far enough that the largest offset is still reachable
        horizon = max(config.LOOKAHEAD_MS, reminder.max_minutes_before * 60 * 1000 + config.NOW_WINDOW_MS)
        occurrences = self._occurrences(reminder, now - config.NOW_WINDOW_MS, now + horizon)

        for occurrence in sorted(occurrences, key=lambda o: o.occurrence_epoch_ms):
            for offset in reminder.offsets:
                candidate_channels = [c for c in CHANNEL_ORDER if c in offset.channels]
                if not candidate_channels:
                    continue
                fire_at = occurrence.occurrence_epoch_ms - offset.minutes_before * 60 * 1000
                if not is_due(fire_at, now):
                    continue
                for channel in candidate_channels:
                    candidate = Candidate(reminder, occurrence, offset, channel)
                    verdict = self.policy.evaluate(candidate, now)
                    result.verdicts.append(verdict)
                    if verdict.dispatch:
                        self.dispatcher.dispatch(candidate, verdict.trigger_id, now)

    async def tick(self, now: Optional[int] = None) -> Optional[TickResult]:
        """Run one evaluation pass. Returns None if a tick was already running."""
        if self._running:
            logger.debug("Reminder tick skipped: previous tick still running")
            return None

        self._running = True
        self._idle.clear()
        try:
            now = now if now is not None else now_ms()
            result = TickResult(now_ms=now)

            self.ledger.merge()
            self.counter.merge()
            self.policy.prune_throttle(now)

            for reminder in self.reminders.enabled_reminders():
                try:
                    self._evaluate_reminder(reminder, now, result)
                except Exception as e:
                    logger.error(f"Reminder {reminder.event_key} evaluation failed: {e}")
                    result.failed_reminders.append(reminder.event_key)

            await self._flush()

            if result.verdicts:
                logger.info(f"Reminder tick: {result.summary()}")
            return result
        finally:
            self._running = False
            self._idle.set()

    async def wait_idle(self) -> None:
        """Wait for an in-flight tick, including its flush, to finish."""
        await self._idle.wait()

    async def _flush(self) -> None:
        self.counter.save()
        await asyncio.gather(self.ledger.persist(), self.dispatcher.flush())

    async def run_tick(self) -> None:
        """APScheduler entry point; never raises."""
        try:
            await self.tick()
        except Exception as e:
            logger.error(f"Reminder tick failed: {e}")

    def register(self, scheduler: BaseScheduler, job_prefix: Optional[str] = None) -> str:
        """Register the tick job with the scheduler."""
        self._scheduler = scheduler
        self.job_id = f"{job_prefix}:{self.JOB_ID}" if job_prefix else self.JOB_ID
        scheduler.add_job(
            self.run_tick,
            IntervalTrigger(seconds=config.TICK_INTERVAL_SECONDS),
            id=self.job_id,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        logger.info(f"Registered reminder tick job (every {config.TICK_INTERVAL_SECONDS}s)")
        return self.job_id

    def unregister(self) -> None:
        if self._scheduler is not None and self._scheduler.get_job(self.job_id):
            self._scheduler.remove_job(self.job_id)
        self._scheduler = None
