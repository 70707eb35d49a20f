"""One user session: stores, subscriptions and the tick, started and stopped together."""

from typing import Optional

from apscheduler.schedulers.base import BaseScheduler

from logger import logger
from . import config
from .capability import NotificationCapability, UnsupportedCapability
from .errors import RemoteStoreError
from .dispatcher import Dispatcher
from .ledger import CachedTriggerLedger
from .local_cache import LocalCache, user_key
from .notifications import NotificationStore
from .policy import DailyCounter, PolicyEngine
from .reminder_store import ReminderStore
from .remote_store import SupabaseStore
from .scheduler import SchedulerLoop, TickResult
from .subscriptions import SnapshotSubscription
from .types import ClientCapabilityClass, QuietHours
from .upcoming import UpcomingEvents


class ReminderSession:
    """Wires the engine for one user (or guest) and owns its scheduler jobs."""

    def __init__(
        self,
        user_id: Optional[str],
        capability_class: ClientCapabilityClass = ClientCapabilityClass.STANDARD,
        capability: Optional[NotificationCapability] = None,
        cache: Optional[LocalCache] = None,
        remote: Optional[SupabaseStore] = None,
        upcoming: Optional[UpcomingEvents] = None,
    ):
        self.user_id = user_id
        self.capability_class = ClientCapabilityClass(capability_class)
        self.capability = capability if capability is not None else UnsupportedCapability()
        self.cache = cache if cache is not None else LocalCache()
        self.remote = remote if remote is not None else SupabaseStore()
        self.upcoming = upcoming if upcoming is not None else UpcomingEvents()

        self.reminders = ReminderStore()
        self.ledger = CachedTriggerLedger(user_id, self.cache, self.remote)
        self.counter = DailyCounter(user_id, self.cache)
        self.policy = PolicyEngine(self.ledger, self.counter, self.capability_class)
        self.notifications = NotificationStore(user_id, self.cache, self.remote)
        self.dispatcher = Dispatcher(self.notifications, self.capability)
        self.loop = SchedulerLoop(
            self.reminders, self.ledger, self.counter, self.policy, self.dispatcher, self.upcoming
        )

        self._scheduler: Optional[BaseScheduler] = None
        self._subscriptions: list[SnapshotSubscription] = []
        self._upcoming_subscription: Optional[SnapshotSubscription] = None

    @property
    def job_prefix(self) -> str:
        return f"reminders:{user_key(self.user_id)}"

    @property
    def started(self) -> bool:
        return self._scheduler is not None

    @property
    def has_remote(self) -> bool:
        return bool(self.user_id) and self.remote.configured

    # ------------------------------------------------------------------
    # Snapshot callbacks
    # ------------------------------------------------------------------

    def _on_reminders(self, rows: list[dict]) -> None:
        self.reminders.apply_snapshot(rows)
        self._sync_upcoming_subscription()

    def set_custom_reminders(self, rows: list[dict]) -> None:
        self.reminders.set_custom_reminders(rows)
        self._sync_upcoming_subscription()

    def _on_reminders_error(self, error: Exception) -> None:
        logger.warning(f"Keeping last known reminders: {error}")

    def _on_triggers(self, rows: list[dict]) -> None:
        self.ledger.apply_remote(rows)

    def _on_preferences(self, row: Optional[dict]) -> None:
        self.policy.quiet_hours = QuietHours.from_db_row(row)

    def _on_preferences_error(self, error: Exception) -> None:
        logger.warning(f"Preferences unavailable, using default quiet hours: {error}")
        self.policy.quiet_hours = QuietHours.from_db_row(None)

    def _on_upcoming(self, events: list[dict]) -> None:
        self.upcoming.apply_snapshot(events)

    def _sync_upcoming_subscription(self) -> None:
        """Poll the events feed only while a series reminder needs it."""
        if self._scheduler is None or not self.upcoming.configured:
            return
        needed = self.reminders.has_series_reminders
        if needed and self._upcoming_subscription is None:
            self._upcoming_subscription = SnapshotSubscription(
                "upcoming_events", self.upcoming.fetch, self._on_upcoming,
                interval_seconds=config.UPCOMING_EVENTS_POLL_SECONDS,
            )
            self._upcoming_subscription.subscribe(self._scheduler, self.job_prefix)
            self._subscriptions.append(self._upcoming_subscription)
        elif not needed and self._upcoming_subscription is not None:
            self._upcoming_subscription.unsubscribe()
            self._subscriptions.remove(self._upcoming_subscription)
            self._upcoming_subscription = None
            self.upcoming.clear()

    def _build_subscriptions(self) -> list[SnapshotSubscription]:
        if not self.has_remote:
            return []
        user_id = self.user_id
        return [
            SnapshotSubscription(
                "reminders", lambda: self.remote.fetch_reminders(user_id),
                self._on_reminders, self._on_reminders_error,
                interval_seconds=config.REMINDERS_POLL_SECONDS,
            ),
            SnapshotSubscription(
                "notifications", lambda: self.remote.fetch_notifications(user_id),
                self.notifications.apply_snapshot, self.notifications.on_subscription_error,
                interval_seconds=config.NOTIFICATIONS_POLL_SECONDS,
            ),
            SnapshotSubscription(
                "triggers", lambda: self.remote.fetch_triggers(user_id),
                self._on_triggers,
                interval_seconds=config.TRIGGERS_POLL_SECONDS,
            ),
            SnapshotSubscription(
                "preferences", lambda: self.remote.fetch_preferences(user_id),
                self._on_preferences, self._on_preferences_error,
                interval_seconds=config.PREFERENCES_POLL_SECONDS,
            ),
        ]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def load(self) -> None:
        """Initial snapshot of every remote source, before the first tick."""
        if not self._subscriptions:
            self._subscriptions = self._build_subscriptions()
        for subscription in self._subscriptions:
            await subscription.poll()

    async def run_once(self) -> Optional[TickResult]:
        """Load every source once and run a single tick without scheduling jobs."""
        await self.load()
        if self.reminders.has_series_reminders and self.upcoming.configured:
            try:
                self.upcoming.apply_snapshot(await self.upcoming.fetch())
            except RemoteStoreError as e:
                logger.warning(f"Upcoming events unavailable: {e}")
        return await self.loop.tick()

    async def start(self, scheduler: BaseScheduler) -> None:
        if self.started:
            return
        self._subscriptions = self._build_subscriptions()
        await self.load()

        self._scheduler = scheduler
        for subscription in self._subscriptions:
            subscription.subscribe(scheduler, self.job_prefix)
        self._sync_upcoming_subscription()
        if self._upcoming_subscription is not None:
            await self._upcoming_subscription.poll()
        self.loop.register(scheduler, self.job_prefix)
        logger.info(
            f"Reminder session started for {user_key(self.user_id)} "
            f"({self.capability_class.value}, {len(self.reminders)} reminder(s))"
        )

    async def stop(self) -> None:
        """Tear down every job of this session and clear in-memory state.

        A tick already running is allowed to finish its flush first, so its
        trigger and notification writes land before the stores are cleared.
        """
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions = []
        self._upcoming_subscription = None
        self.loop.unregister()
        await self.loop.wait_idle()
        self.dispatcher.discard()
        self.reminders.clear()
        self.notifications.reset()
        self.upcoming.clear()
        self._scheduler = None
        logger.info(f"Reminder session stopped for {user_key(self.user_id)}")

    async def request_permission(self) -> str:
        return await self.capability.request_permission()
