"""Snapshot subscriptions - interval polling jobs delivering remote state.

Each subscription fetches a full snapshot and hands it to a callback, or hands
the error to an error callback. They run on the same AsyncIOScheduler as the
tick, concurrently with it.
"""

from typing import Awaitable, Callable, Optional

from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.interval import IntervalTrigger

from logger import logger
from .errors import RemoteStoreError

Fetch = Callable[[], Awaitable]
OnChange = Callable[[object], None]
OnError = Callable[[Exception], None]


class SnapshotSubscription:
    """One polling job. Call poll() directly for the initial load."""

    def __init__(self, name: str, fetch: Fetch, on_change: OnChange,
                 on_error: Optional[OnError] = None, interval_seconds: int = 30):
        self.name = name
        self.fetch = fetch
        self.on_change = on_change
        self.on_error = on_error
        self.interval_seconds = interval_seconds
        self.job_id: Optional[str] = None
        self._scheduler: Optional[BaseScheduler] = None
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    async def poll(self) -> bool:
        """Fetch once and deliver. Returns True on success."""
        if not self._active:
            return False
        try:
            snapshot = await self.fetch()
        except RemoteStoreError as e:
            logger.warning(f"Subscription {self.name} failed: {e}")
            if self.on_error and self._active:
                self.on_error(e)
            return False

        # Torn down while the fetch was in flight
        if not self._active:
            return False
        self.on_change(snapshot)
        return True

    def subscribe(self, scheduler: BaseScheduler, job_prefix: str) -> str:
        self._scheduler = scheduler
        self._active = True
        self.job_id = f"{job_prefix}:{self.name}"
        scheduler.add_job(
            self.poll,
            IntervalTrigger(seconds=self.interval_seconds),
            id=self.job_id,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        logger.debug(f"Subscribed {self.job_id} (every {self.interval_seconds}s)")
        return self.job_id

    def unsubscribe(self) -> None:
        self._active = False
        if self._scheduler is not None and self.job_id:
            if self._scheduler.get_job(self.job_id):
                self._scheduler.remove_job(self.job_id)
        self._scheduler = None
