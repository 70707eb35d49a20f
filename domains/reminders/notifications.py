"""Notification Store - optimistic in-app list reconciled with the remote record.

Each item moves pending -> confirmed -> (externally mutated). An optimistic
add is pending until a remote snapshot contains its id; snapshots are merged
as the union of remote rows and still-pending items, so an inflight insert
is never dropped by a stale snapshot.

Guest sessions (no user id) keep their history in the device cache only.
"""

import sqlite3
from typing import Iterable, Optional

from logger import logger
from . import config
from .local_cache import LocalCache
from .remote_store import SupabaseStore
from .types import Notification


def visible_notifications(items: Iterable[Notification], now_ms: int) -> list[Notification]:
    """Non-deleted items, auto-read after 24h, one per occurrence, newest first.

    Auto-read is applied to the returned view only.
    """
    ordered = sorted(
        (n for n in items if not n.deleted),
        key=lambda n: n.sent_at_ms or 0,
        reverse=True
    )
    seen = set()
    result = []
    for n in ordered:
        if n.occurrence_key in seen:
            continue
        seen.add(n.occurrence_key)
        if not n.read and n.sent_at_ms is not None and now_ms - n.sent_at_ms > config.AUTO_READ_AGE_MS:
            n = n.with_changes(read=True)
        result.append(n)
    return result[:config.NOTIFICATIONS_LIMIT]


class NotificationStore:
    """In-memory notification list for one session."""

    def __init__(self, user_id: Optional[str], cache: LocalCache,
                 remote: Optional[SupabaseStore] = None):
        self.user_id = user_id
        self.cache = cache
        self.remote = remote
        self._items: dict[str, Notification] = {}
        self._pending: set[str] = set()

        if self.is_guest:
            self._load_from_cache()

    @property
    def is_guest(self) -> bool:
        return not self.user_id or self.remote is None or not self.remote.configured

    @property
    def pending_ids(self) -> set[str]:
        return set(self._pending)

    def items(self) -> list[Notification]:
        return list(self._items.values())

    def get(self, notification_id: str) -> Optional[Notification]:
        return self._items.get(notification_id)

    def _load_from_cache(self) -> None:
        try:
            cached = self.cache.load_notifications(self.user_id)
        except sqlite3.Error as e:
            logger.error(f"Failed to load cached notifications: {e}")
            return
        for n in cached:
            self._items.setdefault(n.id, n)

    # ------------------------------------------------------------------
    # Write side (engine)
    # ------------------------------------------------------------------

    def add_optimistic(self, notification: Notification) -> bool:
        """Insert locally as pending.

        Returns:
            False if the id or a live item of the same occurrence already exists
        """
        if notification.id in self._items:
            return False
        key = notification.occurrence_key
        for existing in self._items.values():
            if not existing.deleted and existing.occurrence_key == key:
                return False
        self._items[notification.id] = notification
        self._pending.add(notification.id)
        return True

    def _cache_locally(self, notification: Notification) -> None:
        try:
            self.cache.add_notification(self.user_id, notification)
        except sqlite3.Error as e:
            logger.error(f"Failed to cache notification {notification.id}: {e}")

    async def persist(self, notification: Notification) -> bool:
        """Idempotent create in the backing store. Falls back to the device cache."""
        if self.is_guest:
            self._cache_locally(notification)
            return True

        if await self.remote.insert_notification(self.user_id, notification):
            return True

        logger.warning(f"Remote notification insert failed, caching {notification.id} locally")
        self._cache_locally(notification)
        return False

    # ------------------------------------------------------------------
    # Snapshot reconciliation
    # ------------------------------------------------------------------

    def apply_snapshot(self, rows: Iterable[dict]) -> None:
        """Replace the list with a remote snapshot, keeping unconfirmed items."""
        incoming: dict[str, Notification] = {}
        for row in rows:
            try:
                n = Notification.from_db_row(row)
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning(f"Skipping malformed notification row: {e}")
                continue
            incoming[n.id] = n

        confirmed = self._pending & incoming.keys()
        self._pending -= confirmed
        for pending_id in self._pending:
            item = self._items.get(pending_id)
            if item is not None:
                incoming.setdefault(pending_id, item)

        self._items = incoming
        if confirmed:
            logger.debug(f"Confirmed {len(confirmed)} pending notification(s)")

    def on_subscription_error(self, error: Exception) -> None:
        """Remote snapshot unavailable: show the device cache copy."""
        logger.warning(f"Notification subscription failed, using device cache: {error}")
        self._load_from_cache()

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def visible(self, now_ms: int) -> list[Notification]:
        return visible_notifications(self._items.values(), now_ms)

    def unread_count(self, now_ms: int) -> int:
        return sum(1 for n in self.visible(now_ms) if not n.read)

    async def mark_read(self, notification_id: str) -> bool:
        item = self._items.get(notification_id)
        if item is None:
            return False
        self._items[notification_id] = item.with_changes(read=True)

        if self.is_guest:
            return self._update_cache([self._items[notification_id]])
        return await self.remote.mark_notification_read(self.user_id, notification_id)

    async def mark_all_read(self) -> bool:
        changed = []
        for item_id, item in self._items.items():
            if not item.read and not item.deleted:
                self._items[item_id] = item.with_changes(read=True)
                changed.append(self._items[item_id])

        if self.is_guest:
            return self._update_cache(changed)
        return await self.remote.mark_all_notifications_read(self.user_id)

    async def clear_all(self) -> bool:
        self._items = {
            item_id: item.with_changes(deleted=True)
            for item_id, item in self._items.items()
        }
        self._pending.clear()

        if self.is_guest:
            try:
                self.cache.clear_notifications(self.user_id)
            except sqlite3.Error as e:
                logger.error(f"Failed to clear cached notifications: {e}")
                return False
            self._items = {}
            return True
        return await self.remote.clear_notifications(self.user_id)

    def _update_cache(self, notifications: list[Notification]) -> bool:
        if not notifications:
            return True
        try:
            self.cache.update_notifications(self.user_id, notifications)
        except sqlite3.Error as e:
            logger.error(f"Failed to update cached notifications: {e}")
            return False
        return True

    def reset(self) -> None:
        self._items = {}
        self._pending = set()
