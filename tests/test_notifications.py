"""Tests for the notification store."""

import pytest

from conftest import EVENT_MS, MINUTE_MS
from domains.reminders.errors import RemoteStoreError
from domains.reminders.notifications import NotificationStore, visible_notifications
from domains.reminders.types import Notification

DAY_MS = 24 * 60 * MINUTE_MS


def _notification(notification_id="evt|1|60|inApp", event_key="evt", occurrence=EVENT_MS,
                  sent_at_ms=EVENT_MS - 60 * MINUTE_MS, **changes) -> Notification:
    return Notification(
        id=notification_id,
        event_key=event_key,
        title="CPI m/m",
        message="!!! High Impact • 10:00 • in 60 min",
        event_epoch_ms=occurrence,
        sent_at_ms=sent_at_ms,
        **changes
    )


class TestVisible:

    def test_filters_deleted_and_sorts_newest_first(self):
        items = [
            _notification("a", event_key="a", sent_at_ms=1000),
            _notification("b", event_key="b", sent_at_ms=3000),
            _notification("c", event_key="c", sent_at_ms=2000, deleted=True),
        ]
        assert [n.id for n in visible_notifications(items, 4000)] == ["b", "a"]

    def test_auto_read_is_view_only(self):
        stale = _notification(sent_at_ms=0)
        visible = visible_notifications([stale], DAY_MS + 1)

        assert visible[0].read is True
        assert stale.read is False

    def test_one_per_occurrence(self):
        items = [
            _notification("evt|1|60|inApp", sent_at_ms=1000),
            _notification("evt|1|30|inApp", sent_at_ms=2000),
        ]
        visible = visible_notifications(items, 3000)
        assert [n.id for n in visible] == ["evt|1|30|inApp"]


class TestOptimisticAdd:

    def test_dedup_by_id_and_occurrence(self, cache, remote):
        store = NotificationStore("user-1", cache, remote)

        assert store.add_optimistic(_notification("evt|1|60|inApp"))
        assert not store.add_optimistic(_notification("evt|1|60|inApp"))
        assert not store.add_optimistic(_notification("evt|1|30|inApp"))
        assert store.pending_ids == {"evt|1|60|inApp"}

    def test_snapshot_keeps_pending_then_prunes_confirmed(self, cache, remote):
        store = NotificationStore("user-1", cache, remote)
        pending = _notification("mine")
        store.add_optimistic(pending)

        # Stale snapshot from before the insert landed
        store.apply_snapshot([{"id": "other", "title": "Other", "sent_at_ms": 5}])
        assert {n.id for n in store.items()} == {"mine", "other"}
        assert store.pending_ids == {"mine"}

        # Insert confirmed
        store.apply_snapshot([pending.to_db_row()])
        assert store.pending_ids == set()

        # Deleted elsewhere: confirmed items follow the remote record
        store.apply_snapshot([])
        assert store.items() == []

    def test_malformed_rows_skipped(self, cache, remote):
        store = NotificationStore("user-1", cache, remote)
        store.apply_snapshot([{"title": "no id"}, "not a row", {"id": "ok", "title": "Fine"}])
        assert [n.id for n in store.items()] == ["ok"]


class TestPersist:

    @pytest.mark.asyncio
    async def test_user_writes_remote(self, cache, remote):
        store = NotificationStore("user-1", cache, remote)
        notification = _notification()

        assert await store.persist(notification) is True

        remote.insert_notification.assert_awaited_once_with("user-1", notification)
        assert cache.load_notifications("user-1") == []

    @pytest.mark.asyncio
    async def test_remote_failure_falls_back_to_cache(self, cache, remote):
        remote.insert_notification.return_value = False
        store = NotificationStore("user-1", cache, remote)

        assert await store.persist(_notification()) is False

        assert [n.id for n in cache.load_notifications("user-1")] == ["evt|1|60|inApp"]

    @pytest.mark.asyncio
    async def test_guest_uses_cache_only(self, cache, remote):
        store = NotificationStore(None, cache, remote)
        await store.persist(_notification())

        remote.insert_notification.assert_not_awaited()
        reloaded = NotificationStore(None, cache, remote)
        assert [n.id for n in reloaded.items()] == ["evt|1|60|inApp"]

    def test_subscription_error_shows_cached_copy(self, cache, remote):
        cache.add_notification("user-1", _notification("cached"))
        store = NotificationStore("user-1", cache, remote)
        assert store.items() == []

        store.on_subscription_error(RemoteStoreError("fetch_notifications", "timeout"))

        assert [n.id for n in store.items()] == ["cached"]


class TestReadState:

    @pytest.mark.asyncio
    async def test_mark_read_user(self, cache, remote):
        store = NotificationStore("user-1", cache, remote)
        store.apply_snapshot([_notification("n1").to_db_row()])

        assert await store.mark_read("n1") is True

        remote.mark_notification_read.assert_awaited_once_with("user-1", "n1")
        assert store.unread_count(EVENT_MS) == 0

    @pytest.mark.asyncio
    async def test_mark_read_unknown(self, cache, remote):
        store = NotificationStore("user-1", cache, remote)
        assert await store.mark_read("missing") is False

    @pytest.mark.asyncio
    async def test_mark_all_read_guest(self, cache):
        store = NotificationStore(None, cache)
        store.add_optimistic(_notification("a", event_key="a"))
        store.add_optimistic(_notification("b", event_key="b"))
        await store.persist(store.get("a"))
        await store.persist(store.get("b"))
        assert store.unread_count(EVENT_MS) == 2

        assert await store.mark_all_read() is True

        assert store.unread_count(EVENT_MS) == 0
        assert all(n.read for n in cache.load_notifications(None))

    @pytest.mark.asyncio
    async def test_clear_all_user(self, cache, remote):
        store = NotificationStore("user-1", cache, remote)
        store.apply_snapshot([_notification("n1").to_db_row()])

        assert await store.clear_all() is True

        remote.clear_notifications.assert_awaited_once_with("user-1")
        assert store.visible(EVENT_MS) == []

    @pytest.mark.asyncio
    async def test_clear_all_guest(self, cache):
        store = NotificationStore(None, cache)
        store.add_optimistic(_notification())
        await store.persist(store.get("evt|1|60|inApp"))

        await store.clear_all()

        assert store.items() == []
        assert cache.load_notifications(None) == []
