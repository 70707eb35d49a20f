"""Tests for session wiring, subscriptions and their lifecycle."""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from conftest import EVENT_MS, MINUTE_MS
from domains.reminders.capability import UnsupportedCapability
from domains.reminders.errors import RemoteStoreError
from domains.reminders.reminder_store import ReminderStore
from domains.reminders.session import ReminderSession
from domains.reminders.subscriptions import SnapshotSubscription
from domains.reminders.types import Notification, QuietHours
from domains.reminders.upcoming import UpcomingEvents


@pytest.fixture
def scheduler():
    """Stand-in for AsyncIOScheduler that records jobs."""
    jobs = {}
    mock = Mock()
    mock.add_job.side_effect = lambda func, trigger, id, **kwargs: jobs.__setitem__(id, func)
    mock.get_job.side_effect = lambda job_id: jobs.get(job_id)
    mock.remove_job.side_effect = lambda job_id: jobs.pop(job_id)
    mock.jobs = jobs
    return mock


@pytest.fixture
def upcoming():
    events = UpcomingEvents(url="https://events.example.test/upcoming")
    events.fetch = AsyncMock(return_value=[])
    return events


def _session(cache, remote, upcoming, user_id="user-1") -> ReminderSession:
    return ReminderSession(
        user_id, capability=UnsupportedCapability(), cache=cache, remote=remote, upcoming=upcoming
    )


class TestSnapshotSubscription:

    @pytest.mark.asyncio
    async def test_poll_delivers_snapshot(self):
        received = []
        subscription = SnapshotSubscription("things", AsyncMock(return_value=[1, 2]), received.append)

        assert await subscription.poll() is True
        assert received == [[1, 2]]

    @pytest.mark.asyncio
    async def test_poll_error(self):
        errors = []
        fetch = AsyncMock(side_effect=RemoteStoreError("fetch_things", "down"))
        subscription = SnapshotSubscription("things", fetch, Mock(), errors.append)

        assert await subscription.poll() is False
        assert len(errors) == 1

    @pytest.mark.asyncio
    async def test_unsubscribed_poll_delivers_nothing(self, scheduler):
        on_change = Mock()
        subscription = SnapshotSubscription("things", AsyncMock(return_value=[]), on_change)
        job_id = subscription.subscribe(scheduler, "reminders:user-1")
        assert job_id in scheduler.jobs

        subscription.unsubscribe()

        assert job_id not in scheduler.jobs
        assert await subscription.poll() is False
        on_change.assert_not_called()


class TestReminderStore:

    def test_snapshot_skips_invalid_rows(self, reminder_row):
        store = ReminderStore()
        store.apply_snapshot([reminder_row(), reminder_row(event_key=None), reminder_row(offsets=())])
        assert [r.event_key for r in store.all()] == ["evt-cpi"]

    def test_snapshot_skips_malformed_rows(self, reminder_row):
        store = ReminderStore()
        store.apply_snapshot([
            reminder_row(event_key="bad-metadata", metadata="oops"),
            reminder_row(event_key="bad-ends", metadata={"recurrence": {"enabled": True, "interval": "1D", "ends": [1]}}),
            reminder_row(event_key="bad-timezone", timezone=42),
            reminder_row(event_key="bad-series", scope="series", series_key=["cpi"]),
            "not a row",
            reminder_row(),
        ])
        assert [r.event_key for r in store.all()] == ["bad-timezone", "evt-cpi"]

    def test_custom_reminders_merge(self, reminder_row):
        store = ReminderStore()
        store.apply_snapshot([reminder_row(event_key="shared")])
        store.set_custom_reminders([
            reminder_row(event_key="shared", title="Local copy"),
            reminder_row(event_key="custom-1", metadata={"seriesId": "s-1"}),
            reminder_row(event_key="custom-2", metadata={"seriesId": "s-1"}),
            reminder_row(event_key="custom-3"),
        ])

        keys = [r.event_key for r in store.all()]
        assert keys == ["shared", "custom-1", "custom-3"]
        assert store.get("shared").title == "CPI m/m"

    def test_has_series_reminders(self, reminder_row):
        store = ReminderStore()
        store.apply_snapshot([reminder_row()])
        assert not store.has_series_reminders

        store.apply_snapshot([reminder_row(scope="series", series_key="calendar:series:cpi:usd:high:na")])
        assert store.has_series_reminders


class TestUpcomingEvents:

    @pytest.mark.asyncio
    async def test_fetch_unwraps_feed(self, mock_httpx_client):
        response = Mock()
        response.json.return_value = {"events": [{"id": "e1"}, "junk"]}
        mock_httpx_client.get.return_value = response

        events = await UpcomingEvents(url="https://events.example.test/upcoming").fetch()

        assert events == [{"id": "e1"}]

    def test_unconfigured(self):
        assert not UpcomingEvents(url="").configured


class TestReminderSession:

    @pytest.mark.asyncio
    async def test_start_registers_every_job(self, cache, remote, upcoming, scheduler, reminder_row):
        remote.fetch_reminders.return_value = [reminder_row()]
        session = _session(cache, remote, upcoming)

        await session.start(scheduler)

        assert set(scheduler.jobs) == {
            "reminders:user-1:reminders",
            "reminders:user-1:notifications",
            "reminders:user-1:triggers",
            "reminders:user-1:preferences",
            "reminders:user-1:reminder_tick",
        }
        assert len(session.reminders) == 1
        upcoming.fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stop_tears_everything_down(self, cache, remote, upcoming, scheduler, reminder_row):
        remote.fetch_reminders.return_value = [reminder_row()]
        session = _session(cache, remote, upcoming)
        await session.start(scheduler)

        await session.stop()

        assert scheduler.jobs == {}
        assert len(session.reminders) == 0
        assert session.notifications.items() == []
        assert not session.started

    @pytest.mark.asyncio
    async def test_stop_waits_for_running_tick(self, cache, remote, upcoming, scheduler, reminder_row):
        remote.fetch_reminders.return_value = [reminder_row(offsets=(60,))]
        session = _session(cache, remote, upcoming)
        await session.start(scheduler)

        writing = asyncio.Event()
        release = asyncio.Event()
        written = []

        async def slow_insert(user_id, notification):
            writing.set()
            await release.wait()
            written.append(notification.id)
            return True

        remote.insert_notification.side_effect = slow_insert
        tick = asyncio.create_task(session.loop.tick(EVENT_MS - 60 * MINUTE_MS))
        await writing.wait()

        stop = asyncio.create_task(session.stop())
        await asyncio.sleep(0)
        assert not stop.done()

        release.set()
        await stop
        result = await tick

        assert written == [v.trigger_id for v in result.sent]
        assert len(written) == 1
        assert scheduler.jobs == {}

    def test_injected_feed_is_kept(self, cache, remote, upcoming):
        session = _session(cache, remote, upcoming)
        assert len(upcoming) == 0
        assert session.upcoming is upcoming
        assert session.loop.upcoming is upcoming

    @pytest.mark.asyncio
    async def test_series_reminder_starts_event_feed(self, cache, remote, upcoming, scheduler, reminder_row):
        remote.fetch_reminders.return_value = [
            reminder_row(scope="series", series_key="calendar:series:cpi:usd:high:na", epoch=None)
        ]
        session = _session(cache, remote, upcoming)

        await session.start(scheduler)
        assert "reminders:user-1:upcoming_events" in scheduler.jobs
        upcoming.fetch.assert_awaited_once()

        # Series reminder removed: feed no longer polled
        session._on_reminders([])
        assert "reminders:user-1:upcoming_events" not in scheduler.jobs

    @pytest.mark.asyncio
    async def test_guest_session_has_only_the_tick(self, cache, remote, upcoming, scheduler):
        session = _session(cache, remote, upcoming, user_id=None)

        await session.start(scheduler)

        assert set(scheduler.jobs) == {"reminders:guest:reminder_tick"}
        remote.fetch_reminders.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_preferences_drive_quiet_hours(self, cache, remote, upcoming, scheduler):
        remote.fetch_preferences.return_value = {
            "quiet_hours_enabled": True, "quiet_hours_start": 22, "quiet_hours_end": 7
        }
        session = _session(cache, remote, upcoming)

        await session.start(scheduler)

        assert session.policy.quiet_hours == QuietHours(True, 22, 7)

    @pytest.mark.asyncio
    async def test_null_preference_columns_use_defaults(self, cache, remote, upcoming, scheduler):
        remote.fetch_preferences.return_value = {
            "quiet_hours_enabled": True, "quiet_hours_start": None, "quiet_hours_end": "late"
        }
        session = _session(cache, remote, upcoming)

        await session.start(scheduler)

        assert session.started
        assert session.policy.quiet_hours == QuietHours(True, 21, 6)

    @pytest.mark.asyncio
    async def test_malformed_reminder_does_not_block_start(self, cache, remote, upcoming, scheduler, reminder_row):
        remote.fetch_reminders.return_value = [reminder_row(event_key="broken", metadata="oops"), reminder_row()]
        session = _session(cache, remote, upcoming)

        await session.start(scheduler)

        assert session.started
        assert [r.event_key for r in session.reminders.all()] == ["evt-cpi"]

    @pytest.mark.asyncio
    async def test_preferences_error_resets_defaults(self, cache, remote, upcoming, scheduler):
        remote.fetch_preferences.side_effect = RemoteStoreError("fetch_preferences", "down")
        session = _session(cache, remote, upcoming)
        session.policy.quiet_hours = QuietHours(False, 0, 0)

        await session.start(scheduler)

        assert session.policy.quiet_hours == QuietHours(True, 21, 6)

    @pytest.mark.asyncio
    async def test_notifications_fall_back_to_cache(self, cache, remote, upcoming, scheduler):
        cache.add_notification("user-1", Notification(
            id="cached", event_key="evt", title="CPI", message="in 5 min", sent_at_ms=EVENT_MS
        ))
        remote.fetch_notifications.side_effect = RemoteStoreError("fetch_notifications", "down")
        session = _session(cache, remote, upcoming)

        await session.start(scheduler)

        assert [n.id for n in session.notifications.items()] == ["cached"]

    @pytest.mark.asyncio
    async def test_run_once(self, cache, remote, upcoming, reminder_row):
        remote.fetch_reminders.return_value = [reminder_row(offsets=(60,))]
        session = _session(cache, remote, upcoming)

        result = await session.run_once()

        assert result is not None
        assert len(session.reminders) == 1
