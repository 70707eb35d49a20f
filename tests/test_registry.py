"""Tests for reminder keys and record normalization."""

import pytest

from conftest import EVENT_MS
from domains.reminders import config
from domains.reminders.errors import ReminderValidationError
from domains.reminders.registry import (
    build_browser_tag,
    build_occurrence_key,
    build_series_key,
    build_trigger_id,
    normalize_offsets,
    normalize_reminder,
    to_epoch_ms,
)
from domains.reminders.types import Channel, ReminderScope


def test_key_formats():
    assert build_trigger_id("evt", 123, 60, Channel.IN_APP) == "evt|123|60|inApp"
    assert build_occurrence_key("evt", 123, Channel.BROWSER) == "evt|123|browser"
    assert build_browser_tag("evt", 123) == "t2t-evt|123"


def test_series_key():
    event = {"name": "CPI m/m", "currency": "USD", "impact": "High", "category": "Inflation"}
    assert build_series_key(event, "calendar") == "calendar:series:cpi m/m:usd:high:inflation"
    assert build_series_key({}) == "canonical:series:event reminder:na:unknown:na"


def test_to_epoch_ms():
    assert to_epoch_ms(EVENT_MS) == EVENT_MS
    assert to_epoch_ms("2025-03-12T14:00:00Z") == EVENT_MS
    assert to_epoch_ms("2025-03-12T10:00:00-04:00") == EVENT_MS
    assert to_epoch_ms(float("nan")) is None
    assert to_epoch_ms("not a date") is None
    assert to_epoch_ms(True) is None


def test_normalize_offsets_filters_sorts_and_caps():
    raw = [
        {"minutesBefore": 0, "channels": {"inApp": True}},
        {"minutesBefore": -5, "channels": {"inApp": True}},
        {"minutesBefore": "abc", "channels": {"inApp": True}},
        {"minutesBefore": 60, "channels": {"inApp": True}},
        {"minutesBefore": 30, "channels": ["browser", "carrier-pigeon"]},
        {"minutes_before": 15, "channels": {"push": True, "inApp": False}},
    ]

    offsets = normalize_offsets(raw)

    assert len(offsets) == config.MAX_REMINDERS_PER_EVENT
    assert [o.minutes_before for o in offsets] == [0, 15, 30]
    assert offsets[1].channels == frozenset({Channel.PUSH})
    assert offsets[2].channels == frozenset({Channel.BROWSER})


class TestNormalizeReminder:

    def test_event_reminder(self, reminder_row):
        reminder = normalize_reminder(reminder_row())

        assert reminder.event_key == "evt-cpi"
        assert reminder.scope == ReminderScope.EVENT
        assert reminder.base_epoch_ms == EVENT_MS
        assert [o.minutes_before for o in reminder.offsets] == [0, 30, 60]
        assert reminder.max_minutes_before == 60
        assert reminder.timezone == "America/New_York"

    def test_camel_case_record(self):
        reminder = normalize_reminder({
            "eventKey": "custom-1",
            "eventEpochMs": "2025-03-12T14:00:00Z",
            "eventSource": "custom",
            "reminders": [{"minutesBefore": 10, "channels": {"inApp": True}}],
            "metadata": {
                "recurrence": {
                    "enabled": True,
                    "interval": "1W",
                    "ends": {"type": "after", "count": 4},
                },
            },
        })

        assert reminder.base_epoch_ms == EVENT_MS
        assert reminder.event_source == "custom"
        assert reminder.recurrence.active
        assert reminder.recurrence.ends_count == 4
        assert reminder.has_stored_recurrence

    def test_no_offsets_is_deleted(self, reminder_row):
        assert normalize_reminder(reminder_row(offsets=())) is None

    def test_unknown_timezone_falls_back(self, reminder_row):
        reminder = normalize_reminder(reminder_row(timezone="Mars/Olympus_Mons"))
        assert reminder.timezone == config.DEFAULT_TIMEZONE

    @pytest.mark.parametrize("value", [123, ["America/New_York"], {"name": "UTC"}])
    def test_non_string_timezone_falls_back(self, reminder_row, value):
        reminder = normalize_reminder(reminder_row(timezone=value))
        assert reminder.timezone == config.DEFAULT_TIMEZONE

    def test_non_object_record(self):
        with pytest.raises(ReminderValidationError):
            normalize_reminder(["evt-cpi"])

    def test_series_reminder(self, reminder_row):
        row = reminder_row(scope="series", series_key="calendar:series:cpi:usd:high:na", epoch=None)
        reminder = normalize_reminder(row)
        assert reminder.scope == ReminderScope.SERIES
        assert reminder.series_key == "calendar:series:cpi:usd:high:na"
        assert not reminder.has_stored_recurrence

    @pytest.mark.parametrize("overrides, reason", [
        ({"event_key": None}, "missing event key"),
        ({"scope": "galaxy"}, "unknown scope"),
        ({"scope": "series"}, "without series key"),
        ({"event_epoch_ms": None}, "without event time"),
        ({"event_epoch_ms": float("inf")}, "non-finite"),
        ({"metadata": "oops"}, "metadata is not an object"),
        ({"metadata": {"recurrence": {"enabled": True, "interval": "1D", "ends": ["after", 3]}}},
         "recurrence end is not an object"),
    ])
    def test_invalid_records(self, reminder_row, overrides, reason):
        with pytest.raises(ReminderValidationError) as exc:
            normalize_reminder(reminder_row(**overrides))
        assert reason in exc.value.reason
