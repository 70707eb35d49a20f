"""Pytest configuration and fixtures."""

import os
import sys
from datetime import datetime, timezone
from unittest.mock import AsyncMock, Mock, patch

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from domains.reminders.local_cache import LocalCache
from domains.reminders.remote_store import SupabaseStore

# Wednesday 2025-03-12 10:00 America/New_York (EDT)
EVENT_MS = int(datetime(2025, 3, 12, 14, 0, tzinfo=timezone.utc).timestamp() * 1000)
MINUTE_MS = 60 * 1000


@pytest.fixture
def event_ms():
    return EVENT_MS


@pytest.fixture
def cache(tmp_path):
    """Fresh device cache per test."""
    local_cache = LocalCache(str(tmp_path / "reminders_cache.db"))
    yield local_cache
    local_cache.close()


@pytest.fixture
def remote():
    """Supabase store double; every write succeeds, every read is empty."""
    store = Mock(spec=SupabaseStore)
    store.configured = True
    store.fetch_reminders = AsyncMock(return_value=[])
    store.fetch_triggers = AsyncMock(return_value=[])
    store.fetch_notifications = AsyncMock(return_value=[])
    store.fetch_preferences = AsyncMock(return_value=None)
    store.record_triggers = AsyncMock(return_value=True)
    store.insert_notification = AsyncMock(return_value=True)
    store.mark_notification_read = AsyncMock(return_value=True)
    store.mark_all_notifications_read = AsyncMock(return_value=True)
    store.clear_notifications = AsyncMock(return_value=True)
    return store


@pytest.fixture
def reminder_row():
    """Factory for stored reminder rows."""
    def _make(event_key="evt-cpi", offsets=(60, 30, 0), channels=("inApp",),
              epoch=EVENT_MS, **extra):
        row = {
            "event_key": event_key,
            "event_epoch_ms": epoch,
            "timezone": "America/New_York",
            "title": "CPI m/m",
            "impact": "high",
            "event_source": "calendar",
            "scope": "event",
            "enabled": True,
            "reminders": [
                {"minutesBefore": m, "channels": {c: True for c in channels}}
                for m in offsets
            ],
        }
        row.update(extra)
        return row
    return _make


@pytest.fixture
def mock_httpx_client():
    """Create a mock httpx client."""
    with patch('httpx.AsyncClient') as mock:
        client = AsyncMock()
        mock.return_value.__aenter__.return_value = client
        yield client
