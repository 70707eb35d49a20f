"""Upcoming event instances for series reminders without a recurrence rule.

A series reminder stores only the template key of a recurring upstream event
(e.g. every CPI release). Its occurrences are whatever upcoming instances of
the economic calendar share that key.
"""

from typing import Optional

import httpx

from config import EVENTS_API_URL, EVENTS_API_KEY
from logger import logger
from . import config
from .errors import RemoteStoreError
from .registry import build_series_key, event_epoch_ms
from .types import Occurrence, Reminder


class UpcomingEvents:
    """Cached snapshot of the upstream economic calendar."""

    def __init__(self, url: Optional[str] = None, api_key: Optional[str] = None):
        self.url = url if url is not None else EVENTS_API_URL
        self.api_key = api_key if api_key is not None else EVENTS_API_KEY
        self._events: list[dict] = []
        self._by_series: dict[str, list[tuple[int, dict]]] = {}

    @property
    def configured(self) -> bool:
        return bool(self.url)

    def __len__(self) -> int:
        return len(self._events)

    async def fetch(self) -> list[dict]:
        """Fetch upcoming events. Raises RemoteStoreError on HTTP failure."""
        if not self.configured:
            return []
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(
                    self.url,
                    headers=headers,
                    timeout=config.REMOTE_TIMEOUT_SECONDS
                )
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise RemoteStoreError("fetch_upcoming_events", str(e)) from e

        # Feeds either return a bare list or wrap it
        if isinstance(data, dict):
            data = data.get("events") or data.get("data") or []
        return [e for e in data if isinstance(e, dict)]

    def apply_snapshot(self, events: list[dict]) -> None:
        by_series: dict[str, list[tuple[int, dict]]] = {}
        for event in events:
            epoch = event_epoch_ms(event)
            if epoch is None:
                continue
            by_series.setdefault(build_series_key(event), []).append((epoch, event))
        for instances in by_series.values():
            instances.sort(key=lambda pair: pair[0])
        self._events = list(events)
        self._by_series = by_series
        logger.debug(f"Upcoming events: {len(events)} instance(s) across {len(by_series)} series")

    def clear(self) -> None:
        self._events = []
        self._by_series = {}

    def occurrences(self, reminder: Reminder, range_start_ms: int, range_end_ms: int) -> list[Occurrence]:
        """Instances of the reminder's series inside [range_start_ms, range_end_ms)."""
        if not reminder.series_key:
            return []
        return [
            Occurrence(reminder.event_key, epoch, event)
            for epoch, event in self._by_series.get(reminder.series_key, [])
            if range_start_ms <= epoch < range_end_ms
        ]
