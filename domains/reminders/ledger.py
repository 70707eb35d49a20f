"""Trigger ledger - the idempotent record of handled reminder triggers.

Two kinds of keys live in the same set:
- trigger keys (event|occurrence|offset|channel), one per evaluated offset
- occurrence keys (event|occurrence|channel), blocking every other offset of
  that occurrence+channel once any of them fired

The ledger never forgets a key during a session. Remote persistence is best
effort: a failed batch is logged and dropped, the in-process set stays
authoritative.
"""

import sqlite3
from abc import ABC, abstractmethod
from typing import Iterable, Optional

from logger import logger
from .local_cache import LocalCache
from .registry import build_occurrence_key
from .remote_store import SupabaseStore
from .types import Channel, TriggerRecord, TriggerStatus

# Statuses whose remote record also blocks the whole occurrence+channel
_OCCURRENCE_BLOCKING = {
    TriggerStatus.SENT.value,
    TriggerStatus.SKIPPED_CAP.value,
    TriggerStatus.SKIPPED_PUSH_HANDLES_BROWSER.value,
    TriggerStatus.SKIPPED_PLATFORM_NOT_APPLICABLE.value,
}


def keys_from_remote_row(row: dict) -> set[str]:
    """Ledger keys implied by one remote trigger record."""
    keys = set()
    trigger_id = row.get("trigger_id")
    if trigger_id:
        keys.add(str(trigger_id))

    event_key = row.get("event_key")
    occurrence = row.get("occurrence_epoch_ms")
    channel = row.get("channel")
    status = row.get("status")
    if isinstance(status, str) and status in _OCCURRENCE_BLOCKING and event_key and occurrence is not None:
        try:
            keys.add(build_occurrence_key(str(event_key), int(occurrence), Channel(channel)))
        except (TypeError, ValueError):
            pass
    return keys


class TriggerLedger(ABC):
    """Interface the scheduler loop and policy engine depend on."""

    @abstractmethod
    def has_fired(self, key: str) -> bool:
        ...

    @abstractmethod
    def mark_fired(self, key: str, record: Optional[TriggerRecord] = None) -> None:
        """Add a key; a record, if given, is queued for the next remote flush."""

    @abstractmethod
    def merge(self) -> int:
        """Union in keys written by other processes. Returns the number added."""

    @abstractmethod
    def apply_remote(self, rows: Iterable[dict]) -> int:
        """Union in keys from a remote mirror snapshot. Returns the number added."""

    @abstractmethod
    async def persist(self) -> bool:
        """Flush queued keys and records. Returns False if any write failed."""


class CachedTriggerLedger(TriggerLedger):
    """In-process set seeded from the device cache, mirrored to Supabase."""

    def __init__(self, user_id: Optional[str], cache: LocalCache,
                 remote: Optional[SupabaseStore] = None):
        self.user_id = user_id
        self.cache = cache
        self.remote = remote

        self._fired: set[str] = set()
        self._unsaved: set[str] = set()
        self._pending_records: list[TriggerRecord] = []

        try:
            self._fired = cache.load_trigger_keys(user_id)
        except sqlite3.Error as e:
            logger.error(f"Failed to seed trigger ledger from cache: {e}")

    def __len__(self) -> int:
        return len(self._fired)

    @property
    def pending_records(self) -> list[TriggerRecord]:
        return list(self._pending_records)

    def has_fired(self, key: str) -> bool:
        return key in self._fired

    def mark_fired(self, key: str, record: Optional[TriggerRecord] = None) -> None:
        if key not in self._fired:
            self._fired.add(key)
            self._unsaved.add(key)
        if record is not None:
            self._pending_records.append(record)

    def merge(self) -> int:
        try:
            fresh = self.cache.load_trigger_keys(self.user_id)
        except sqlite3.Error as e:
            logger.warning(f"Trigger cache merge skipped: {e}")
            return 0
        added = fresh - self._fired
        self._fired |= added
        if added:
            logger.debug(f"Merged {len(added)} trigger keys from device cache")
        return len(added)

    def apply_remote(self, rows: Iterable[dict]) -> int:
        incoming = set()
        for row in rows:
            incoming |= keys_from_remote_row(row)
        added = incoming - self._fired
        self._fired |= added
        # Cache locally so other processes see them without their own fetch
        self._unsaved |= added
        if added:
            logger.debug(f"Applied {len(added)} trigger keys from remote mirror")
        return len(added)

    async def persist(self) -> bool:
        ok = True

        if self._unsaved:
            unsaved, self._unsaved = self._unsaved, set()
            try:
                self.cache.save_trigger_keys(self.user_id, unsaved)
            except sqlite3.Error as e:
                logger.error(f"Failed to cache {len(unsaved)} trigger keys: {e}")
                ok = False

        if not self._pending_records:
            return ok

        records, self._pending_records = self._pending_records, []
        if not self.user_id or self.remote is None:
            return ok

        if not await self.remote.record_triggers(self.user_id, records):
            logger.warning(
                f"Remote trigger batch of {len(records)} failed; keeping local ledger only"
            )
            ok = False
        return ok
