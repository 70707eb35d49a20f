"""Supabase persistence for reminders, triggers, notifications and preferences.

Tables (all keyed by user_id):
- reminders                  one row per (user, event_key)
- notification_triggers      write-once trigger records, unique (user, trigger_id)
- notifications              in-app history, unique (user, id)
- notification_preferences   quiet hours

Reads raise RemoteStoreError so subscriptions can fall back. Writes log and
return False on failure; nothing here retries.
"""

from datetime import datetime, timezone
from typing import Iterable, Optional

import httpx

from config import SUPABASE_URL, SUPABASE_KEY
from logger import logger
from . import config
from .errors import RemoteStoreError
from .types import Channel, Notification, TriggerRecord


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SupabaseStore:
    """Thin async client over the Supabase REST API."""

    def __init__(self, url: Optional[str] = None, key: Optional[str] = None):
        self.url = url if url is not None else SUPABASE_URL
        self.key = key if key is not None else SUPABASE_KEY

    @property
    def configured(self) -> bool:
        return bool(self.url and self.key)

    def _headers(self, prefer: str = "return=representation") -> dict[str, str]:
        """Get headers for Supabase API calls."""
        return {
            "apikey": self.key,
            "Authorization": f"Bearer {self.key}",
            "Content-Type": "application/json",
            "Prefer": prefer,
        }

    def _rest_url(self, table: str) -> str:
        return f"{self.url}/rest/v1/{table}"

    async def _get(self, operation: str, table: str, params: dict) -> list[dict]:
        if not self.configured:
            return []
        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(
                    self._rest_url(table),
                    headers=self._headers(),
                    params=params,
                    timeout=config.REMOTE_TIMEOUT_SECONDS
                )
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise RemoteStoreError(operation, str(e)) from e

        if not isinstance(data, list):
            raise RemoteStoreError(operation, f"expected a list of rows, got {type(data).__name__}")
        return [row for row in data if isinstance(row, dict)]

    async def _write(self, operation: str, method: str, table: str, *,
                     params: dict, json, prefer: str) -> bool:
        if not self.configured:
            return True  # Allow in-memory only operation
        try:
            async with httpx.AsyncClient() as client:
                response = await client.request(
                    method,
                    self._rest_url(table),
                    headers=self._headers(prefer),
                    params=params,
                    json=json,
                    timeout=config.REMOTE_TIMEOUT_SECONDS
                )
                response.raise_for_status()
                return True
        except httpx.HTTPError as e:
            logger.error(f"Remote store {operation} failed: {e}")
            return False

    # ------------------------------------------------------------------
    # Reminders (read by the engine, written by the external save flow)
    # ------------------------------------------------------------------

    async def fetch_reminders(self, user_id: str) -> list[dict]:
        return await self._get("fetch_reminders", "reminders", {
            "user_id": f"eq.{user_id}",
            "select": "*",
            "order": "updated_at.desc",
        })

    async def upsert_reminder(self, user_id: str, row: dict) -> bool:
        payload = {**row, "user_id": user_id, "updated_at": _utc_now_iso()}
        return await self._write(
            "upsert_reminder", "POST", "reminders",
            params={"on_conflict": "user_id,event_key"},
            json=payload,
            prefer="resolution=merge-duplicates,return=minimal",
        )

    async def delete_reminder(self, user_id: str, event_key: str) -> bool:
        return await self._write(
            "delete_reminder", "DELETE", "reminders",
            params={"user_id": f"eq.{user_id}", "event_key": f"eq.{event_key}"},
            json=None,
            prefer="return=minimal",
        )

    # ------------------------------------------------------------------
    # Trigger ledger mirror
    # ------------------------------------------------------------------

    async def fetch_triggers(self, user_id: str) -> list[dict]:
        return await self._get("fetch_triggers", "notification_triggers", {
            "user_id": f"eq.{user_id}",
            "select": "trigger_id,event_key,occurrence_epoch_ms,channel,status",
        })

    async def record_triggers(self, user_id: str, records: Iterable[TriggerRecord]) -> bool:
        """Batched idempotent insert of trigger records.

        Push records are never written; the push pipeline owns them and a
        client-side row would block its delivery.
        """
        rows = [r.to_db_row(user_id) for r in records if r.channel != Channel.PUSH]
        if not rows:
            return True

        ok = True
        for start in range(0, len(rows), config.TRIGGER_BATCH_SIZE):
            batch = rows[start:start + config.TRIGGER_BATCH_SIZE]
            written = await self._write(
                "record_triggers", "POST", "notification_triggers",
                params={"on_conflict": "user_id,trigger_id"},
                json=batch,
                prefer="resolution=ignore-duplicates,return=minimal",
            )
            ok = ok and written
        if ok:
            logger.debug(f"Recorded {len(rows)} trigger(s) for user {user_id}")
        return ok

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    async def fetch_notifications(self, user_id: str) -> list[dict]:
        return await self._get("fetch_notifications", "notifications", {
            "user_id": f"eq.{user_id}",
            "select": "*",
            "order": "sent_at_ms.desc",
            "limit": str(config.NOTIFICATIONS_LIMIT),
        })

    async def insert_notification(self, user_id: str, notification: Notification) -> bool:
        """Create a notification; an existing row with the same id is kept as is."""
        payload = {
            **notification.to_db_row(),
            "user_id": user_id,
            "read": False,
            "deleted": False,
            "status": "unread",
            "created_at": _utc_now_iso(),
        }
        return await self._write(
            "insert_notification", "POST", "notifications",
            params={"on_conflict": "user_id,id"},
            json=payload,
            prefer="resolution=ignore-duplicates,return=minimal",
        )

    async def mark_notification_read(self, user_id: str, notification_id: str) -> bool:
        return await self._write(
            "mark_notification_read", "PATCH", "notifications",
            params={"user_id": f"eq.{user_id}", "id": f"eq.{notification_id}"},
            json={"read": True, "status": "read", "read_at": _utc_now_iso()},
            prefer="return=minimal",
        )

    async def mark_all_notifications_read(self, user_id: str) -> bool:
        return await self._write(
            "mark_all_notifications_read", "PATCH", "notifications",
            params={"user_id": f"eq.{user_id}", "read": "is.false"},
            json={"read": True, "status": "read", "read_at": _utc_now_iso()},
            prefer="return=minimal",
        )

    async def clear_notifications(self, user_id: str) -> bool:
        return await self._write(
            "clear_notifications", "PATCH", "notifications",
            params={"user_id": f"eq.{user_id}", "deleted": "is.false"},
            json={"deleted": True, "status": "deleted", "deleted_at": _utc_now_iso()},
            prefer="return=minimal",
        )

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    async def fetch_preferences(self, user_id: str) -> Optional[dict]:
        rows = await self._get("fetch_preferences", "notification_preferences", {
            "user_id": f"eq.{user_id}",
            "select": "*",
            "limit": "1",
        })
        return rows[0] if rows else None
