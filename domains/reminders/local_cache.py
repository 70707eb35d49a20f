"""Device-local cache for the reminder engine.

SQLite in WAL mode, shared by every client process on this machine (the
equivalent of browser tabs). Holds:
- fired trigger keys per user (seeds and re-merges the Trigger Ledger)
- daily sent counters per user and local day
- notification history for guests and as fallback when the remote store fails

Keyed by user id, with "guest" for signed-out sessions.
"""

import json
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Optional

from logger import logger
from . import config
from .types import Notification

GUEST_KEY = "guest"


def user_key(user_id: Optional[str]) -> str:
    return user_id or GUEST_KEY


class LocalCache:
    """SQLite-backed device cache."""

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or config.LOCAL_CACHE_DB
        self._connection: Optional[sqlite3.Connection] = None

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create database connection with WAL mode."""
        if self._connection is not None:
            return self._connection

        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        # Several client processes read and write the same file
        self._connection = sqlite3.connect(
            self.db_path,
            check_same_thread=False,
            timeout=10.0
        )
        self._connection.row_factory = sqlite3.Row
        self._connection.execute("PRAGMA journal_mode=WAL")
        self._connection.execute("PRAGMA busy_timeout=5000")

        self._init_schema(self._connection)

        logger.info(f"Reminder cache initialized: {self.db_path}")
        return self._connection

    @staticmethod
    def _init_schema(conn: sqlite3.Connection) -> None:
        """Create tables if they don't exist."""
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS fired_triggers (
                user_key TEXT NOT NULL,
                trigger_key TEXT NOT NULL,
                fired_at INTEGER NOT NULL,
                PRIMARY KEY (user_key, trigger_key)
            );

            CREATE TABLE IF NOT EXISTS daily_counts (
                user_key TEXT NOT NULL,
                day_key TEXT NOT NULL,
                count INTEGER NOT NULL DEFAULT 0,
                PRIMARY KEY (user_key, day_key)
            );

            CREATE TABLE IF NOT EXISTS local_notifications (
                user_key TEXT NOT NULL,
                id TEXT NOT NULL,
                payload TEXT NOT NULL,
                sent_at_ms INTEGER,
                PRIMARY KEY (user_key, id)
            );

            CREATE INDEX IF NOT EXISTS idx_local_notifications_sent
                ON local_notifications(user_key, sent_at_ms);
        """)
        conn.commit()

    @contextmanager
    def _transaction(self):
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    # ------------------------------------------------------------------
    # Fired triggers
    # ------------------------------------------------------------------

    def load_trigger_keys(self, user_id: Optional[str]) -> set[str]:
        conn = self._get_connection()
        rows = conn.execute(
            "SELECT trigger_key FROM fired_triggers WHERE user_key = ?",
            (user_key(user_id),)
        ).fetchall()
        return {row["trigger_key"] for row in rows}

    def save_trigger_keys(self, user_id: Optional[str], keys: Iterable[str]) -> int:
        """Insert keys not yet cached. Existing keys are left untouched.

        Returns:
            Number of keys newly written
        """
        now = int(time.time())
        rows = [(user_key(user_id), key, now) for key in keys]
        if not rows:
            return 0

        with self._transaction() as conn:
            before = conn.total_changes
            conn.executemany(
                """
                INSERT OR IGNORE INTO fired_triggers (user_key, trigger_key, fired_at)
                VALUES (?, ?, ?)
                """,
                rows
            )
            written = conn.total_changes - before

        if written:
            logger.debug(f"Cached {written} trigger keys for {user_key(user_id)}")
        return written

    # ------------------------------------------------------------------
    # Daily counters
    # ------------------------------------------------------------------

    def load_daily_counts(self, user_id: Optional[str]) -> dict[str, int]:
        conn = self._get_connection()
        rows = conn.execute(
            "SELECT day_key, count FROM daily_counts WHERE user_key = ?",
            (user_key(user_id),)
        ).fetchall()
        return {row["day_key"]: row["count"] for row in rows}

    def save_daily_counts(self, user_id: Optional[str], counts: dict[str, int]) -> None:
        """Store counters, never lowering a value another process already raised."""
        if not counts:
            return
        with self._transaction() as conn:
            conn.executemany(
                """
                INSERT INTO daily_counts (user_key, day_key, count)
                VALUES (?, ?, ?)
                ON CONFLICT(user_key, day_key) DO UPDATE SET count = MAX(count, excluded.count)
                """,
                [(user_key(user_id), day, count) for day, count in counts.items()]
            )

    # ------------------------------------------------------------------
    # Local notification history
    # ------------------------------------------------------------------

    def load_notifications(self, user_id: Optional[str]) -> list[Notification]:
        """Newest first, limited to NOTIFICATIONS_LIMIT."""
        conn = self._get_connection()
        rows = conn.execute(
            """
            SELECT payload FROM local_notifications
            WHERE user_key = ?
            ORDER BY sent_at_ms DESC
            LIMIT ?
            """,
            (user_key(user_id), config.NOTIFICATIONS_LIMIT)
        ).fetchall()

        notifications = []
        for row in rows:
            try:
                notifications.append(Notification.from_db_row(json.loads(row["payload"])))
            except (ValueError, KeyError) as e:
                logger.warning(f"Dropping unreadable cached notification: {e}")
        return notifications

    def add_notification(self, user_id: Optional[str], notification: Notification) -> list[Notification]:
        """Insert (idempotent by id) and trim to NOTIFICATIONS_LIMIT."""
        key = user_key(user_id)
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT OR IGNORE INTO local_notifications (user_key, id, payload, sent_at_ms)
                VALUES (?, ?, ?, ?)
                """,
                (key, notification.id, json.dumps(notification.to_db_row()), notification.sent_at_ms or 0)
            )
            conn.execute(
                """
                DELETE FROM local_notifications
                WHERE user_key = ? AND id NOT IN (
                    SELECT id FROM local_notifications
                    WHERE user_key = ?
                    ORDER BY sent_at_ms DESC
                    LIMIT ?
                )
                """,
                (key, key, config.NOTIFICATIONS_LIMIT)
            )
        return self.load_notifications(user_id)

    def update_notifications(self, user_id: Optional[str], notifications: list[Notification]) -> None:
        """Rewrite payloads of existing notifications (read/deleted flags)."""
        with self._transaction() as conn:
            conn.executemany(
                "UPDATE local_notifications SET payload = ? WHERE user_key = ? AND id = ?",
                [(json.dumps(n.to_db_row()), user_key(user_id), n.id) for n in notifications]
            )

    def clear_notifications(self, user_id: Optional[str]) -> None:
        with self._transaction() as conn:
            conn.execute(
                "DELETE FROM local_notifications WHERE user_key = ?",
                (user_key(user_id),)
            )

    def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            self._connection.close()
            self._connection = None
            logger.debug("Reminder cache connection closed")
