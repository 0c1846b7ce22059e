"""
SQLite-backed log of sent bargain notifications.

The log implements a cooldown rather than a permanent "seen" flag: a
listing may be notified again once its most recent entry is older than
the cooldown window.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Iterator, List, Optional

from .errors import TransientIOError
from .models import NotificationRecord, format_timestamp, parse_timestamp, utcnow

logger = logging.getLogger(__name__)

BUSY_TIMEOUT_SECONDS = 30.0

_RECENT = "SELECT 1 FROM notification_log WHERE source=? AND product_id=? AND notified_at > ?"


class NotificationLog:
    """Persistent notification history backed by SQLite."""

    def __init__(self, db_path: str, cooldown: timedelta = timedelta(hours=24)) -> None:
        self.db_path = db_path
        self.cooldown = cooldown
        # Ensure the parent directory exists
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._ensure_table()

    @contextmanager
    def _connect(self, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        """Open a connection; with ``immediate`` the block runs under the write lock."""
        try:
            conn = sqlite3.connect(self.db_path, isolation_level=None, timeout=BUSY_TIMEOUT_SECONDS)
        except sqlite3.OperationalError as exc:
            raise TransientIOError(f"cannot open notification log {self.db_path}: {exc}") from exc
        try:
            conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
            yield conn
            conn.execute("COMMIT")
        except sqlite3.OperationalError as exc:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise TransientIOError(f"notification log operation failed: {exc}") from exc
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def _ensure_table(self) -> None:
        """Create the database table if it doesn't exist."""
        with self._connect(immediate=True) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS notification_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    source TEXT NOT NULL,
                    product_id TEXT NOT NULL,
                    title TEXT,
                    price INTEGER,
                    discount_percent INTEGER,
                    notified_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_notification_key "
                "ON notification_log (source, product_id, notified_at)"
            )

    def _since(self, now: datetime) -> str:
        return format_timestamp(now - self.cooldown)

    def has_recent(self, source: str, product_id: str, now: Optional[datetime] = None) -> bool:
        """Return True if the listing was notified inside the cooldown window."""
        with self._connect() as conn:
            row = conn.execute(_RECENT, (source, product_id, self._since(now or utcnow()))).fetchone()
        return row is not None

    def notify_once(self, record: NotificationRecord, send: Callable[[], None]) -> bool:
        """Claim the cooldown slot for ``record``, then call ``send``.

        The cooldown check and the insert run in one short ``BEGIN IMMEDIATE``
        transaction, so of two processes sharing the database only one can
        claim the slot.  ``send`` runs after the commit, outside the write
        lock.  If it raises, the claimed entry is deleted again and the
        exception propagates.  Returns False when the cooldown suppressed
        the send.
        """
        with self._connect(immediate=True) as conn:
            if conn.execute(_RECENT, (record.source, record.product_id, self._since(record.notified_at))).fetchone():
                return False
            cursor = conn.execute(
                "INSERT INTO notification_log "
                "(source, product_id, title, price, discount_percent, notified_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    record.source,
                    record.product_id,
                    record.title,
                    record.price,
                    record.discount_percent,
                    format_timestamp(record.notified_at),
                ),
            )
            entry_id = cursor.lastrowid

        try:
            send()
        except BaseException:
            with self._connect(immediate=True) as conn:
                conn.execute("DELETE FROM notification_log WHERE id=?", (entry_id,))
            logger.debug("Released notification slot for %s %s", record.source, record.product_id)
            raise
        return True

    def records_for(self, source: str, product_id: str) -> List[NotificationRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT source, product_id, title, price, discount_percent, notified_at "
                "FROM notification_log WHERE source=? AND product_id=? ORDER BY notified_at",
                (source, product_id),
            ).fetchall()
        return [
            NotificationRecord(
                source=row[0],
                product_id=row[1],
                title=row[2],
                price=row[3],
                discount_percent=row[4],
                notified_at=parse_timestamp(row[5]),
            )
            for row in rows
        ]
