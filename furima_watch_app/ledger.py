"""
SQLite-backed listing ledger.

Every sighting of a listing is applied with an upsert keyed by
``(source, product_id)``.  The first sighting creates the row; later
sightings refresh price, category, status and ``updated_at``.  A listing
moves from on sale to sold at most once, and ``sold_at`` records when that
was first observed.  Rows are removed by a retention purge once they are
older than the configured horizon.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

from .errors import TransientIOError
from .models import (
    Listing,
    ListingObservation,
    ListingStatus,
    format_timestamp,
    parse_timestamp,
    utcnow,
)

logger = logging.getLogger(__name__)

BUSY_TIMEOUT_SECONDS = 30.0

_SCHEMA = """
CREATE TABLE IF NOT EXISTS products (
    source TEXT NOT NULL,
    product_id TEXT NOT NULL,
    title TEXT NOT NULL,
    price INTEGER NOT NULL CHECK (price > 0),
    category TEXT,
    status TEXT NOT NULL,
    url TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    sold_at TEXT,
    PRIMARY KEY (source, product_id)
);
CREATE INDEX IF NOT EXISTS idx_products_cohort ON products (source, category, created_at);
CREATE INDEX IF NOT EXISTS idx_products_created ON products (created_at);
"""

# Sold is terminal: a later on-sale sighting keeps the row sold and
# sold_at is only ever written while it is still NULL.
_UPSERT = """
INSERT INTO products (
    source, product_id, title, price, category, status, url, created_at, updated_at, sold_at
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT (source, product_id) DO UPDATE SET
    price = excluded.price,
    category = excluded.category,
    status = CASE WHEN products.status = 'sold' THEN products.status ELSE excluded.status END,
    updated_at = excluded.updated_at,
    sold_at = CASE
        WHEN products.status != 'sold' AND excluded.status = 'sold' AND products.sold_at IS NULL
        THEN excluded.updated_at
        ELSE products.sold_at
    END
"""

_COLUMNS = "source, product_id, title, price, category, status, url, created_at, updated_at, sold_at"


def _row_to_listing(row: sqlite3.Row) -> Listing:
    return Listing(
        source=row["source"],
        product_id=row["product_id"],
        title=row["title"],
        price=row["price"],
        category=row["category"] or "",
        status=ListingStatus(row["status"]),
        url=row["url"],
        created_at=parse_timestamp(row["created_at"]),
        updated_at=parse_timestamp(row["updated_at"]),
        sold_at=parse_timestamp(row["sold_at"]),
    )


class Ledger:
    """Persistent store of listings backed by SQLite."""

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        # Ensure the parent directory exists
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._ensure_tables()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self.db_path, timeout=BUSY_TIMEOUT_SECONDS)
        except sqlite3.OperationalError as exc:
            raise TransientIOError(f"cannot open ledger {self.db_path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.OperationalError as exc:
            conn.rollback()
            raise TransientIOError(f"ledger operation failed: {exc}") from exc
        finally:
            conn.close()

    def _ensure_tables(self) -> None:
        with self._connect() as conn:
            conn.executescript(_SCHEMA)

    def upsert(self, observation: ListingObservation, now: Optional[datetime] = None) -> None:
        """Insert a new listing or apply a later sighting of a known one."""
        stamp = format_timestamp(now or utcnow())
        sold_at = stamp if observation.status is ListingStatus.SOLD else None
        with self._connect() as conn:
            conn.execute(
                _UPSERT,
                (
                    observation.source,
                    observation.product_id,
                    observation.title,
                    observation.price,
                    observation.category,
                    observation.status.value,
                    observation.url,
                    stamp,
                    stamp,
                    sold_at,
                ),
            )

    def get(self, source: str, product_id: str) -> Optional[Listing]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM products WHERE source=? AND product_id=?",
                (source, product_id),
            ).fetchone()
        return _row_to_listing(row) if row else None

    def distinct_cohorts(self) -> List[Tuple[str, str]]:
        """Return every ``(source, category)`` pair that has a category."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT DISTINCT source, category FROM products "
                "WHERE category IS NOT NULL AND category != '' "
                "ORDER BY source, category"
            ).fetchall()
        return [(row["source"], row["category"]) for row in rows]

    def query_cohort(
        self, source: str, category: str, window_days: int, now: Optional[datetime] = None
    ) -> List[Listing]:
        """Listings of one cohort created inside the trailing window, newest first."""
        since = format_timestamp((now or utcnow()) - timedelta(days=window_days))
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM products "
                "WHERE source=? AND category=? AND created_at > ? "
                "ORDER BY created_at DESC",
                (source, category, since),
            ).fetchall()
        return [_row_to_listing(row) for row in rows]

    def query_window(self, window_days: int, now: Optional[datetime] = None) -> List[Listing]:
        """All listings created inside the trailing window, newest first."""
        since = format_timestamp((now or utcnow()) - timedelta(days=window_days))
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM products WHERE created_at > ? ORDER BY created_at DESC",
                (since,),
            ).fetchall()
        return [_row_to_listing(row) for row in rows]

    def top_sold_categories(
        self,
        source: str,
        window_days: int = 7,
        min_sold: int = 10,
        limit: int = 10,
        now: Optional[datetime] = None,
    ) -> List[Tuple[str, int, float]]:
        """Best-selling categories as ``(category, sold_count, avg_price)``.

        Only categories with more than ``min_sold`` sold listings created in
        the window qualify.  Used to pick search keywords from sales history.
        """
        since = format_timestamp((now or utcnow()) - timedelta(days=window_days))
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT category, COUNT(*) AS sold_count, AVG(price) AS avg_price FROM products "
                "WHERE source=? AND status=? AND created_at > ? "
                "AND category IS NOT NULL AND category != '' "
                "GROUP BY category HAVING COUNT(*) > ? "
                "ORDER BY sold_count DESC, category LIMIT ?",
                (source, ListingStatus.SOLD.value, since, min_sold, limit),
            ).fetchall()
        return [(row["category"], row["sold_count"], row["avg_price"]) for row in rows]

    def purge_older_than(self, days: int, now: Optional[datetime] = None) -> int:
        """Delete listings created strictly before ``now - days``."""
        horizon = format_timestamp((now or utcnow()) - timedelta(days=days))
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM products WHERE created_at < ?", (horizon,))
            deleted = cursor.rowcount
        logger.info("Purged %d listings older than %d days", deleted, days)
        return deleted
