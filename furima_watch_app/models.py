"""
Record types passed between the fetchers, the ledger and the detectors.

Listings are identified by ``(source, product_id)``.  Timestamps are
timezone-aware UTC datetimes; the ledger stores them as ISO-8601 text.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

SOURCES = ("mercari", "yahoo")

SOURCE_NAMES = {
    "mercari": "Mercari",
    "yahoo": "Yahoo! Flea Market",
}


class ListingStatus(str, Enum):
    ON_SALE = "on_sale"
    SOLD = "sold"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Render a timestamp in the fixed-width UTC form used for SQL comparisons.

    Stored timestamps are compared as text, so every value is converted to
    UTC first.  Naive datetimes are rejected.
    """
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError(f"timestamp must be timezone-aware: {value!r}")
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value)


@dataclass(frozen=True)
class RawExtraction:
    """One listing as read off a search results page, before validation."""

    raw_title: Optional[str]
    raw_price_text: Optional[str]
    id_or_href: Optional[str]
    sold_flag: bool = False


@dataclass(frozen=True)
class ListingObservation:
    """A validated listing sighting, ready to be applied to the ledger."""

    source: str
    product_id: str
    title: str
    price: int
    category: str
    status: ListingStatus
    url: str


@dataclass(frozen=True)
class Listing:
    """A listing as stored in the ledger."""

    source: str
    product_id: str
    title: str
    price: int
    category: str
    status: ListingStatus
    url: Optional[str]
    created_at: datetime
    updated_at: datetime
    sold_at: Optional[datetime] = None

    @property
    def hours_to_sell(self) -> Optional[float]:
        if self.sold_at is None:
            return None
        return (self.sold_at - self.created_at).total_seconds() / 3600


@dataclass(frozen=True)
class BargainCandidate:
    """An on-sale listing priced below its cohort cutoff."""

    listing: Listing
    reference_price: float
    cutoff: float
    discount_percent: int

    @property
    def source(self) -> str:
        return self.listing.source

    @property
    def product_id(self) -> str:
        return self.listing.product_id

    @property
    def category(self) -> str:
        return self.listing.category


@dataclass(frozen=True)
class NotificationRecord:
    source: str
    product_id: str
    title: str
    price: int
    discount_percent: int
    notified_at: datetime
