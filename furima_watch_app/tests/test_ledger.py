"""
Tests for the SQLite listing ledger: upsert semantics, sold transitions,
cohort queries and the retention purge.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from furima_watch_app.ledger import Ledger
from furima_watch_app.models import ListingObservation, ListingStatus, format_timestamp

NOW = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


def observation(
    product_id: str = "m1",
    price: int = 1000,
    status: ListingStatus = ListingStatus.ON_SALE,
    category: str = "ゲーム機 本体",
    source: str = "mercari",
) -> ListingObservation:
    return ListingObservation(
        source=source,
        product_id=product_id,
        title="ゲーム機 本体 セット",
        price=price,
        category=category,
        status=status,
        url=f"https://jp.mercari.com/item/{product_id}",
    )


@pytest.fixture
def ledger(tmp_path: Path) -> Ledger:
    return Ledger(str(tmp_path / "data" / "ledger.db"))


def test_upsert_inserts_new_listing(ledger: Ledger) -> None:
    ledger.upsert(observation(), now=NOW)
    stored = ledger.get("mercari", "m1")
    assert stored is not None
    assert stored.price == 1000
    assert stored.status is ListingStatus.ON_SALE
    assert stored.created_at == NOW
    assert stored.updated_at == NOW
    assert stored.sold_at is None


def test_upsert_is_idempotent_except_updated_at(ledger: Ledger) -> None:
    ledger.upsert(observation(), now=NOW)
    first = ledger.get("mercari", "m1")
    later = NOW + timedelta(hours=3)
    ledger.upsert(observation(), now=later)
    second = ledger.get("mercari", "m1")
    assert second.updated_at == later
    assert replace(first, updated_at=later) == second


def test_upsert_updates_price_and_category(ledger: Ledger) -> None:
    ledger.upsert(observation(), now=NOW)
    ledger.upsert(observation(price=800, category="ゲーム機"), now=NOW + timedelta(minutes=5))
    stored = ledger.get("mercari", "m1")
    assert stored.price == 800
    assert stored.category == "ゲーム機"
    assert stored.created_at == NOW


def test_sold_at_set_once_on_transition(ledger: Ledger) -> None:
    ledger.upsert(observation(), now=NOW)
    sold_time = NOW + timedelta(hours=5)
    ledger.upsert(observation(status=ListingStatus.SOLD), now=sold_time)
    ledger.upsert(observation(status=ListingStatus.SOLD), now=sold_time + timedelta(hours=1))
    ledger.upsert(observation(status=ListingStatus.ON_SALE), now=sold_time + timedelta(hours=2))
    ledger.upsert(observation(status=ListingStatus.SOLD), now=sold_time + timedelta(hours=3))
    stored = ledger.get("mercari", "m1")
    assert stored.sold_at == sold_time
    assert stored.status is ListingStatus.SOLD
    assert stored.hours_to_sell == 5


def test_first_observation_sold_sets_sold_at(ledger: Ledger) -> None:
    ledger.upsert(observation(status=ListingStatus.SOLD), now=NOW)
    assert ledger.get("mercari", "m1").sold_at == NOW


def test_same_product_id_in_two_sources(ledger: Ledger) -> None:
    ledger.upsert(observation(source="mercari"), now=NOW)
    ledger.upsert(observation(source="yahoo", price=2000), now=NOW)
    assert ledger.get("mercari", "m1").price == 1000
    assert ledger.get("yahoo", "m1").price == 2000


def test_query_cohort_window_and_order(ledger: Ledger) -> None:
    ledger.upsert(observation("old"), now=NOW - timedelta(days=8))
    ledger.upsert(observation("a"), now=NOW - timedelta(days=2))
    ledger.upsert(observation("b"), now=NOW - timedelta(days=1))
    ledger.upsert(observation("other", category="別カテゴリ"), now=NOW)
    cohort = ledger.query_cohort("mercari", "ゲーム機 本体", 7, now=NOW)
    assert [listing.product_id for listing in cohort] == ["b", "a"]


def test_distinct_cohorts_skip_empty_category(ledger: Ledger) -> None:
    ledger.upsert(observation("a"), now=NOW)
    ledger.upsert(observation("b", source="yahoo"), now=NOW)
    ledger.upsert(observation("c", category=""), now=NOW)
    assert ledger.distinct_cohorts() == [("mercari", "ゲーム機 本体"), ("yahoo", "ゲーム機 本体")]


def test_query_window_newest_first(ledger: Ledger) -> None:
    ledger.upsert(observation("a"), now=NOW - timedelta(days=3))
    ledger.upsert(observation("b", source="yahoo"), now=NOW - timedelta(days=1))
    ledger.upsert(observation("c"), now=NOW - timedelta(days=10))
    assert [listing.product_id for listing in ledger.query_window(7, now=NOW)] == ["b", "a"]


def test_top_sold_categories(ledger: Ledger) -> None:
    for i in range(11):
        ledger.upsert(observation(f"s{i}", status=ListingStatus.SOLD, price=1000 + i), now=NOW)
    for i in range(10):
        ledger.upsert(observation(f"t{i}", status=ListingStatus.SOLD, category="トレカ"), now=NOW)
    top = ledger.top_sold_categories("mercari", now=NOW)
    assert [(category, count) for category, count, _ in top] == [("ゲーム機 本体", 11)]
    assert top[0][2] == pytest.approx(1005)


def test_purge_retention_boundary(ledger: Ledger) -> None:
    ledger.upsert(observation("boundary"), now=NOW - timedelta(days=90))
    ledger.upsert(observation("expired"), now=NOW - timedelta(days=90, seconds=1))
    ledger.upsert(observation("fresh"), now=NOW)
    assert ledger.purge_older_than(90, now=NOW) == 1
    assert ledger.get("mercari", "boundary") is not None
    assert ledger.get("mercari", "expired") is None
    assert ledger.get("mercari", "fresh") is not None


def test_offset_timestamps_compare_in_utc(ledger: Ledger) -> None:
    jst = timezone(timedelta(hours=9))
    ledger.upsert(observation("old"), now=(NOW - timedelta(days=7, hours=1)).astimezone(jst))
    ledger.upsert(observation("recent"), now=(NOW - timedelta(days=6)).astimezone(jst))
    assert [listing.product_id for listing in ledger.query_window(7, now=NOW)] == ["recent"]
    stored = ledger.get("mercari", "recent")
    assert stored.created_at == NOW - timedelta(days=6)
    assert stored.created_at.utcoffset() == timedelta(0)


def test_naive_timestamps_rejected(ledger: Ledger) -> None:
    with pytest.raises(ValueError):
        ledger.upsert(observation(), now=datetime(2026, 10, 1, 12, 0))
    with pytest.raises(ValueError):
        format_timestamp(datetime(2026, 10, 1, 12, 0))
    assert format_timestamp(NOW) == "2026-10-01T12:00:00.000000+00:00"
