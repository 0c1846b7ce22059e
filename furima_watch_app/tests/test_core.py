"""
Unit tests for listing normalization, bargain arithmetic and e-mail formatting.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from furima_watch_app.bargains import (
    bargain_cutoff,
    discount_percent,
    find_bargains,
    is_bargain,
    reference_price,
)
from furima_watch_app.errors import ValidationError
from furima_watch_app.mailer import format_bargain_email
from furima_watch_app.models import BargainCandidate, Listing, ListingStatus, RawExtraction
from furima_watch_app.normalizer import extract_category, normalize, parse_price
from furima_watch_app.settings import BargainPolicy

NOW = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)

MEDIAN_PRICES = [1000, 1200, 1100, 5000, 1050, 1080, 1090, 1150, 1070, 1060]


def make_listing(product_id: str, price: int, status: ListingStatus = ListingStatus.ON_SALE) -> Listing:
    return Listing(
        source="mercari",
        product_id=product_id,
        title="ゲーム機 本体",
        price=price,
        category="ゲーム機 本体",
        status=status,
        url=f"https://jp.mercari.com/item/{product_id}",
        created_at=NOW,
        updated_at=NOW,
    )


def test_extract_category_strips_annotations() -> None:
    category = extract_category("【新品】ゲーム機 本体 3点セット 送料無料")
    assert category == "ゲーム機 本体"
    assert 5 <= len(category) <= 30
    for token in ("【", "新品", "3点", "セット", "送料無料"):
        assert token not in category


def test_extract_category_takes_first_three_tokens() -> None:
    title = "(美品) Nintendo Switch 有機EL ホワイト 限定版"
    assert extract_category(title) == "Nintendo Switch 有機EL"


def test_extract_category_falls_back_to_two_tokens() -> None:
    title = "PlayStation5 CFI-2000B01 ControllerChargingStationBundle"
    assert extract_category(title) == "PlayStation5 CFI-2000B01"


def test_extract_category_truncates_long_single_token() -> None:
    title = "ポケットモンスタースカーレットバイオレットダブルパック"
    assert extract_category(title) == title[:20]


def test_extract_category_short_title_kept() -> None:
    assert extract_category("「中古」 ゲーム") == "ゲーム"


def test_extract_category_is_deterministic() -> None:
    title = "[未開封] ドラゴンクエスト 初回限定 2本セット"
    assert extract_category(title) == extract_category(title)


def test_parse_price_strips_symbols() -> None:
    assert parse_price("¥12,800") == 12800
    with pytest.raises(ValidationError):
        parse_price("¥0")
    with pytest.raises(ValidationError):
        parse_price("SOLD")


def test_normalize_mercari_link() -> None:
    raw = RawExtraction(raw_title=" ゲーム機 本体 ", raw_price_text="¥3,000", id_or_href="/item/m123456", sold_flag=True)
    observation = normalize("mercari", raw)
    assert observation.product_id == "m123456"
    assert observation.title == "ゲーム機 本体"
    assert observation.price == 3000
    assert observation.status is ListingStatus.SOLD
    assert observation.url == "https://jp.mercari.com/item/m123456"


def test_normalize_yahoo_absolute_link_with_query() -> None:
    raw = RawExtraction(
        raw_title="ゲーム ソフト",
        raw_price_text="1,500円",
        id_or_href="https://paypayfleamarket.yahoo.co.jp/item/z98765?ref=search",
    )
    observation = normalize("yahoo", raw)
    assert observation.product_id == "z98765"
    assert observation.status is ListingStatus.ON_SALE


@pytest.mark.parametrize(
    "raw",
    [
        RawExtraction(raw_title=None, raw_price_text="¥100", id_or_href="/item/m1"),
        RawExtraction(raw_title="title", raw_price_text=None, id_or_href="/item/m1"),
        RawExtraction(raw_title="title", raw_price_text="¥100", id_or_href=""),
        RawExtraction(raw_title="title", raw_price_text="¥0", id_or_href="/item/m1"),
    ],
)
def test_normalize_rejects_incomplete_items(raw: RawExtraction) -> None:
    with pytest.raises(ValidationError):
        normalize("mercari", raw)


def test_median_cutoff_is_strict() -> None:
    policy = BargainPolicy(statistic="median", min_cohort_size=10, discount_threshold=0.75, price_floor=500)
    median = reference_price(MEDIAN_PRICES, "median")
    assert median == 1085
    cutoff = bargain_cutoff(median, policy)
    assert cutoff == 813.75
    assert not any(is_bargain(p, ListingStatus.ON_SALE, cutoff, policy) for p in MEDIAN_PRICES)
    assert is_bargain(800, ListingStatus.ON_SALE, cutoff, policy)
    assert not is_bargain(813.75, ListingStatus.ON_SALE, cutoff, policy)


def test_find_bargains_in_median_cohort() -> None:
    policy = BargainPolicy(statistic="median", min_cohort_size=10, discount_threshold=0.75, price_floor=500)
    cohort = [make_listing(f"m{i}", price) for i, price in enumerate(MEDIAN_PRICES)]
    assert find_bargains(cohort, policy) == []
    found = find_bargains(cohort + [make_listing("cheap", 800)], policy)
    assert [c.product_id for c in found] == ["cheap"]


def test_find_bargains_ignores_sold_floor_and_small_cohorts() -> None:
    policy = BargainPolicy(statistic="mean", min_cohort_size=5, discount_threshold=0.8, price_floor=300)
    cohort = [make_listing(f"m{i}", 1000) for i in range(5)]
    assert find_bargains(cohort + [make_listing("sold", 400, ListingStatus.SOLD)], policy) == []
    assert find_bargains(cohort + [make_listing("floor", 300)], policy) == []
    assert find_bargains(cohort[:3] + [make_listing("few", 400)], policy) == []


def test_mean_discount_percent() -> None:
    prices = [1000, 1000, 1000, 1000, 1000, 400]
    mean = reference_price(prices, "mean")
    assert mean == 900
    assert discount_percent(400, mean) == 56


def test_reference_price_ignores_non_positive_prices() -> None:
    assert reference_price([0, 100, 300], "median") == 200
    assert reference_price([0], "mean") is None


def test_policy_rejects_bad_values() -> None:
    with pytest.raises(ValueError):
        BargainPolicy(statistic="mode")
    with pytest.raises(ValueError):
        BargainPolicy(discount_threshold=1.2)


def test_format_bargain_email_structure() -> None:
    candidate = BargainCandidate(
        listing=make_listing("m1", 400),
        reference_price=900.0,
        cutoff=720.0,
        discount_percent=56,
    )
    subject, body = format_bargain_email(candidate)
    assert subject == "Mercari - 56% OFF"
    assert "ゲーム機 本体" in body
    assert "&yen;400" in body
    assert "&yen;900" in body
    assert 'href="https://jp.mercari.com/item/m1"' in body
