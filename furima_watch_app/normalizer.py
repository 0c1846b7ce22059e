"""
Turn raw search-result extractions into validated listing observations.

The fetchers hand over whatever text they could read off the page.  This
module parses the price, works out the product id and URL, and derives a
short category label from the title so that similar items end up in the
same price cohort.
"""

from __future__ import annotations

import re
from typing import Optional

from .errors import ValidationError
from .models import ListingObservation, ListingStatus, RawExtraction

ORIGINS = {
    "mercari": "https://jp.mercari.com",
    "yahoo": "https://paypayfleamarket.yahoo.co.jp",
}

# Applied in order; each step works on the output of the previous one.
_ANNOTATION_RE = re.compile(r"【[^】]*】|\([^)]*\)|（[^）]*）|\[[^\]]*\]|［[^］]*］|「[^」]*」|『[^』]*』|\"[^\"]*\"")
_CONDITION_RE = re.compile(
    r"新品未使用|新品未開封|新品|中古品?|未使用品?|未開封|美品|送料無料|送料込み?"
    r"|\b(?:brand new|new|used|unused|mint|unopened|free shipping|shipping included)\b",
    re.IGNORECASE,
)
_QUANTITY_RE = re.compile(
    r"\d+\s*(?:点|個|枚|本|冊|台|着|足|組|箱|袋|pcs|pieces)(?:セット)?|\d+\s*(?:セット|set)",
    re.IGNORECASE,
)
_EDITION_RE = re.compile(
    r"初回限定版?|初回生産(?:限定)?|初回版|限定版|限定|通常版|特典付き?|特典"
    r"|\b(?:limited edition|limited|standard edition|standard|first edition|first press|bonus included|bonus)\b",
    re.IGNORECASE,
)
_WHITESPACE_RE = re.compile(r"\s+")
_NON_DIGIT_RE = re.compile(r"[^0-9]")


def extract_category(title: str) -> str:
    """Derive a short, stable category label from a listing title."""
    cleaned = _ANNOTATION_RE.sub(" ", title)
    cleaned = _CONDITION_RE.sub(" ", cleaned)
    cleaned = _QUANTITY_RE.sub(" ", cleaned)
    cleaned = _EDITION_RE.sub(" ", cleaned)
    cleaned = _WHITESPACE_RE.sub(" ", cleaned).strip()

    tokens = cleaned.split(" ")
    if len(tokens) >= 2:
        for count in (3, 2):
            candidate = " ".join(tokens[:count])
            if 5 <= len(candidate) <= 30:
                return candidate
    if len(cleaned) > 20:
        return cleaned[:20]
    return cleaned[:30]


def parse_price(text: Optional[str]) -> int:
    """Parse a displayed price such as ``¥1,200`` into yen."""
    digits = _NON_DIGIT_RE.sub("", text or "")
    if not digits:
        raise ValidationError(f"no digits in price text {text!r}")
    price = int(digits)
    if price <= 0:
        raise ValidationError(f"non-positive price {price}")
    return price


def parse_product_id(id_or_href: str) -> str:
    """Return the product id from an item link or a bare id."""
    product_id = id_or_href.rstrip("/").split("/")[-1].split("?")[0]
    if not product_id:
        raise ValidationError(f"no product id in {id_or_href!r}")
    return product_id


def build_url(source: str, id_or_href: str, product_id: str) -> str:
    if id_or_href.startswith("http"):
        return id_or_href
    origin = ORIGINS[source]
    if id_or_href.startswith("/"):
        return origin + id_or_href
    return f"{origin}/item/{product_id}"


def normalize(source: str, raw: RawExtraction) -> ListingObservation:
    """Validate a raw extraction.

    Raises ``ValidationError`` when the title, price or id is missing or
    the price does not parse to a positive amount.  Callers skip such
    items and carry on with the rest of the page.
    """
    if source not in ORIGINS:
        raise ValidationError(f"unknown source {source!r}")
    title = (raw.raw_title or "").strip()
    if not title:
        raise ValidationError("missing title")
    if not raw.raw_price_text:
        raise ValidationError("missing price")
    if not raw.id_or_href or not raw.id_or_href.strip():
        raise ValidationError("missing product id")

    price = parse_price(raw.raw_price_text)
    href = raw.id_or_href.strip()
    product_id = parse_product_id(href)
    return ListingObservation(
        source=source,
        product_id=product_id,
        title=title,
        price=price,
        category=extract_category(title),
        status=ListingStatus.SOLD if raw.sold_flag else ListingStatus.ON_SALE,
        url=build_url(source, href, product_id),
    )
