"""
Yahoo! Flea Market (PayPay Flea Market) fetcher.

One search page lists both on-sale and sold items; sold ones carry a sold
badge, which is read per item.  Only the first 30 results are taken.
"""

from __future__ import annotations

import logging
from typing import Any, List
from urllib.parse import quote

from playwright.async_api import Error as PlaywrightError

from .models import ListingStatus, RawExtraction
from .page_fetcher import attribute_of, first_match, open_page, text_of
from .settings import Settings

logger = logging.getLogger(__name__)

TITLE_STRATEGIES = [
    text_of('[class*="Product_name"]'),
    attribute_of("img", "alt"),
]
PRICE_STRATEGIES = [
    text_of('[class*="Product_price"]'),
    text_of('[class*="price"]'),
]
LINK_STRATEGIES = [
    attribute_of("a", "href"),
]
SOLD_SELECTOR = '[class*="sold"]'


async def is_sold(element: Any) -> bool:
    return await element.query_selector(SOLD_SELECTOR) is not None


class YahooFetcher:
    """Client for fetching listings from Yahoo! Flea Market search."""

    source = "yahoo"
    statuses = (ListingStatus.ON_SALE,)
    SEARCH_URL = "https://paypayfleamarket.yahoo.co.jp/search/{keyword}"
    ITEM_SELECTOR = '[class*="Product_item"]'
    MAX_ITEMS = 30

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    async def fetch_listings(self, keyword: str, status: ListingStatus = ListingStatus.ON_SALE) -> List[RawExtraction]:
        """Return raw extractions for one keyword.

        ``status`` is accepted for interface parity with the Mercari fetcher;
        the sold state is read from each item instead.
        """
        url = self.SEARCH_URL.format(keyword=quote(keyword))
        try:
            async with open_page(self.settings) as page:
                await page.goto(url, wait_until="networkidle", timeout=self.settings.PAGE_TIMEOUT_MS)
                await page.wait_for_selector(self.ITEM_SELECTOR, timeout=10000)
                elements = await page.query_selector_all(self.ITEM_SELECTOR)
                items = await self._extract(elements[: self.MAX_ITEMS])
        except PlaywrightError as exc:
            logger.error("[yahoo] Error fetching '%s': %s", keyword, exc)
            return []
        logger.info("[yahoo] '%s': %d items", keyword, len(items))
        return items

    async def _extract(self, elements: List[Any]) -> List[RawExtraction]:
        items: List[RawExtraction] = []
        for element in elements:
            items.append(
                RawExtraction(
                    raw_title=await first_match(element, TITLE_STRATEGIES),
                    raw_price_text=await first_match(element, PRICE_STRATEGIES),
                    id_or_href=await first_match(element, LINK_STRATEGIES),
                    sold_flag=await is_sold(element),
                )
            )
        return items
