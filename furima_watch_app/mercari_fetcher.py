"""
Mercari marketplace fetcher.

Mercari has no public search API, so this fetcher renders the search page
with Playwright, scrolls to load more results and reads each item link.
On-sale and sold items are separate searches; the caller says which one it
wants.
"""

from __future__ import annotations

import logging
from typing import List
from urllib.parse import quote

from playwright.async_api import Error as PlaywrightError

from .models import ListingStatus, RawExtraction
from .page_fetcher import attribute_of, auto_scroll, first_match, open_page, own_attribute, text_of
from .settings import Settings

logger = logging.getLogger(__name__)

TITLE_STRATEGIES = [
    text_of('[data-testid="thumbnail-item-name"]'),
    own_attribute("aria-label", r"の画像.*"),
    attribute_of("img", "alt", r"のサムネイル$"),
]
PRICE_STRATEGIES = [
    text_of('[class*="number"]'),
    text_of('[class*="price"]'),
]


class MercariFetcher:
    """Client for fetching listings from the Mercari search page."""

    source = "mercari"
    statuses = (ListingStatus.ON_SALE, ListingStatus.SOLD)
    SEARCH_URL = "https://jp.mercari.com/search?keyword={keyword}"
    ITEM_SELECTOR = 'a[href^="/item/m"]'

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def search_url(self, keyword: str, status: ListingStatus) -> str:
        url = self.SEARCH_URL.format(keyword=quote(keyword))
        if status is ListingStatus.SOLD:
            url += "&status=sold"
        return url

    async def fetch_listings(self, keyword: str, status: ListingStatus = ListingStatus.ON_SALE) -> List[RawExtraction]:
        """Return raw extractions for one keyword and sale status.

        Navigation failures are logged and produce an empty list, so a
        single broken search does not stop the rest of the run.
        """
        url = self.search_url(keyword, status)
        try:
            async with open_page(self.settings) as page:
                await page.goto(url, wait_until="networkidle", timeout=self.settings.PAGE_TIMEOUT_MS)
                await auto_scroll(page)
                links = await page.query_selector_all(self.ITEM_SELECTOR)
                items = await self._extract(links, status)
        except PlaywrightError as exc:
            logger.error("[mercari] Error fetching '%s' (%s): %s", keyword, status.value, exc)
            return []
        logger.info("[mercari] '%s' (%s): %d items", keyword, status.value, len(items))
        return items

    async def _extract(self, links: List, status: ListingStatus) -> List[RawExtraction]:
        items: List[RawExtraction] = []
        seen = set()
        for link in links:
            href = await link.get_attribute("href")
            if not href or href in seen:
                continue
            seen.add(href)
            items.append(
                RawExtraction(
                    raw_title=await first_match(link, TITLE_STRATEGIES),
                    raw_price_text=await first_match(link, PRICE_STRATEGIES),
                    id_or_href=href,
                    sold_flag=status is ListingStatus.SOLD,
                )
            )
        return items
