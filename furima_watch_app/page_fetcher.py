"""
Shared pieces of the Playwright-based marketplace fetchers.

Search result markup changes often, so every field is read through an
ordered list of extraction strategies.  The first strategy that yields a
non-empty value wins; later ones are only fallbacks.  Strategies work on
anything that behaves like a Playwright ``ElementHandle``.
"""

from __future__ import annotations

import logging
import re
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Sequence

from playwright.async_api import Page, async_playwright

from .settings import Settings

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"

Strategy = Callable[[Any], Awaitable[Optional[str]]]


def _clean(value: Optional[str], strip_pattern: Optional[str] = None) -> Optional[str]:
    if value is None:
        return None
    if strip_pattern:
        value = re.sub(strip_pattern, "", value)
    value = value.strip()
    return value or None


def text_of(selector: str) -> Strategy:
    """Text content of the first descendant matching ``selector``."""

    async def strategy(element: Any) -> Optional[str]:
        node = await element.query_selector(selector)
        if node is None:
            return None
        return _clean(await node.text_content())

    return strategy


def attribute_of(selector: str, name: str, strip_pattern: Optional[str] = None) -> Strategy:
    """Attribute ``name`` of the first descendant matching ``selector``."""

    async def strategy(element: Any) -> Optional[str]:
        node = await element.query_selector(selector)
        if node is None:
            return None
        return _clean(await node.get_attribute(name), strip_pattern)

    return strategy


def own_attribute(name: str, strip_pattern: Optional[str] = None) -> Strategy:
    """Attribute ``name`` of the element itself."""

    async def strategy(element: Any) -> Optional[str]:
        return _clean(await element.get_attribute(name), strip_pattern)

    return strategy


async def first_match(element: Any, strategies: Sequence[Strategy]) -> Optional[str]:
    """Return the first non-empty value produced by ``strategies``."""
    for strategy in strategies:
        value = await strategy(element)
        if value:
            return value
    return None


async def auto_scroll(page: Page, max_scrolls: int = 20, distance: int = 500) -> None:
    """Scroll down step by step so lazily loaded results are rendered."""
    for _ in range(max_scrolls):
        at_bottom = await page.evaluate(
            "(d) => { window.scrollBy(0, d); return window.innerHeight + window.scrollY >= document.body.scrollHeight; }",
            distance,
        )
        await page.wait_for_timeout(500)
        if at_bottom:
            break
    await page.wait_for_timeout(2000)


@asynccontextmanager
async def open_page(settings: Settings) -> AsyncIterator[Page]:
    """Launch a headless Chromium page with the desktop user agent."""
    async with async_playwright() as p:
        browser = await p.chromium.launch(
            headless=settings.HEADLESS, args=["--no-sandbox", "--disable-setuid-sandbox"]
        )
        try:
            context = await browser.new_context(user_agent=USER_AGENT)
            page = await context.new_page()
            yield page
        finally:
            await browser.close()
