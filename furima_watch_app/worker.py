"""
Background worker to scrape marketplaces, flag bargains and send alerts.

This module contains the polling loop and the one-shot commands:

``scrape``   fetch every keyword from every enabled marketplace into the ledger
``detect``   find bargains in the ledger and notify them
``analyze``  write today's market analysis report
``cleanup``  purge listings past the retention horizon
``once``     scrape followed by detect
``run``      repeat ``once`` every ``POLL_INTERVAL`` minutes (the default)

Searches run strictly one after another with ``SCRAPE_DELAY_SECONDS``
between them to stay polite to the marketplaces.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Protocol, Sequence, Tuple

from .analysis import AnalysisOrchestrator
from .bargains import BargainDetector
from .errors import ValidationError, WatchError
from .ledger import Ledger
from .mailer import EmailNotifier
from .mercari_fetcher import MercariFetcher
from .models import ListingStatus, RawExtraction
from .normalizer import normalize
from .notification_gate import NotificationGate, Notifier
from .notification_log import NotificationLog
from .settings import Settings, get_settings
from .summarizer import GeminiSummarizer
from .yahoo_fetcher import YahooFetcher

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="[%(asctime)s] %(levelname)s %(message)s",
    )


class Fetcher(Protocol):
    source: str
    statuses: Tuple[ListingStatus, ...]

    async def fetch_listings(self, keyword: str, status: ListingStatus = ...) -> List[RawExtraction]: ...


@dataclass(frozen=True)
class ScrapeTask:
    source: str
    keyword: str
    status: ListingStatus


def select_keywords(settings: Settings, ledger: Ledger) -> List[str]:
    """Pick search keywords: explicit list, then sales history, then defaults."""
    keywords = settings.keyword_list()
    if keywords:
        logger.info("Keywords from KEYWORDS: %s", ", ".join(keywords))
        return keywords
    if settings.AUTO_KEYWORD:
        top = ledger.top_sold_categories("mercari")
        for category, sold_count, avg_price in top:
            logger.info("  - %s: %d sold (avg %d yen)", category, sold_count, round(avg_price))
        if top:
            keywords = [category for category, _, _ in top]
            logger.info("Keywords from sales history: %s", ", ".join(keywords))
            return keywords
    keywords = settings.default_keyword_list()
    logger.info("Using default keywords: %s", ", ".join(keywords))
    return keywords


def build_fetchers(settings: Settings) -> Dict[str, Fetcher]:
    fetchers: Dict[str, Fetcher] = {}
    if settings.ENABLE_MERCARI:
        fetchers["mercari"] = MercariFetcher(settings)
    if settings.ENABLE_YAHOO:
        fetchers["yahoo"] = YahooFetcher(settings)
    return fetchers


def build_tasks(keywords: Sequence[str], fetchers: Dict[str, Fetcher]) -> List[ScrapeTask]:
    """Order the searches keyword by keyword, source by source."""
    return [
        ScrapeTask(source, keyword, status)
        for keyword in keywords
        for source, fetcher in fetchers.items()
        for status in fetcher.statuses
    ]


async def ingest(task: ScrapeTask, fetcher: Fetcher, ledger: Ledger) -> int:
    """Fetch one search and upsert every valid item; returns the count stored."""
    raw_items = await fetcher.fetch_listings(task.keyword, task.status)
    stored = 0
    for raw in raw_items:
        try:
            observation = normalize(task.source, raw)
        except ValidationError as exc:
            logger.debug("[%s] Skipping item for '%s': %s", task.source, task.keyword, exc)
            continue
        ledger.upsert(observation)
        stored += 1
    logger.info("[%s] '%s' (%s): stored %d of %d items", task.source, task.keyword, task.status.value, stored, len(raw_items))
    return stored


async def scrape(
    settings: Settings,
    ledger: Ledger,
    fetchers: Optional[Dict[str, Fetcher]] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> int:
    """Run every search task in order, pausing between them."""
    if fetchers is None:
        fetchers = build_fetchers(settings)
    tasks = build_tasks(select_keywords(settings, ledger), fetchers)
    total = 0
    for task in tasks:
        total += await ingest(task, fetchers[task.source], ledger)
        await sleep(settings.SCRAPE_DELAY_SECONDS)
    logger.info("Scrape finished: %d items over %d searches", total, len(tasks))
    return total


def detect_and_notify(settings: Settings, ledger: Ledger, notifier: Optional[Notifier] = None) -> int:
    """Notify every bargain currently in the ledger; returns messages sent."""
    detector = BargainDetector(ledger, settings.bargain_policy())
    candidates = detector.detect()
    logger.info("Found %d bargain candidates", len(candidates))
    log = NotificationLog(settings.SQLITE_DB, cooldown=timedelta(hours=settings.COOLDOWN_HOURS))
    gate = NotificationGate(log, notifier or EmailNotifier(settings))
    return gate.process(candidates)


def analyze(settings: Settings, ledger: Optional[Ledger] = None) -> Optional[Path]:
    settings.require_analysis()
    orchestrator = AnalysisOrchestrator(
        ledger or Ledger(settings.SQLITE_DB), GeminiSummarizer(settings), settings.analysis_config()
    )
    return orchestrator.run()


def cleanup(settings: Settings, ledger: Optional[Ledger] = None) -> int:
    return (ledger or Ledger(settings.SQLITE_DB)).purge_older_than(settings.RETENTION_DAYS)


async def run_once(settings: Settings) -> None:
    """Perform a single scrape-and-notify cycle."""
    ledger = Ledger(settings.SQLITE_DB)
    await scrape(settings, ledger)
    detect_and_notify(settings, ledger)


async def start_worker(settings: Settings) -> None:
    """Continuously run polling cycles at the configured interval."""
    interval_seconds = max(settings.POLL_INTERVAL, 1) * 60
    while True:
        await run_once(settings)
        await asyncio.sleep(interval_seconds)


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Entry point for the worker process."""
    parser = argparse.ArgumentParser(prog="furima-watch", description=__doc__.splitlines()[1])
    parser.add_argument(
        "command",
        nargs="?",
        default="run",
        choices=["run", "once", "scrape", "detect", "analyze", "cleanup"],
    )
    args = parser.parse_args(argv)
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)

    try:
        if args.command == "run":
            asyncio.run(start_worker(settings))
        elif args.command == "once":
            asyncio.run(run_once(settings))
        elif args.command == "scrape":
            asyncio.run(scrape(settings, Ledger(settings.SQLITE_DB)))
        elif args.command == "detect":
            detect_and_notify(settings, Ledger(settings.SQLITE_DB))
        elif args.command == "analyze":
            analyze(settings)
        elif args.command == "cleanup":
            cleanup(settings)
    except KeyboardInterrupt:
        logger.info("Worker stopped by user")
        sys.exit(0)
    except WatchError as exc:
        logger.error("%s failed: %s", args.command, exc)
        sys.exit(1)


if __name__ == "__main__":
    main()
