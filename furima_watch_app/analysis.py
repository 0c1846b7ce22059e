"""
Chunked market analysis with an external summarizer.

The orchestrator reads the recent history from the ledger, splits it into
chunks small enough for one summarizer request, submits the chunks one at
a time and, when there was more than one, asks the summarizer to merge the
partial results.  The final text is written to ``analysis-YYYY-MM-DD.md``.

Only one request is ever in flight.  Between chunks the orchestrator sleeps
for ``inter_chunk_delay`` seconds to stay under the provider's rate limit.
A rate-limited chunk is retried after ``rate_limit_backoff`` seconds, at most
``max_retries_per_chunk`` times; any other failure aborts the analysis.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, TypeVar

from .errors import FatalConfigError, RateLimitError
from .ledger import Ledger
from .models import Listing, ListingStatus, utcnow
from .prompt import CHUNK_NOTE, REDUCE_PROMPT, placeholder_hint, render_prompt
from .settings import AnalysisConfig

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4

T = TypeVar("T")


class Summarizer(Protocol):
    def generate(self, model: str, prompt: str) -> str: ...


@dataclass(frozen=True)
class AnalysisSummary:
    total_items: int
    sold_items: int
    on_sale_items: int
    categories: List[str]


def summarize(rows: Sequence[Listing], max_categories: int) -> AnalysisSummary:
    categories: List[str] = []
    seen = set()
    for row in rows:
        if row.category not in seen:
            seen.add(row.category)
            categories.append(row.category)
    return AnalysisSummary(
        total_items=len(rows),
        sold_items=sum(1 for row in rows if row.status is ListingStatus.SOLD),
        on_sale_items=sum(1 for row in rows if row.status is ListingStatus.ON_SALE),
        categories=categories[:max_categories],
    )


def partition(rows: Sequence[T], chunk_size: int) -> List[List[T]]:
    """Split ``rows`` into consecutive chunks; the last one may be shorter."""
    return [list(rows[i : i + chunk_size]) for i in range(0, len(rows), chunk_size)]


def estimate_tokens(text: str) -> int:
    return len(text) // CHARS_PER_TOKEN


def sample_row(listing: Listing) -> Dict[str, Any]:
    hours = listing.hours_to_sell
    return {
        "category": listing.category,
        "status": listing.status.value,
        "price": listing.price,
        "title": listing.title,
        "hours_to_sell": round(hours, 1) if hours is not None else None,
        "created_at": listing.created_at.strftime("%Y-%m-%d %H:%M"),
    }


def chunk_section(index: int, count: int, text: str) -> str:
    return f"\n\n## Chunk {index}/{count} analysis\n\n{text}\n\n---\n"


def report_filename(day: datetime) -> str:
    return f"analysis-{day.strftime('%Y-%m-%d')}.md"


class AnalysisOrchestrator:
    """Drive the chunk -> summarize -> reduce conversation for one report."""

    def __init__(
        self,
        ledger: Ledger,
        summarizer: Summarizer,
        config: AnalysisConfig,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.ledger = ledger
        self.summarizer = summarizer
        self.config = config
        self.sleep = sleep

    def build_prompts(self, summary: AnalysisSummary, chunks: List[List[Listing]]) -> List[str]:
        template = self.config.prompt_template or ""
        sample_total = sum(len(chunk) for chunk in chunks)
        prompts = []
        for i, chunk in enumerate(chunks):
            start = i * self.config.chunk_size + 1
            position = {
                "chunk_index": i + 1,
                "chunk_count": len(chunks),
                "chunk_start": start,
                "chunk_end": start + len(chunk) - 1,
            }
            values: Dict[str, Any] = {
                "total_items": summary.total_items,
                "sold_items": summary.sold_items,
                "on_sale_items": summary.on_sale_items,
                "categories_count": len(summary.categories),
                "categories": ", ".join(summary.categories),
                "sample_data": json.dumps([sample_row(row) for row in chunk], ensure_ascii=False, indent=2),
                "sample_size": len(chunk),
            }
            values.update(position)
            prompts.append(render_prompt(template, values) + CHUNK_NOTE.format(sample_total=sample_total, **position))
        return prompts

    def _submit(self, prompt: str, label: str) -> str:
        retries = 0
        while True:
            started = time.monotonic()
            try:
                text = self.summarizer.generate(self.config.model, prompt)
            except RateLimitError as exc:
                if retries >= self.config.max_retries_per_chunk:
                    logger.error("%s still rate limited after %d retries", label, retries)
                    raise
                retries += 1
                logger.warning(
                    "%s rate limited (%s); retrying in %.0fs", label, exc, self.config.rate_limit_backoff
                )
                self.sleep(self.config.rate_limit_backoff)
                continue
            logger.info("%s done in %.1fs", label, time.monotonic() - started)
            return text

    def run(self, now: Optional[datetime] = None) -> Optional[Path]:
        """Produce today's report; returns its path, or None if nothing was written."""
        if not self.config.prompt_template:
            raise FatalConfigError(["GEMINI_PROMPT"], placeholder_hint())
        now = now or utcnow()

        rows = self.ledger.query_window(self.config.window_days, now)
        logger.info("Loaded %d listings from the last %d days", len(rows), self.config.window_days)
        if not rows:
            logger.info("No data to analyse; skipping report")
            return None

        summary = summarize(rows, self.config.max_categories)
        logger.info(
            "Totals: %d listings, %d sold, %d on sale, %d categories",
            summary.total_items,
            summary.sold_items,
            summary.on_sale_items,
            len(summary.categories),
        )
        sample = rows if self.config.sample_cap == 0 else rows[: self.config.sample_cap]
        chunks = partition(sample, self.config.chunk_size)
        logger.info("Split %d sample rows into %d chunks", len(sample), len(chunks))

        prompts = self.build_prompts(summary, chunks)
        if self.config.max_chunk_tokens:
            for i, prompt in enumerate(prompts, start=1):
                estimate = estimate_tokens(prompt)
                if estimate > self.config.max_chunk_tokens:
                    logger.warning(
                        "Chunk %d is about %d tokens, above the %d token ceiling; "
                        "lower CHUNK_SIZE or SAMPLE_SIZE. Analysis aborted",
                        i,
                        estimate,
                        self.config.max_chunk_tokens,
                    )
                    return None

        outputs: List[str] = []
        for i, prompt in enumerate(prompts):
            logger.info("Submitting chunk %d/%d (%d rows)", i + 1, len(prompts), len(chunks[i]))
            outputs.append(self._submit(prompt, f"Chunk {i + 1}/{len(prompts)}"))
            if i < len(prompts) - 1:
                logger.info("Waiting %.0fs before the next chunk", self.config.inter_chunk_delay)
                self.sleep(self.config.inter_chunk_delay)

        if len(outputs) == 1:
            final_text = outputs[0]
        else:
            combined = "".join(chunk_section(i + 1, len(outputs), text) for i, text in enumerate(outputs))
            logger.info("Merging %d chunk results", len(outputs))
            final_text = self._submit(REDUCE_PROMPT.format(chunk_count=len(outputs), combined=combined), "Merge")

        return self.write_report(final_text, now)

    def write_report(self, text: str, day: datetime) -> Path:
        output_dir = Path(self.config.output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        path = output_dir / report_filename(day)
        date = day.strftime("%Y-%m-%d")
        path.write_text(f"# Marketplace analysis report - {date}\n\n{text}\n", encoding="utf-8")
        logger.info("Saved report to %s", path)
        return path
