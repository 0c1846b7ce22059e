"""
Bargain detection against recent peer pricing.

Listings are grouped into cohorts by ``(source, category)``.  For every
cohort with enough recent listings a reference price is computed (mean or
median of the positive prices) and on-sale listings priced clearly below it
are reported as bargain candidates.
"""

from __future__ import annotations

import logging
import math
import statistics
from datetime import datetime
from typing import List, Optional, Sequence

from .ledger import Ledger
from .models import BargainCandidate, Listing, ListingStatus
from .settings import BargainPolicy

logger = logging.getLogger(__name__)


def reference_price(prices: Sequence[int], statistic: str) -> Optional[float]:
    """Return the mean or median of the positive prices, or None if there are none.

    The median of an even number of prices is the average of the two middle
    values.
    """
    positive = [p for p in prices if p > 0]
    if not positive:
        return None
    if statistic == "mean":
        return float(statistics.mean(positive))
    if statistic == "median":
        return float(statistics.median(positive))
    raise ValueError(f"Unknown cohort statistic: {statistic}")


def bargain_cutoff(reference: float, policy: BargainPolicy) -> float:
    return reference * policy.discount_threshold


def is_bargain(price: float, status: ListingStatus, cutoff: float, policy: BargainPolicy) -> bool:
    """Both bounds are strict: a price equal to the cutoff or the floor does not qualify."""
    return status is ListingStatus.ON_SALE and price < cutoff and price > policy.price_floor


def discount_percent(price: float, reference: float) -> int:
    """Percentage below the reference price, rounded half up."""
    return int(math.floor((1 - price / reference) * 100 + 0.5))


def find_bargains(cohort: Sequence[Listing], policy: BargainPolicy) -> List[BargainCandidate]:
    """Evaluate one cohort; returns an empty list for undersized cohorts."""
    if len(cohort) < policy.min_cohort_size:
        return []
    reference = reference_price([listing.price for listing in cohort], policy.statistic)
    if reference is None:
        return []
    cutoff = bargain_cutoff(reference, policy)
    return [
        BargainCandidate(
            listing=listing,
            reference_price=reference,
            cutoff=cutoff,
            discount_percent=discount_percent(listing.price, reference),
        )
        for listing in cohort
        if is_bargain(listing.price, listing.status, cutoff, policy)
    ]


class BargainDetector:
    """Scan every cohort in the ledger for underpriced listings."""

    def __init__(self, ledger: Ledger, policy: BargainPolicy) -> None:
        self.ledger = ledger
        self.policy = policy

    def detect(self, now: Optional[datetime] = None) -> List[BargainCandidate]:
        candidates: List[BargainCandidate] = []
        for source, category in self.ledger.distinct_cohorts():
            cohort = self.ledger.query_cohort(source, category, self.policy.cohort_window_days, now)
            if len(cohort) < self.policy.min_cohort_size:
                logger.debug(
                    "Skipping cohort %s/%s: %d listings, need %d",
                    source,
                    category,
                    len(cohort),
                    self.policy.min_cohort_size,
                )
                continue
            found = find_bargains(cohort, self.policy)
            if found:
                logger.info(
                    "Cohort %s/%s: %d bargains below %.0f yen (%s %.0f)",
                    source,
                    category,
                    len(found),
                    found[0].cutoff,
                    self.policy.statistic,
                    found[0].reference_price,
                )
            candidates.extend(found)
        return candidates
