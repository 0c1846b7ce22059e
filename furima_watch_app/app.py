"""
FastAPI application exposing health check and read-only previews.

The API provides a health endpoint, a dry-run route that renders the
bargain e-mail for a hard-coded sample cohort without sending anything,
and a route listing the bargains currently present in the ledger.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List

from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse

from .bargains import BargainDetector, find_bargains
from .ledger import Ledger
from .mailer import format_bargain_email
from .models import BargainCandidate, Listing, ListingStatus
from .settings import Settings, get_settings

app = FastAPI(title="Furima Bargain Watch")


def _candidate_payload(candidate: BargainCandidate) -> Dict[str, Any]:
    listing = candidate.listing
    return {
        "source": listing.source,
        "product_id": listing.product_id,
        "title": listing.title,
        "category": listing.category,
        "url": listing.url,
        "price": listing.price,
        "reference_price": candidate.reference_price,
        "cutoff": candidate.cutoff,
        "discount_percent": candidate.discount_percent,
    }


@app.get("/health")
async def health() -> Dict[str, str]:
    """Return a simple health indicator."""
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@app.post("/dry-run")
async def dry_run(settings: Settings = Depends(get_settings)) -> JSONResponse:
    """Evaluate a hard-coded sample cohort with the configured policy.

    Returns the e-mail that would be sent for the first bargain found.
    """
    now = datetime.now(timezone.utc)
    prices = [1000, 1000, 1000, 1000, 1000, 1000, 1000, 1000, 1000, 600]
    cohort: List[Listing] = [
        Listing(
            source="mercari",
            product_id=f"dry{i}",
            title="ゲーム機 本体 セット",
            price=price,
            category="ゲーム機 本体",
            status=ListingStatus.ON_SALE,
            url=f"https://jp.mercari.com/item/dry{i}",
            created_at=now,
            updated_at=now,
        )
        for i, price in enumerate(prices, start=1)
    ]
    bargains = find_bargains(cohort, settings.bargain_policy())
    if not bargains:
        return JSONResponse(content={"message": "No bargains in dry run"})
    subject, body = format_bargain_email(bargains[0])
    return JSONResponse(
        content={"subject": subject, "html": body, "payload": _candidate_payload(bargains[0])}
    )


@app.get("/bargains")
def bargains(settings: Settings = Depends(get_settings)) -> List[Dict[str, Any]]:
    """List bargains currently present in the ledger without notifying them."""
    detector = BargainDetector(Ledger(settings.SQLITE_DB), settings.bargain_policy())
    return [_candidate_payload(candidate) for candidate in detector.detect()]
