"""
Tests for the FastAPI preview endpoints.
"""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

from fastapi.testclient import TestClient

from furima_watch_app.app import app
from furima_watch_app.ledger import Ledger
from furima_watch_app.models import ListingObservation, ListingStatus, utcnow
from furima_watch_app.settings import Settings, get_settings


def test_health() -> None:
    client = TestClient(app)
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_dry_run_renders_email() -> None:
    app.dependency_overrides[get_settings] = lambda: Settings(
        BARGAIN_STATISTIC="median", MIN_COHORT_SIZE=10, DISCOUNT_THRESHOLD=0.75, PRICE_FLOOR=500
    )
    try:
        response = TestClient(app).post("/dry-run")
    finally:
        app.dependency_overrides.clear()
    body = response.json()
    assert body["subject"] == "Mercari - 40% OFF"
    assert body["payload"]["price"] == 600
    assert "&yen;600" in body["html"]


def test_dry_run_without_bargain() -> None:
    app.dependency_overrides[get_settings] = lambda: Settings(PRICE_FLOOR=700)
    try:
        response = TestClient(app).post("/dry-run")
    finally:
        app.dependency_overrides.clear()
    assert response.json() == {"message": "No bargains in dry run"}


def test_bargains_lists_ledger_candidates(tmp_path: Path) -> None:
    db_path = str(tmp_path / "watch.db")
    ledger = Ledger(db_path)
    now = utcnow()
    for i, price in enumerate([1000] * 10 + [600]):
        ledger.upsert(
            ListingObservation(
                source="yahoo",
                product_id=f"z{i}",
                title="ゲーム ソフト",
                price=price,
                category="ゲーム ソフト",
                status=ListingStatus.ON_SALE,
                url=f"https://paypayfleamarket.yahoo.co.jp/item/z{i}",
            ),
            now=now - timedelta(minutes=i),
        )
    app.dependency_overrides[get_settings] = lambda: Settings(
        SQLITE_DB=db_path, BARGAIN_STATISTIC="median", MIN_COHORT_SIZE=10, DISCOUNT_THRESHOLD=0.75, PRICE_FLOOR=500
    )
    try:
        response = TestClient(app).get("/bargains")
    finally:
        app.dependency_overrides.clear()
    payload = response.json()
    assert [item["product_id"] for item in payload] == ["z10"]
    assert payload[0]["discount_percent"] == 40
    assert payload[0]["source"] == "yahoo"
