"""Tests for the Insights FastAPI router.

Uses the FastAPI TestClient with an InsightService over an in-memory
record source and a fixed clock.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from datetime import datetime, timedelta, timezone

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from insights.src import server as insights_server
from insights.src.models import FeedbackRecord
from insights.src.server import configure, router
from insights.src.service import InMemoryRecordSource, InsightService

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def _make_record(
    record_id: str,
    themes: list[str],
    sentiment: str = "negative",
    source: str = "github",
    hours_ago: float = 2,
) -> FeedbackRecord:
    ingested = NOW - timedelta(hours=hours_ago)
    return FeedbackRecord(
        id=record_id,
        source=source,
        content=f"feedback {record_id}",
        created_at=ingested,
        ingested_at=ingested,
        sentiment=sentiment,
        themes=themes,
    )


class BrokenSource(InMemoryRecordSource):
    """Record source whose reads always fail."""

    def fetch_feedback(self, filters, limit=None, offset=0, now=None):
        raise RuntimeError("database is locked")


class LockedSource(InMemoryRecordSource):
    """Record source backed by an unavailable database."""

    def fetch_feedback(self, filters, limit=None, offset=0, now=None):
        raise sqlite3.OperationalError("database is locked")


@pytest.fixture
def app() -> FastAPI:
    """Create a FastAPI app with the insights router mounted."""
    test_app = FastAPI()
    test_app.include_router(router, prefix="/api/insights")
    return test_app


@pytest.fixture
def client(app: FastAPI) -> Iterator[TestClient]:
    """TestClient wired to a service over a small corpus."""
    records = [
        _make_record("a", ["billing"]),
        _make_record("b", ["billing"], hours_ago=3),
        _make_record("c", ["billing", "docs"], source="x", sentiment="positive"),
        _make_record("d", ["docs"], hours_ago=30, sentiment="neutral"),
    ]
    configure(InsightService(InMemoryRecordSource(records), clock=lambda: NOW))
    yield TestClient(app)
    insights_server._state["service"] = None


@pytest.fixture
def bare_client(app: FastAPI) -> TestClient:
    """TestClient with no service configured."""
    insights_server._state["service"] = None
    return TestClient(app)


class TestHealth:
    """Tests for the health endpoint."""

    def test_configured(self, client: TestClient) -> None:
        resp = client.get("/api/insights/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "version": "0.1.0"}

    def test_not_configured(self, bare_client: TestClient) -> None:
        assert bare_client.get("/api/insights/health").json()["status"] == "not_configured"

    @pytest.mark.parametrize(
        "path", ["themes", "trend", "heatmap", "sankey", "recommended", "deltas"]
    )
    def test_endpoints_return_503_without_service(
        self, bare_client: TestClient, path: str
    ) -> None:
        assert bare_client.get(f"/api/insights/{path}").status_code == 503


class TestViews:
    """Tests for the analytics endpoints."""

    def test_themes(self, client: TestClient) -> None:
        data = client.get("/api/insights/themes").json()
        assert data["themes"] == [
            {"theme": "billing", "count": 3},
            {"theme": "docs", "count": 2},
        ]
        assert data["window_days"] == 7
        assert data["total_items_considered"] == 4

    def test_themes_limit(self, client: TestClient) -> None:
        data = client.get("/api/insights/themes", params={"limit": 1}).json()
        assert [t["theme"] for t in data["themes"]] == ["billing"]

    def test_themes_limit_validated(self, client: TestClient) -> None:
        assert client.get("/api/insights/themes", params={"limit": 0}).status_code == 422

    def test_filters_from_query(self, client: TestClient) -> None:
        data = client.get("/api/insights/themes", params={"source": "x"}).json()
        assert data["total_items_considered"] == 1

    def test_unparseable_days_uses_default(self, client: TestClient) -> None:
        data = client.get("/api/insights/trend", params={"days": "soon"}).json()
        assert data["window_days"] == 7
        assert len(data["points"]) == 8

    def test_heatmap(self, client: TestClient) -> None:
        data = client.get("/api/insights/heatmap").json()
        assert data["sentiments"] == ["negative", "neutral", "positive", "unknown"]
        assert data["matrix"][0] == [2, 0, 1, 0]

    def test_sankey(self, client: TestClient) -> None:
        data = client.get("/api/insights/sankey").json()
        assert data["nodes"][0] == {"name": "x"}
        assert {"source": "github", "target": "billing", "value": 2} in data["links"]

    def test_deltas(self, client: TestClient) -> None:
        items = client.get("/api/insights/deltas").json()["items"]
        assert items[0]["kind"] == "spike"
        assert items[0]["label"] == "🔺 Billing feedback increased (+3)"


class TestRecommended:
    """Tests for focus recommendations and the active flag."""

    def test_items(self, client: TestClient) -> None:
        items = client.get("/api/insights/recommended").json()["items"]
        assert items[0]["id"] == "focus-billing"
        assert items[0]["signal"] in {"low", "medium", "high"}
        assert all(item["active"] is False for item in items)

    def test_active_flag_follows_filters(self, client: TestClient) -> None:
        params = {"theme": "billing", "sentiment": "negative", "source": "github"}
        items = client.get("/api/insights/recommended", params=params).json()["items"]
        assert items[0]["theme"] == "billing"
        assert items[0]["active"] is True


class TestErrors:
    """Tests for internal error handling."""

    def test_source_failure_returns_500(self, app: FastAPI) -> None:
        configure(InsightService(BrokenSource(), clock=lambda: NOW))
        try:
            resp = TestClient(app).get("/api/insights/themes")
        finally:
            insights_server._state["service"] = None
        assert resp.status_code == 500
        detail = resp.json()["detail"]
        assert detail["error_code"] == "INSIGHT_999"
        assert detail["component"] == "insights"
        assert "database is locked" not in detail["message"]

    def test_unavailable_store_is_reported(self, app: FastAPI) -> None:
        configure(InsightService(LockedSource(), clock=lambda: NOW))
        try:
            resp = TestClient(app).get("/api/insights/recommended")
        finally:
            insights_server._state["service"] = None
        assert resp.status_code == 500
        assert resp.json()["detail"]["error_code"] == "INSIGHT_001"
