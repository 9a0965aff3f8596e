"""Tests for the Intake FastAPI router.

Uses the FastAPI TestClient with an in-memory FeedbackStorage and the
offline lexicon enricher.
"""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterator
from concurrent.futures import ThreadPoolExecutor

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from intake.src import server as intake_server
from intake.src.enrichment import EnrichmentResult, LexiconEnricher
from intake.src.pipeline import IntakePipeline
from intake.src.server import configure, router
from intake.src.storage import FeedbackStorage
from shared.hardening import RetryConfig


class DownEnricher:
    """Enricher whose provider is always unreachable."""

    def enrich(self, text: str) -> EnrichmentResult:
        raise ConnectionError("provider unreachable")


class GatedEnricher:
    """Enricher that blocks until the test releases it."""

    def __init__(self) -> None:
        self.started = threading.Event()
        self.release = threading.Event()
        self.finished = threading.Event()

    def enrich(self, text: str) -> EnrichmentResult:
        self.started.set()
        self.release.wait(timeout=5)
        self.finished.set()
        return LexiconEnricher().enrich(text)


@pytest.fixture
def app() -> FastAPI:
    """Create a FastAPI app with the intake router mounted."""
    test_app = FastAPI()
    test_app.include_router(router, prefix="/api/feedback")
    return test_app


@pytest.fixture
def storage() -> Iterator[FeedbackStorage]:
    store = FeedbackStorage(":memory:")
    store.initialize_schema()
    yield store
    store.close()


@pytest.fixture
def changes() -> list[str]:
    return []


def _configure(storage: FeedbackStorage, changes: list[str], enricher=None) -> None:
    pipeline = IntakePipeline(
        storage,
        enricher or LexiconEnricher(),
        retry_config=RetryConfig(max_attempts=2, base_delay=0.0),
        sleep_func=lambda _: None,
    )
    configure(pipeline, on_change=lambda: changes.append("changed"))


@pytest.fixture
def client(app: FastAPI, storage: FeedbackStorage, changes: list[str]) -> Iterator[TestClient]:
    """TestClient wired to a pipeline over in-memory storage."""
    _configure(storage, changes)
    yield TestClient(app)
    intake_server._state["pipeline"] = None
    intake_server._state["on_change"] = None


def _create(client: TestClient, **overrides) -> dict:
    body = {"source": "github", "content": "The billing page is slow and broken"}
    body.update(overrides)
    resp = client.post("/api/feedback/", json=body)
    assert resp.status_code == 201, resp.text
    return resp.json()


class TestHealth:
    """Tests for health and configuration."""

    def test_health(self, client: TestClient) -> None:
        assert client.get("/api/feedback/health").json() == {"status": "ok", "version": "0.1.0"}

    def test_unconfigured_returns_503(self, app: FastAPI) -> None:
        intake_server._state["pipeline"] = None
        resp = TestClient(app).get("/api/feedback/")
        assert resp.status_code == 503


class TestCreate:
    """Tests for POST /."""

    def test_create(self, client: TestClient, changes: list[str]) -> None:
        data = _create(client, title="Slow billing", urgency=4, tags=["billing"])
        assert data["id"].startswith("fb_")
        assert data["sentiment"] == "unknown"
        assert data["themes"] == []
        assert data["status"] == "new"
        assert data["urgency"] == 4
        assert changes == ["changed"]

    def test_explicit_created_at(self, client: TestClient) -> None:
        data = _create(client, created_at="2026-03-01T08:00:00Z")
        assert data["created_at"].startswith("2026-03-01T08:00:00")

    def test_unknown_source_is_422(self, client: TestClient) -> None:
        resp = client.post("/api/feedback/", json={"source": "fax", "content": "Hi"})
        assert resp.status_code == 422

    def test_urgency_out_of_range_is_422(self, client: TestClient) -> None:
        resp = client.post(
            "/api/feedback/", json={"source": "x", "content": "Hi", "urgency": 9}
        )
        assert resp.status_code == 422

    def test_blank_after_cleaning_is_422(self, client: TestClient) -> None:
        resp = client.post("/api/feedback/", json={"source": "x", "content": "\u0001 "})
        assert resp.status_code == 422
        assert "content" in resp.json()["detail"]

    def test_duplicate_id_is_409(self, client: TestClient) -> None:
        _create(client, id="fb_dup")
        resp = client.post(
            "/api/feedback/", json={"source": "x", "content": "Again", "id": "fb_dup"}
        )
        assert resp.status_code == 409


class TestRead:
    """Tests for listing and retrieval."""

    def test_list_with_filters_and_pagination(self, client: TestClient) -> None:
        _create(client, source="x", content="first")
        _create(client, source="github", content="second")
        _create(client, source="x", content="third")
        data = client.get("/api/feedback/", params={"source": "x", "limit": 1}).json()
        assert data["total"] == 2
        assert data["limit"] == 1
        assert data["offset"] == 0
        assert len(data["items"]) == 1
        assert data["items"][0]["source"] == "x"

    def test_limit_is_validated(self, client: TestClient) -> None:
        assert client.get("/api/feedback/", params={"limit": 0}).status_code == 422

    def test_get_one(self, client: TestClient) -> None:
        created = _create(client)
        resp = client.get(f"/api/feedback/{created['id']}")
        assert resp.status_code == 200
        assert resp.json()["content"] == created["content"]

    def test_get_missing_is_404(self, client: TestClient) -> None:
        assert client.get("/api/feedback/fb_nope").status_code == 404


class TestEnrich:
    """Tests for POST /{id}/enrich."""

    def test_enrich(self, client: TestClient, changes: list[str]) -> None:
        created = _create(client)
        resp = client.post(f"/api/feedback/{created['id']}/enrich")
        assert resp.status_code == 200
        data = resp.json()
        assert data["sentiment"] == "negative"
        assert data["themes"] == ["performance", "billing"]
        assert data["summary"]
        assert changes == ["changed", "changed"]

    def test_already_enriched_is_409_unless_forced(self, client: TestClient) -> None:
        created = _create(client)
        client.post(f"/api/feedback/{created['id']}/enrich")
        assert client.post(f"/api/feedback/{created['id']}/enrich").status_code == 409
        resp = client.post(f"/api/feedback/{created['id']}/enrich", params={"force": "true"})
        assert resp.status_code == 200

    def test_missing_is_404(self, client: TestClient) -> None:
        assert client.post("/api/feedback/fb_nope/enrich").status_code == 404

    def test_provider_down_is_502(
        self, app: FastAPI, storage: FeedbackStorage, changes: list[str]
    ) -> None:
        _configure(storage, changes, DownEnricher())
        try:
            client = TestClient(app)
            created = _create(client)
            resp = client.post(f"/api/feedback/{created['id']}/enrich")
        finally:
            intake_server._state["pipeline"] = None
            intake_server._state["on_change"] = None
        assert resp.status_code == 502
        detail = resp.json()["detail"]
        assert detail["error_code"] == "ENRICH_003"
        assert detail["component"] == "intake"
        assert "technical_detail" not in detail


class TestStatusAndSeed:
    """Tests for triage and demo seeding."""

    def test_update_status(self, client: TestClient) -> None:
        created = _create(client)
        resp = client.patch(f"/api/feedback/{created['id']}/status", json={"status": "triaged"})
        assert resp.status_code == 200
        assert resp.json()["status"] == "triaged"

    def test_invalid_status_is_422(self, client: TestClient) -> None:
        created = _create(client)
        resp = client.patch(f"/api/feedback/{created['id']}/status", json={"status": "done"})
        assert resp.status_code == 422

    def test_status_missing_record_is_404(self, client: TestClient) -> None:
        resp = client.patch("/api/feedback/fb_nope/status", json={"status": "ignored"})
        assert resp.status_code == 404

    def test_seed(self, client: TestClient, changes: list[str]) -> None:
        _create(client)
        resp = client.post("/api/feedback/seed")
        assert resp.json() == {"success": True, "count": 10}
        assert client.get("/api/feedback/").json()["total"] == 10
        assert changes[-1] == "changed"


class TestConcurrency:
    """A slow enrichment call must not stall other requests."""

    def test_reads_served_while_enrichment_in_flight(
        self, app: FastAPI, storage: FeedbackStorage, changes: list[str]
    ) -> None:
        enricher = GatedEnricher()
        _configure(storage, changes, enricher)
        try:
            with TestClient(app) as client, ThreadPoolExecutor(max_workers=1) as pool:
                created = _create(client)
                pending = pool.submit(client.post, f"/api/feedback/{created['id']}/enrich")
                assert enricher.started.wait(timeout=5)

                health = client.get("/api/feedback/health")
                listed = client.get("/api/feedback/")
                served_while_blocked = not enricher.finished.is_set()

                enricher.release.set()
                enriched = pending.result(timeout=10)
        finally:
            enricher.release.set()
            intake_server._state["pipeline"] = None
            intake_server._state["on_change"] = None
        assert served_while_blocked
        assert health.status_code == 200
        assert listed.json()["total"] == 1
        assert enriched.status_code == 200
        assert enriched.json()["sentiment"] == "negative"


class TestStorageFailures:
    """Unexpected store errors surface as structured 500s."""

    def test_locked_store_is_500_with_code(
        self, client: TestClient, storage: FeedbackStorage, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def locked(*args, **kwargs):
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr(storage, "fetch_feedback", locked)
        resp = client.get("/api/feedback/")
        assert resp.status_code == 500
        detail = resp.json()["detail"]
        assert detail["error_code"] == "STOR_001"
        assert detail["component"] == "intake"
        assert "locked" not in detail["message"]
