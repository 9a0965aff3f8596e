"""Feedback Insights unified backend server.

Mounts both tool backends (Intake and Insights) under a single FastAPI
application. Both tools share one SQLite record store; a write through
the intake router drops the cached analytics so the dashboard picks it
up on the next request.

Environment:
    FEEDBACK_DB_PATH: SQLite file (default ``data/feedback.db``; use
        ``:memory:`` for an ephemeral store).
    FEEDBACK_ENRICH_URL: Text-generation endpoint for enrichment. The
        offline lexicon enricher is used when unset.
    FEEDBACK_ENRICH_API_KEY: Optional bearer token for that endpoint.
    FEEDBACK_INSIGHTS_CONFIG: Optional JSON file overriding the analytics
        thresholds (keys of ``InsightConfig``).

Usage::

    # Development (auto-reload)
    uvicorn feedback_server:app --reload --port 8430

    # Or run directly
    python feedback_server.py
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from insights.src.config import InsightConfig
from insights.src.service import InsightService
from intake.src.enrichment import Enricher, LexiconEnricher, LLMEnricher, LLMEnricherConfig
from intake.src.pipeline import IntakePipeline
from intake.src.storage import FeedbackStorage

logger = logging.getLogger("feedback")

DEFAULT_DB_PATH = "data/feedback.db"

# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Feedback Insights API",
    description=(
        "Feedback aggregation backend: "
        "Intake (ingestion, enrichment, triage) and "
        "Insights (themes, trends, focus recommendations, deltas)."
    ),
    version="0.1.0",
)

# ---------------------------------------------------------------------------
# CORS -- allow the local dashboard dev server
# ---------------------------------------------------------------------------

_ALLOWED_ORIGINS = [
    "http://localhost:5173",   # Vite dev server
    "http://localhost:8430",   # Self (for Swagger UI)
    "http://127.0.0.1:5173",
    "http://127.0.0.1:8430",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Tool loading state -- tracks which tools mounted successfully
# ---------------------------------------------------------------------------

_tool_status: dict[str, dict[str, Any]] = {
    "intake": {"loaded": False, "error": None},
    "insights": {"loaded": False, "error": None},
}

_components: dict[str, Any] = {
    "storage": None,
    "service": None,
}


def _open_storage() -> FeedbackStorage:
    """Open the shared record store named by ``FEEDBACK_DB_PATH``."""
    db_path = os.environ.get("FEEDBACK_DB_PATH", DEFAULT_DB_PATH)
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    storage = FeedbackStorage(db_path)
    storage.initialize_schema()
    logger.info("Feedback store opened at %s", db_path)
    return storage


def _create_enricher() -> Enricher:
    """Choose the HTTP enricher when an endpoint is configured.

    Returns:
        An LLMEnricher for ``FEEDBACK_ENRICH_URL``, else a LexiconEnricher.
    """
    endpoint = os.environ.get("FEEDBACK_ENRICH_URL")
    if not endpoint:
        logger.warning("FEEDBACK_ENRICH_URL not set, using offline lexicon enricher")
        return LexiconEnricher()
    config = LLMEnricherConfig(
        endpoint=endpoint,
        api_key=os.environ.get("FEEDBACK_ENRICH_API_KEY"),
    )
    logger.info("Using HTTP enricher at %s", endpoint)
    return LLMEnricher(config)


def _load_insight_config() -> InsightConfig:
    """Read analytics thresholds from ``FEEDBACK_INSIGHTS_CONFIG`` if set.

    Returns:
        InsightConfig with file values over the defaults.
    """
    config_path = os.environ.get("FEEDBACK_INSIGHTS_CONFIG")
    if not config_path:
        return InsightConfig()
    data = json.loads(Path(config_path).read_text(encoding="utf-8"))
    logger.info("Loaded insight config from %s", config_path)
    return InsightConfig.from_dict(data)


# ---------------------------------------------------------------------------
# Insights (analytics)
# ---------------------------------------------------------------------------


def _mount_insights() -> None:
    """Mount the Insights router at ``/api/insights/``."""
    try:
        from insights.src.server import configure, router as insights_router

        service = InsightService(_components["storage"], config=_load_insight_config())
        configure(service)
        _components["service"] = service

        app.include_router(insights_router, prefix="/api/insights", tags=["insights"])
        _tool_status["insights"]["loaded"] = True
        logger.info("Insights router mounted at /api/insights/")
    except Exception as exc:
        _tool_status["insights"]["error"] = str(exc)
        logger.warning("Insights router failed to load: %s", exc)


# ---------------------------------------------------------------------------
# Intake (ingestion, enrichment, triage)
# ---------------------------------------------------------------------------


def _mount_intake() -> None:
    """Mount the Intake router at ``/api/feedback/``.

    Writes through this router invalidate the Insights cache when the
    Insights tool is loaded.
    """
    try:
        from intake.src.server import configure, router as intake_router

        pipeline = IntakePipeline(_components["storage"], _create_enricher())
        service = _components["service"]
        configure(pipeline, on_change=service.invalidate if service is not None else None)

        app.include_router(intake_router, prefix="/api/feedback", tags=["intake"])
        _tool_status["intake"]["loaded"] = True
        logger.info("Intake router mounted at /api/feedback/")
    except Exception as exc:
        _tool_status["intake"]["error"] = str(exc)
        logger.warning("Intake router failed to load: %s", exc)


# ---------------------------------------------------------------------------
# Unified health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/health")
async def unified_health() -> dict[str, Any]:
    """Return health status for both tools.

    Returns:
        Dictionary with overall status and per-tool breakdown.
    """
    all_loaded = all(t["loaded"] for t in _tool_status.values())
    any_loaded = any(t["loaded"] for t in _tool_status.values())

    if all_loaded:
        status = "ok"
    elif any_loaded:
        status = "degraded"
    else:
        status = "error"

    return {
        "status": status,
        "version": "0.1.0",
        "tools": _tool_status,
    }


# ---------------------------------------------------------------------------
# Mount all tools
# ---------------------------------------------------------------------------

_components["storage"] = _open_storage()
_mount_insights()
_mount_intake()


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------


def run_server(host: str = "127.0.0.1", port: int = 8430) -> None:
    """Start the unified server via uvicorn.

    Args:
        host: Bind address. Defaults to localhost.
        port: Port number. Defaults to 8430.
    """
    import uvicorn

    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )
    run_server()
