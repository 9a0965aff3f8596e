"""FastAPI router for the Intake layer.

Exposes REST endpoints for listing, creating, enriching and triaging
feedback items, plus demo seeding. Designed to be mounted at
``/api/feedback/`` by the parent application.

Example::

    from fastapi import FastAPI
    from intake.src.server import configure, router

    configure(pipeline)
    app = FastAPI()
    app.include_router(router, prefix="/api/feedback")
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel, Field

from insights.src.models import FeedbackSource, FeedbackStatus, FilterSet, InsightError
from intake.src.enrichment import EnrichmentError
from intake.src.pipeline import IngestRequest, IntakeError, IntakePipeline, RecordNotFoundError
from intake.src.seed import seed_storage
from intake.src.storage import FeedbackStorageError
from shared.hardening import ErrorFormatter, RetriesExhaustedError, ValidationError

logger = logging.getLogger(__name__)

# ===================================================================
# Pydantic request models
# ===================================================================


class CreateFeedbackRequest(BaseModel):
    """Request body for ingesting a feedback item."""

    source: FeedbackSource
    content: str = Field(..., min_length=1, max_length=10_000)
    id: str | None = Field(default=None, min_length=1, max_length=200)
    created_at: datetime | None = None
    external_id: str | None = Field(default=None, max_length=500)
    url: str | None = Field(default=None, max_length=2_000)
    title: str | None = Field(default=None, max_length=500)
    author_handle: str | None = Field(default=None, max_length=200)
    urgency: int | None = Field(default=None, ge=1, le=5)
    product_area: str | None = Field(default=None, max_length=200)
    tags: list[str] = Field(default_factory=list)


class UpdateStatusRequest(BaseModel):
    """Request body for changing a feedback item's workflow status."""

    status: FeedbackStatus


# ===================================================================
# Shared state and factory
# ===================================================================

_state: dict[str, Any] = {
    "pipeline": None,
    "on_change": None,
}

_formatter = ErrorFormatter()


def get_pipeline() -> IntakePipeline:
    """Return the IntakePipeline singleton, raising 503 if not initialised.

    Returns:
        The current IntakePipeline instance.

    Raises:
        HTTPException: 503 if the pipeline has not been configured.
    """
    pipeline = _state.get("pipeline")
    if pipeline is None:
        raise HTTPException(
            status_code=503,
            detail="Intake pipeline not initialised. Call configure() first.",
        )
    return pipeline


def configure(
    pipeline: IntakePipeline,
    on_change: Callable[[], None] | None = None,
) -> None:
    """Inject dependencies into the module-level state.

    Args:
        pipeline: A fully-constructed IntakePipeline.
        on_change: Called after any write (e.g. to drop cached analytics).
    """
    _state["pipeline"] = pipeline
    _state["on_change"] = on_change


def _notify_change() -> None:
    callback = _state.get("on_change")
    if callback is not None:
        callback()


# ===================================================================
# Router
# ===================================================================

router = APIRouter()


@router.get("/health")
def health() -> dict[str, Any]:
    """Return Intake service health status.

    Returns:
        Dictionary with status and version.
    """
    ready = _state.get("pipeline") is not None
    return {
        "status": "ok" if ready else "not_configured",
        "version": "0.1.0",
    }


@router.get("/")
def list_feedback(
    request: Request,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
) -> dict[str, Any]:
    """List feedback matching the filter query keys, newest first.

    Args:
        request: Incoming request carrying the filter query keys.
        limit: Page size.
        offset: Records to skip.

    Returns:
        Dictionary with the page of items and the total match count.
    """
    try:
        pipeline = get_pipeline()
        filters = FilterSet.from_query(request.query_params)
        items = pipeline.storage.fetch_feedback(filters, limit=limit, offset=offset)
        total = pipeline.storage.count_feedback(filters)
        return {
            "items": [item.to_dict() for item in items],
            "total": total,
            "limit": limit,
            "offset": offset,
        }
    except HTTPException:
        raise
    except Exception as exc:
        logger.exception("Failed to list feedback")
        raise HTTPException(
            status_code=500, detail=_formatter.format_storage_error(exc).to_dict()
        ) from exc


@router.post("/", status_code=201)
def create_feedback(request: CreateFeedbackRequest) -> dict[str, Any]:
    """Ingest a new feedback item.

    Args:
        request: Feedback fields.

    Returns:
        The stored record as a dictionary.
    """
    try:
        pipeline = get_pipeline()
        record = pipeline.ingest(
            IngestRequest(
                source=request.source,
                content=request.content,
                created_at=request.created_at,
                external_id=request.external_id,
                url=request.url,
                title=request.title,
                author_handle=request.author_handle,
                urgency=request.urgency,
                product_area=request.product_area,
                tags=request.tags,
                record_id=request.id,
            )
        )
        _notify_change()
        return record.to_dict()
    except (ValidationError, InsightError) as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except FeedbackStorageError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except HTTPException:
        raise
    except Exception as exc:
        logger.exception("Failed to create feedback")
        raise HTTPException(
            status_code=500, detail=_formatter.format_storage_error(exc).to_dict()
        ) from exc


@router.post("/seed")
def seed() -> dict[str, Any]:
    """Replace all feedback with the deterministic demo data.

    Returns:
        Dictionary with the number of seeded records.
    """
    try:
        pipeline = get_pipeline()
        count = seed_storage(pipeline.storage)
        _notify_change()
        return {"success": True, "count": count}
    except HTTPException:
        raise
    except Exception as exc:
        logger.exception("Failed to seed feedback")
        raise HTTPException(
            status_code=500, detail=_formatter.format_storage_error(exc).to_dict()
        ) from exc


@router.get("/{record_id}")
def get_feedback(record_id: str) -> dict[str, Any]:
    """Retrieve one feedback item.

    Args:
        record_id: The record to retrieve.

    Returns:
        The record as a dictionary.
    """
    try:
        pipeline = get_pipeline()
        record = pipeline.storage.get_record(record_id)
        if record is None:
            raise HTTPException(status_code=404, detail=f"Feedback not found: {record_id}")
        return record.to_dict()
    except HTTPException:
        raise
    except Exception as exc:
        logger.exception("Failed to get feedback %s", record_id)
        raise HTTPException(
            status_code=500, detail=_formatter.format_storage_error(exc).to_dict()
        ) from exc


@router.post("/{record_id}/enrich")
def enrich_feedback(
    record_id: str,
    force: bool = Query(default=False),
) -> dict[str, Any]:
    """Annotate a feedback item with sentiment, themes and summary.

    Args:
        record_id: The record to enrich.
        force: Re-enrich an item that already has annotations.

    Returns:
        The enriched record as a dictionary.
    """
    try:
        pipeline = get_pipeline()
        record = pipeline.enrich(record_id, force=force)
        _notify_change()
        return record.to_dict()
    except RecordNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except IntakeError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except (RetriesExhaustedError, EnrichmentError) as exc:
        logger.warning("Enrichment failed for %s: %s", record_id, exc)
        raise HTTPException(
            status_code=502,
            detail=_formatter.format_enrichment_error(exc).to_dict(),
        ) from exc
    except HTTPException:
        raise
    except Exception as exc:
        logger.exception("Failed to enrich feedback %s", record_id)
        raise HTTPException(
            status_code=500, detail=_formatter.format_storage_error(exc).to_dict()
        ) from exc


@router.patch("/{record_id}/status")
def update_status(record_id: str, request: UpdateStatusRequest) -> dict[str, Any]:
    """Set the workflow status of a feedback item.

    Args:
        record_id: The record to update.
        request: The new status.

    Returns:
        The updated record as a dictionary.
    """
    try:
        pipeline = get_pipeline()
        record = pipeline.triage(record_id, request.status)
        _notify_change()
        return record.to_dict()
    except RecordNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except HTTPException:
        raise
    except Exception as exc:
        logger.exception("Failed to update status for %s", record_id)
        raise HTTPException(
            status_code=500, detail=_formatter.format_storage_error(exc).to_dict()
        ) from exc
