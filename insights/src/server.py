"""FastAPI router for the Insights analytics layer.

Every endpoint reads the same flat filter query keys (``source``,
``sentiment``, ``status``, ``theme``, ``q``, ``days``) and returns the
``to_dict()`` form of the computed result. Designed to be mounted at
``/api/insights/`` by the parent application.

Example::

    from fastapi import FastAPI
    from insights.src.server import configure, router

    configure(InsightService(storage))
    app = FastAPI()
    app.include_router(router, prefix="/api/insights")
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request

from insights.src.focus import is_focus_active
from insights.src.models import FilterSet
from insights.src.service import InsightService
from shared.hardening import ErrorFormatter

logger = logging.getLogger(__name__)

# ===================================================================
# Shared state and factory
# ===================================================================

_state: dict[str, Any] = {
    "service": None,
}

_formatter = ErrorFormatter()


def get_service() -> InsightService:
    """Return the InsightService singleton, raising 503 if not initialised.

    Returns:
        The current InsightService instance.

    Raises:
        HTTPException: 503 if the service has not been configured.
    """
    service = _state.get("service")
    if service is None:
        raise HTTPException(
            status_code=503,
            detail="Insight service not initialised. Call configure() first.",
        )
    return service


def configure(service: InsightService) -> None:
    """Inject the insight service into the module-level state.

    Args:
        service: A fully-constructed InsightService.
    """
    _state["service"] = service


def _filters(request: Request) -> FilterSet:
    return FilterSet.from_query(request.query_params)


# ===================================================================
# Router
# ===================================================================

router = APIRouter()


@router.get("/health")
def health() -> dict[str, Any]:
    """Return Insights service health status.

    Returns:
        Dictionary with status and version.
    """
    ready = _state.get("service") is not None
    return {
        "status": "ok" if ready else "not_configured",
        "version": "0.1.0",
    }


@router.get("/themes")
def themes(
    request: Request,
    limit: int | None = Query(default=None, ge=1, le=100),
) -> dict[str, Any]:
    """Top themes by count over the filtered working set.

    Args:
        request: Incoming request carrying the filter query keys.
        limit: Maximum themes to return.

    Returns:
        ThemesResult dictionary.
    """
    try:
        service = get_service()
        return service.top_themes(_filters(request), limit).to_dict()
    except HTTPException:
        raise
    except Exception as exc:
        logger.exception("Failed to compute themes")
        raise HTTPException(
            status_code=500, detail=_formatter.format_analytics_error(exc).to_dict()
        ) from exc


@router.get("/trend")
def trend(request: Request) -> dict[str, Any]:
    """Daily counts with spike flags for the filter window.

    Returns:
        TrendResult dictionary.
    """
    try:
        service = get_service()
        return service.trend(_filters(request)).to_dict()
    except HTTPException:
        raise
    except Exception as exc:
        logger.exception("Failed to compute trend")
        raise HTTPException(
            status_code=500, detail=_formatter.format_analytics_error(exc).to_dict()
        ) from exc


@router.get("/heatmap")
def heatmap(request: Request) -> dict[str, Any]:
    """Theme x sentiment matrix over the filtered working set.

    Returns:
        HeatmapResult dictionary.
    """
    try:
        service = get_service()
        return service.heatmap(_filters(request)).to_dict()
    except HTTPException:
        raise
    except Exception as exc:
        logger.exception("Failed to compute heatmap")
        raise HTTPException(
            status_code=500, detail=_formatter.format_analytics_error(exc).to_dict()
        ) from exc


@router.get("/sankey")
def sankey(request: Request) -> dict[str, Any]:
    """Source -> theme flows over the filtered working set.

    Returns:
        SankeyResult dictionary.
    """
    try:
        service = get_service()
        return service.sankey(_filters(request)).to_dict()
    except HTTPException:
        raise
    except Exception as exc:
        logger.exception("Failed to compute sankey")
        raise HTTPException(
            status_code=500, detail=_formatter.format_analytics_error(exc).to_dict()
        ) from exc


@router.get("/recommended")
def recommended(request: Request) -> dict[str, Any]:
    """Ranked focus recommendations.

    Each item carries an ``active`` flag telling the caller whether the
    request's filters already apply that recommendation.

    Returns:
        Dictionary with the list of focus items.
    """
    try:
        service = get_service()
        filters = _filters(request)
        items = service.recommended_focus(filters)
        return {
            "items": [
                {**item.to_dict(), "active": is_focus_active(item, filters)}
                for item in items
            ],
        }
    except HTTPException:
        raise
    except Exception as exc:
        logger.exception("Failed to compute focus recommendations")
        raise HTTPException(
            status_code=500, detail=_formatter.format_analytics_error(exc).to_dict()
        ) from exc


@router.get("/deltas")
def deltas(request: Request) -> dict[str, Any]:
    """Spike, drop and new-theme changes over the last 24 hours.

    Returns:
        Dictionary with the list of delta items.
    """
    try:
        service = get_service()
        items = service.deltas(_filters(request))
        return {"items": [item.to_dict() for item in items]}
    except HTTPException:
        raise
    except Exception as exc:
        logger.exception("Failed to compute deltas")
        raise HTTPException(
            status_code=500, detail=_formatter.format_analytics_error(exc).to_dict()
        ) from exc
