"""Insight service: working-set retrieval plus memoised analytics.

Binds the pure analytics components to a record source and a result
cache. Every computation follows the same path:

    FilterSet -> record source -> apply_filters -> computation -> cache

The record source and cache are injected so the analytics stay free of
storage and process-wide state.

Example::

    service = InsightService(InMemoryRecordSource(records))
    focus = service.recommended_focus(FilterSet(days=7))
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from insights.src.cache import InMemoryResultCache, ResultCache
from insights.src.config import InsightConfig
from insights.src.deltas import DeltaDetector
from insights.src.filtering import apply_filters
from insights.src.focus import FocusRecommender
from insights.src.models import (
    DeltaItem,
    FeedbackRecord,
    FilterSet,
    FocusItem,
    HeatmapResult,
    SankeyResult,
    ThemesResult,
    TrendResult,
    ensure_utc,
    utc_now,
)
from insights.src.themes import ThemeAggregator
from insights.src.trends import TrendAnalyzer

logger = logging.getLogger(__name__)


# ===================================================================
# Record source
# ===================================================================


@runtime_checkable
class RecordSource(Protocol):
    """Protocol for anything that can produce filtered feedback records.

    Implementations must return records that satisfy the filter set
    under the same semantics as ``apply_filters``.
    """

    def fetch_feedback(
        self,
        filters: FilterSet,
        limit: int | None = None,
        offset: int = 0,
        now: datetime | None = None,
    ) -> list[FeedbackRecord]:
        """Return matching records, newest ``created_at`` first.

        Args:
            filters: Constraints to apply.
            limit: Maximum records to return (None for all).
            offset: Records to skip before collecting.
            now: Reference time for the day-window.

        Returns:
            Matching records.
        """
        ...

    def count_feedback(self, filters: FilterSet, now: datetime | None = None) -> int:
        """Return the number of matching records."""
        ...


class InMemoryRecordSource:
    """List-backed record source.

    Args:
        records: Initial records.

    Example::

        source = InMemoryRecordSource([record_a, record_b])
        source.fetch_feedback(FilterSet(theme="billing"))
    """

    def __init__(self, records: Iterable[FeedbackRecord] | None = None) -> None:
        self._records: list[FeedbackRecord] = list(records or [])

    def add(self, record: FeedbackRecord) -> None:
        """Append a record."""
        self._records.append(record)

    def fetch_feedback(
        self,
        filters: FilterSet,
        limit: int | None = None,
        offset: int = 0,
        now: datetime | None = None,
    ) -> list[FeedbackRecord]:
        matched = apply_filters(self._records, filters, now)
        matched.sort(key=lambda r: r.created_at, reverse=True)
        end = None if limit is None else offset + limit
        return matched[offset:end]

    def count_feedback(self, filters: FilterSet, now: datetime | None = None) -> int:
        return len(apply_filters(self._records, filters, now))


# ===================================================================
# Service
# ===================================================================


class InsightService:
    """Runs analytics over the working set selected by a filter set.

    Args:
        source: Record source (store or in-memory list).
        cache: Result cache (defaults to an in-process TTL cache).
        config: Insight configuration.
        clock: Callable returning the current UTC time (injectable for tests).
    """

    def __init__(
        self,
        source: RecordSource,
        cache: ResultCache | None = None,
        config: InsightConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._source = source
        self._config = config or InsightConfig()
        self._cache = (
            cache
            if cache is not None
            else InMemoryResultCache(ttl_seconds=self._config.cache_ttl_seconds)
        )
        self._clock = clock or utc_now
        self._themes = ThemeAggregator(self._config)
        self._trends = TrendAnalyzer(self._config)
        self._focus = FocusRecommender(self._config)
        self._deltas = DeltaDetector(self._config)

    @property
    def config(self) -> InsightConfig:
        return self._config

    def now(self) -> datetime:
        """Return the service's reference time."""
        return ensure_utc(self._clock())

    def window_days(self, filters: FilterSet) -> int:
        """Window length for *filters*, falling back to the configured default."""
        return self._config.default_window_days if filters.days is None else filters.days

    def working_set(self, filters: FilterSet, now: datetime | None = None) -> list[FeedbackRecord]:
        """Fetch the records selected by *filters*.

        An absent ``days`` is narrowed to the default window, so the
        records counted always match the reported ``window_days``.
        ``days=0`` keeps all time. The source pre-filters;
        ``apply_filters`` then pins the exact semantics so every
        computation sees the same working set.

        Args:
            filters: Constraints to apply.
            now: Reference time (defaults to the service clock).

        Returns:
            The working set.
        """
        reference = now or self.now()
        windowed = filters.replace(days=self.window_days(filters))
        records = self._source.fetch_feedback(windowed, now=reference)
        return apply_filters(records, windowed, reference)

    def invalidate(self) -> None:
        """Drop every memoised result (after ingestion or seeding)."""
        self._cache.clear()

    # ---------------------------------------------------------------
    # Computations
    # ---------------------------------------------------------------

    def top_themes(self, filters: FilterSet, limit: int | None = None) -> ThemesResult:
        """Top themes by count over the working set."""
        key = filters.cache_key(f"themes:{limit if limit is not None else 'default'}")
        return self._memoise(
            key,
            lambda now: self._themes.top_themes(
                self.working_set(filters, now), self.window_days(filters), limit
            ),
        )

    def trend(self, filters: FilterSet) -> TrendResult:
        """Daily counts with spike flags over the filter window."""
        return self._memoise(
            filters.cache_key("trend"),
            lambda now: self._trends.analyze(
                self.working_set(filters, now), self.window_days(filters), now
            ),
        )

    def heatmap(self, filters: FilterSet) -> HeatmapResult:
        """Theme x sentiment matrix over the working set."""
        return self._memoise(
            filters.cache_key("heatmap"),
            lambda now: self._themes.heatmap(self.working_set(filters, now)),
        )

    def sankey(self, filters: FilterSet) -> SankeyResult:
        """Source -> theme flows over the working set."""
        return self._memoise(
            filters.cache_key("sankey"),
            lambda now: self._themes.sankey(self.working_set(filters, now)),
        )

    def recommended_focus(self, filters: FilterSet) -> list[FocusItem]:
        """Top focus recommendations over the working set."""
        return self._memoise(
            filters.cache_key("recommended"),
            lambda now: self._focus.recommend(self.working_set(filters, now), now),
        )

    def deltas(self, filters: FilterSet) -> list[DeltaItem]:
        """24h-over-24h spike, drop and new-theme detection."""
        return self._memoise(
            filters.cache_key("deltas"),
            lambda now: self._deltas.detect(self.working_set(filters, now), now),
        )

    def _memoise(self, key: str, compute: Callable[[datetime], Any]) -> Any:
        """Return the cached value for *key* or compute and store it."""
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug("Cache hit for %s", key)
            return cached

        value = compute(self.now())
        self._cache.put(key, value)
        return value
