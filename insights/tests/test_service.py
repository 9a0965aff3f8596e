"""Tests for InsightService: working sets, memoisation and invalidation."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from insights.src.cache import NullCache
from insights.src.config import InsightConfig
from insights.src.models import DeltaKind, FeedbackRecord, FilterSet
from insights.src.service import InMemoryRecordSource, InsightService, RecordSource

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def _make_record(
    record_id: str,
    themes: list[str],
    hours_ago: float = 1,
    sentiment: str = "negative",
    source: str = "github",
) -> FeedbackRecord:
    """Create a FeedbackRecord ingested *hours_ago* before NOW."""
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


class CountingSource(InMemoryRecordSource):
    """In-memory source that counts fetches."""

    def __init__(self, records: list[FeedbackRecord]) -> None:
        super().__init__(records)
        self.fetches = 0

    def fetch_feedback(self, filters, limit=None, offset=0, now=None):
        self.fetches += 1
        return super().fetch_feedback(filters, limit, offset, now)


def _corpus() -> list[FeedbackRecord]:
    return [
        _make_record("a", ["billing"], hours_ago=2),
        _make_record("b", ["billing"], hours_ago=3, source="x"),
        _make_record("c", ["billing", "docs"], hours_ago=5, sentiment="positive"),
        _make_record("d", ["docs"], hours_ago=24 * 20),
    ]


@pytest.fixture()
def source() -> CountingSource:
    return CountingSource(_corpus())


@pytest.fixture()
def service(source: CountingSource) -> InsightService:
    return InsightService(source, clock=lambda: NOW)


class TestRecordSource:
    """Tests for InMemoryRecordSource."""

    def test_newest_first(self) -> None:
        source = InMemoryRecordSource(_corpus())
        assert [r.id for r in source.fetch_feedback(FilterSet())] == ["a", "b", "c", "d"]

    def test_pagination(self) -> None:
        source = InMemoryRecordSource(_corpus())
        page = source.fetch_feedback(FilterSet(), limit=2, offset=1)
        assert [r.id for r in page] == ["b", "c"]

    def test_count_and_add(self) -> None:
        source = InMemoryRecordSource(_corpus())
        source.add(_make_record("e", ["docs"]))
        assert source.count_feedback(FilterSet(theme="docs")) == 3

    def test_satisfies_protocol(self) -> None:
        assert isinstance(InMemoryRecordSource(), RecordSource)


class TestWorkingSet:
    """Tests for filter handling."""

    def test_filters_narrow_working_set(self, service: InsightService) -> None:
        records = service.working_set(FilterSet(theme="docs", days=7))
        assert [r.id for r in records] == ["c"]

    def test_window_days_defaults(self, service: InsightService) -> None:
        assert service.window_days(FilterSet()) == 7
        assert service.window_days(FilterSet(days=30)) == 30

    def test_absent_days_counts_only_default_window(self) -> None:
        old = _make_record("old", ["billing"], hours_ago=24 * 90)
        service = InsightService(InMemoryRecordSource([old]), clock=lambda: NOW)
        result = service.top_themes(FilterSet())
        assert result.window_days == 7
        assert result.total_items_considered == 0
        assert result.themes == []
        assert service.heatmap(FilterSet()).total_items_considered == 0
        assert service.sankey(FilterSet()).total_items_considered == 0
        assert service.recommended_focus(FilterSet()) == []

    def test_zero_days_means_all_time(self) -> None:
        old = _make_record("old", ["billing"], hours_ago=24 * 90)
        service = InsightService(InMemoryRecordSource([old]), clock=lambda: NOW)
        assert service.top_themes(FilterSet(days=0)).total_items_considered == 1
        assert service.top_themes(FilterSet(days=120)).total_items_considered == 1

    def test_clock_is_injected(self, service: InsightService) -> None:
        assert service.now() == NOW


class TestComputations:
    """Tests for the memoised analytics."""

    def test_top_themes(self, service: InsightService) -> None:
        result = service.top_themes(FilterSet(days=7))
        assert [(t.theme, t.count) for t in result.themes] == [("billing", 3), ("docs", 1)]
        assert result.window_days == 7
        assert result.total_items_considered == 3

    def test_top_themes_limit(self, service: InsightService) -> None:
        assert len(service.top_themes(FilterSet(), limit=1).themes) == 1

    def test_trend_uses_default_window(self, service: InsightService) -> None:
        result = service.trend(FilterSet())
        assert result.window_days == 7
        assert len(result.points) == 8
        assert result.total_items_considered == 3

    def test_heatmap_and_sankey(self, service: InsightService) -> None:
        heatmap = service.heatmap(FilterSet(days=7))
        assert heatmap.themes == ["billing", "docs"]
        sankey = service.sankey(FilterSet(days=7))
        assert {link.source for link in sankey.links} == {"x", "github"}

    def test_recommended_focus(self, service: InsightService) -> None:
        items = service.recommended_focus(FilterSet(days=7))
        assert items[0].theme == "billing"

    def test_deltas(self, service: InsightService) -> None:
        items = service.deltas(FilterSet())
        assert (DeltaKind.SPIKE, "billing") in [(i.kind, i.theme) for i in items]

    def test_filter_applies_to_every_view(self, service: InsightService) -> None:
        filters = FilterSet(source="x")
        assert service.top_themes(filters).total_items_considered == 1
        assert service.heatmap(filters).total_items_considered == 1
        assert service.sankey(filters).total_items_considered == 1


class TestCaching:
    """Tests for memoisation and invalidation."""

    def test_repeated_call_is_cached(
        self, service: InsightService, source: CountingSource
    ) -> None:
        first = service.recommended_focus(FilterSet(days=7))
        second = service.recommended_focus(FilterSet.from_query({"days": "7"}))
        assert first is second
        assert source.fetches == 1

    def test_different_filters_miss(
        self, service: InsightService, source: CountingSource
    ) -> None:
        service.heatmap(FilterSet(days=7))
        service.heatmap(FilterSet(days=30))
        assert source.fetches == 2

    def test_computations_do_not_share_entries(
        self, service: InsightService, source: CountingSource
    ) -> None:
        service.heatmap(FilterSet())
        service.sankey(FilterSet())
        assert source.fetches == 2

    def test_invalidate_drops_results(
        self, service: InsightService, source: CountingSource
    ) -> None:
        before = service.top_themes(FilterSet(days=7))
        source.add(_make_record("e", ["kv"]))
        service.invalidate()
        after = service.top_themes(FilterSet(days=7))
        assert before.total_items_considered == 3
        assert after.total_items_considered == 4

    def test_null_cache_always_recomputes(self, source: CountingSource) -> None:
        service = InsightService(source, cache=NullCache(), clock=lambda: NOW)
        service.trend(FilterSet())
        service.trend(FilterSet())
        assert source.fetches == 2

    def test_zero_ttl_disables_caching(self, source: CountingSource) -> None:
        service = InsightService(
            source, config=InsightConfig(cache_ttl_seconds=0), clock=lambda: NOW
        )
        service.deltas(FilterSet())
        service.deltas(FilterSet())
        assert source.fetches == 2
