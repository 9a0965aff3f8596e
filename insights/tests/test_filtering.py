"""Tests for the filtering engine."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from insights.src.filtering import apply_filters, matches
from insights.src.models import FeedbackRecord, FilterSet

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def _make_record(
    record_id: str,
    source: str = "github",
    sentiment: str = "neutral",
    themes: list[str] | None = None,
    hours_ago: float = 1,
    title: str | None = None,
    content: str = "Some feedback",
    status: str = "new",
) -> FeedbackRecord:
    """Create a FeedbackRecord ingested *hours_ago* before NOW."""
    ingested = NOW - timedelta(hours=hours_ago)
    return FeedbackRecord(
        id=record_id,
        source=source,
        content=content,
        title=title,
        created_at=ingested,
        ingested_at=ingested,
        sentiment=sentiment,
        themes=themes or [],
        status=status,
    )


def _corpus() -> list[FeedbackRecord]:
    return [
        _make_record("a", source="github", sentiment="negative", themes=["billing"]),
        _make_record("b", source="x", sentiment="positive", themes=["docs"], hours_ago=30),
        _make_record(
            "c",
            source="support",
            sentiment="negative",
            themes=["billing", "performance"],
            hours_ago=24 * 10,
            title="Invoice totals wrong",
        ),
        _make_record(
            "d",
            source="discord",
            sentiment="neutral",
            themes=["performance"],
            content="The CLI feels SLOW today",
            status="triaged",
        ),
    ]


class TestMatches:
    """Tests for single-record matching."""

    def test_empty_filters_match_everything(self) -> None:
        assert all(matches(r, FilterSet(), NOW) for r in _corpus())

    def test_source_equality(self) -> None:
        records = apply_filters(_corpus(), FilterSet(source="x"), NOW)
        assert [r.id for r in records] == ["b"]

    def test_sentiment_equality(self) -> None:
        records = apply_filters(_corpus(), FilterSet(sentiment="negative"), NOW)
        assert [r.id for r in records] == ["a", "c"]

    def test_status_equality(self) -> None:
        records = apply_filters(_corpus(), FilterSet(status="triaged"), NOW)
        assert [r.id for r in records] == ["d"]

    def test_theme_membership(self) -> None:
        records = apply_filters(_corpus(), FilterSet(theme="performance"), NOW)
        assert [r.id for r in records] == ["c", "d"]

    def test_text_search_is_case_insensitive_on_content(self) -> None:
        records = apply_filters(_corpus(), FilterSet(q="slow"), NOW)
        assert [r.id for r in records] == ["d"]

    def test_text_search_matches_title(self) -> None:
        records = apply_filters(_corpus(), FilterSet(q="INVOICE"), NOW)
        assert [r.id for r in records] == ["c"]

    def test_day_window_excludes_older_records(self) -> None:
        records = apply_filters(_corpus(), FilterSet(days=7), NOW)
        assert [r.id for r in records] == ["a", "b", "d"]

    def test_day_window_excludes_future_records(self) -> None:
        future = _make_record("f", hours_ago=-2)
        assert not matches(future, FilterSet(days=7), NOW)

    def test_zero_days_means_all_time(self) -> None:
        records = apply_filters(_corpus(), FilterSet(days=0), NOW)
        assert len(records) == 4

    def test_constraints_combine_with_and(self) -> None:
        filters = FilterSet(sentiment="negative", theme="billing", days=7)
        records = apply_filters(_corpus(), filters, NOW)
        assert [r.id for r in records] == ["a"]


class TestApplyFilters:
    """Tests for the properties of apply_filters."""

    def test_empty_filter_set_is_identity(self) -> None:
        corpus = _corpus()
        result = apply_filters(corpus, FilterSet(), NOW)
        assert result == corpus
        assert all(a is b for a, b in zip(result, corpus))

    def test_filtering_is_idempotent(self) -> None:
        filters = FilterSet(theme="billing", days=30)
        once = apply_filters(_corpus(), filters, NOW)
        twice = apply_filters(once, filters, NOW)
        assert once == twice

    def test_preserves_input_order(self) -> None:
        corpus = list(reversed(_corpus()))
        result = apply_filters(corpus, FilterSet(days=0, theme="performance"), NOW)
        assert [r.id for r in result] == ["d", "c"]

    def test_empty_input(self) -> None:
        assert apply_filters([], FilterSet(source="x"), NOW) == []
