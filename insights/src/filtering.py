"""Filtering engine: narrows a record collection to a working set.

Every analytics computation consumes the output of ``apply_filters``,
so the filter semantics are defined once, here.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timedelta

from insights.src.models import FeedbackRecord, FilterSet, ensure_utc, utc_now


def matches(record: FeedbackRecord, filters: FilterSet, now: datetime | None = None) -> bool:
    """Return True when *record* satisfies every constraint in *filters*.

    Args:
        record: The record to test.
        filters: Constraints; absent fields always match.
        now: Reference time for the day-window (defaults to current UTC time).

    Returns:
        Whether the record belongs to the working set.
    """
    if filters.source is not None and record.source != filters.source:
        return False
    if filters.sentiment is not None and record.sentiment != filters.sentiment:
        return False
    if filters.status is not None and record.status != filters.status:
        return False
    if filters.theme is not None and filters.theme not in record.themes:
        return False
    if filters.q is not None and not _matches_text(record, filters.q):
        return False
    if filters.days:
        reference = ensure_utc(now) if now is not None else utc_now()
        cutoff = reference - timedelta(days=filters.days)
        if not cutoff <= record.ingested_at <= reference:
            return False
    return True


def apply_filters(
    records: Iterable[FeedbackRecord],
    filters: FilterSet,
    now: datetime | None = None,
) -> list[FeedbackRecord]:
    """Return the records that satisfy *filters*, preserving order.

    An empty filter set returns every record unchanged. Applying the
    same filter set twice yields the same list.

    Args:
        records: Full record collection.
        filters: Constraints to apply.
        now: Reference time for the day-window.

    Returns:
        The filtered working set.
    """
    if filters.is_empty:
        return list(records)
    reference = ensure_utc(now) if now is not None else utc_now()
    return [r for r in records if matches(r, filters, reference)]


def _matches_text(record: FeedbackRecord, query: str) -> bool:
    needle = query.lower()
    if record.title and needle in record.title.lower():
        return True
    return needle in record.content.lower()
