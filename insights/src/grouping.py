"""Theme grouping shared by the aggregators, recommender and detector.

A record with k themes belongs to k groups. Groups hold references to
the original records; insertion order is first-seen order, which is the
deterministic tie-break for every ranking built on top of it.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable

from insights.src.models import FeedbackRecord, FeedbackSource


def group_by_theme(records: Iterable[FeedbackRecord]) -> dict[str, list[FeedbackRecord]]:
    """Group records by theme label with multi-membership.

    Args:
        records: Working set.

    Returns:
        Mapping of theme to the records carrying it, in first-seen order.
    """
    groups: dict[str, list[FeedbackRecord]] = {}
    for record in records:
        for theme in record.themes:
            groups.setdefault(theme, []).append(record)
    return groups


def count_by_theme(records: Iterable[FeedbackRecord]) -> dict[str, int]:
    """Count theme occurrences, in first-seen order."""
    return {theme: len(group) for theme, group in group_by_theme(records).items()}


def rank_themes(counts: dict[str, int], limit: int | None = None) -> list[tuple[str, int]]:
    """Sort theme counts descending, keeping first-seen order on ties.

    Args:
        counts: Theme counts in first-seen order.
        limit: Keep at most this many entries (None keeps all).

    Returns:
        List of ``(theme, count)`` pairs.
    """
    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    return ranked if limit is None else ranked[:limit]


def source_counts(records: Iterable[FeedbackRecord]) -> Counter[FeedbackSource]:
    """Count records per source, in first-encountered order."""
    return Counter(r.source for r in records)


def dominant_source(records: Iterable[FeedbackRecord]) -> FeedbackSource | None:
    """Return the most frequent source, first-encountered on ties.

    Args:
        records: Records of one group.

    Returns:
        The dominant source, or None for an empty group.
    """
    top = source_counts(records).most_common(1)
    return top[0][0] if top else None
