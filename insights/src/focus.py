"""Focus recommendations: which themes need attention next.

Heuristic-based prioritization, deliberately not a learned model:

    1. Group the working set by theme (multi-membership).
    2. For each theme compute:
       - volume: records in the group
       - negative_ratio: negative records / volume
       - recency_multiplier: 1.5 when more than half the group was
         ingested in the last 7 days, else 1.0
    3. score = volume * (1 + negative_ratio) * recency_multiplier
    4. Return the top 3 themes ranked by score.

Signal, suggested action and confidence are coarse tiers derived from
the same numbers. Recommendations are decision support for a human;
they never trigger anything on their own.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from datetime import datetime, timedelta

from insights.src.config import InsightConfig
from insights.src.grouping import group_by_theme, source_counts
from insights.src.models import (
    FeedbackRecord,
    FilterSet,
    FocusItem,
    Sentiment,
    SuggestedAction,
    SupportingStats,
    Tier,
    capitalize_theme,
    ensure_utc,
    utc_now,
)

_ACTION_BY_SIGNAL: dict[Tier, SuggestedAction] = {
    Tier.HIGH: SuggestedAction.INVESTIGATE,
    Tier.MEDIUM: SuggestedAction.MONITOR,
    Tier.LOW: SuggestedAction.IGNORE,
}


def _ratio(numerator: int, denominator: int) -> float:
    return numerator / denominator if denominator > 0 else 0.0


def _percent(ratio: float) -> int:
    return math.floor(ratio * 100 + 0.5)


class FocusRecommender:
    """Scores theme groups by volume, negativity and recency.

    Args:
        config: Insight configuration (defaults to standard thresholds).
    """

    def __init__(self, config: InsightConfig | None = None) -> None:
        self._config = config or InsightConfig()

    def recommend(
        self,
        records: Sequence[FeedbackRecord],
        now: datetime | None = None,
    ) -> list[FocusItem]:
        """Rank theme groups and return the top recommendations.

        Args:
            records: Working set.
            now: Reference time for the recency window.

        Returns:
            At most ``focus_limit`` items with non-increasing scores.
            Empty input yields an empty list.
        """
        reference = ensure_utc(now) if now is not None else utc_now()
        items = [
            self.score_theme(theme, group, reference)
            for theme, group in group_by_theme(records).items()
        ]
        items.sort(key=lambda item: item.score, reverse=True)
        return items[: self._config.focus_limit]

    def score_theme(
        self,
        theme: str,
        group: Sequence[FeedbackRecord],
        now: datetime,
    ) -> FocusItem:
        """Score a single theme group.

        Args:
            theme: Theme label.
            group: Records carrying the theme (never empty by construction).
            now: Reference time for the recency window.

        Returns:
            The FocusItem for this theme.
        """
        cfg = self._config
        volume = len(group)
        negative_count = sum(1 for r in group if r.sentiment == Sentiment.NEGATIVE)
        negative_ratio = _ratio(negative_count, volume)

        cutoff = now - timedelta(days=cfg.recency_days)
        recent_count = sum(1 for r in group if r.ingested_at >= cutoff)
        recent_share = _ratio(recent_count, volume)
        multiplier = cfg.recency_multiplier if recent_share > cfg.recency_majority else 1.0

        score = volume * (1 + negative_ratio) * multiplier
        signal = self._signal(score)

        sources = source_counts(group)
        source_count = len(sources)
        top = sources.most_common(1)

        return FocusItem(
            id=f"focus-{theme}",
            title=f"{capitalize_theme(theme)} feedback",
            theme=theme,
            source=top[0][0] if top else None,
            score=score,
            signal=signal,
            explanation=(
                f"{volume} items, {_percent(negative_ratio)}% negative, "
                f"{_percent(recent_share)}% recent"
            ),
            suggested_action=_ACTION_BY_SIGNAL[signal],
            confidence=self._confidence(volume, source_count, recent_share),
            coverage_text=(
                f"{volume} items • {source_count} "
                f"{'source' if source_count == 1 else 'sources'} "
                f"• last {cfg.recency_days} days"
            ),
            supporting_stats=SupportingStats(
                item_count=volume,
                source_count=source_count,
                negative_count=negative_count,
                window_days=cfg.recency_days,
                recent_share=recent_share,
            ),
        )

    def _signal(self, score: float) -> Tier:
        """Map a score to its signal tier."""
        if score >= self._config.high_signal_score:
            return Tier.HIGH
        if score >= self._config.medium_signal_score:
            return Tier.MEDIUM
        return Tier.LOW

    def _confidence(self, volume: int, source_count: int, recent_share: float) -> Tier:
        """Confidence from sample size, source diversity and recency.

        High needs a large, multi-source, mostly recent sample; medium a
        moderate, reasonably recent one. Everything else is low.
        """
        cfg = self._config
        if (
            volume >= cfg.high_confidence_volume
            and source_count >= cfg.high_confidence_sources
            and recent_share >= cfg.high_confidence_recent_share
        ):
            return Tier.HIGH
        if (
            volume >= cfg.medium_confidence_volume
            and source_count >= cfg.medium_confidence_sources
            and recent_share >= cfg.medium_confidence_recent_share
        ):
            return Tier.MEDIUM
        return Tier.LOW


# ===================================================================
# Active-focus matching
# ===================================================================


def focus_filters(focus: FocusItem, base: FilterSet | None = None) -> FilterSet:
    """Return the filter set that selecting *focus* applies.

    Selecting a recommendation always narrows to its theme with negative
    sentiment, plus its dominant source when it has one.

    Args:
        focus: The recommendation being selected.
        base: Current filters to narrow (defaults to an empty set).

    Returns:
        The narrowed FilterSet.
    """
    current = base or FilterSet()
    return current.replace(
        theme=focus.theme,
        sentiment=Sentiment.NEGATIVE.value,
        source=focus.source.value if focus.source else current.source,
    )


def is_focus_active(focus: FocusItem, filters: FilterSet) -> bool:
    """Whether *focus* is already reflected in the current filters.

    Used only to flag UI state (dim already-applied suggestions).

    Args:
        focus: A previously computed recommendation.
        filters: Current dashboard filters.

    Returns:
        True iff theme matches, sentiment is negative, and the source
        matches whenever the focus has one.
    """
    if filters.theme != focus.theme:
        return False
    if filters.sentiment != Sentiment.NEGATIVE:
        return False
    if focus.source is not None and filters.source != focus.source:
        return False
    return True
