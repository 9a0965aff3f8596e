"""Theme aggregation: top-N counts, theme x sentiment, source x theme.

All rollups count multi-membership (a record with k themes contributes
to k groups) and rank themes by count with first-seen order on ties.
Empty working sets produce empty results, never errors.
"""

from __future__ import annotations

from collections.abc import Sequence

from insights.src.config import InsightConfig
from insights.src.grouping import count_by_theme, group_by_theme, rank_themes
from insights.src.models import (
    SENTIMENT_AXIS,
    FeedbackRecord,
    FeedbackSource,
    HeatmapResult,
    SankeyLink,
    SankeyResult,
    ThemeCount,
    ThemesResult,
)


class ThemeAggregator:
    """Count-based theme rollups over a filtered working set.

    Args:
        config: Insight configuration (defaults to standard thresholds).
    """

    def __init__(self, config: InsightConfig | None = None) -> None:
        self._config = config or InsightConfig()

    def count_themes(
        self,
        records: Sequence[FeedbackRecord],
        limit: int | None = None,
    ) -> list[ThemeCount]:
        """Rank themes by occurrence count.

        Args:
            records: Working set.
            limit: Maximum themes to return (defaults to the top-theme limit).

        Returns:
            Theme counts, highest first, first-seen order on ties.
        """
        cap = self._config.top_theme_limit if limit is None else limit
        ranked = rank_themes(count_by_theme(records), cap)
        return [ThemeCount(theme=theme, count=count) for theme, count in ranked]

    def top_themes(
        self,
        records: Sequence[FeedbackRecord],
        window_days: int,
        limit: int | None = None,
    ) -> ThemesResult:
        """Build the top-themes rollup with its window metadata.

        Args:
            records: Working set.
            window_days: Window length the working set was drawn from.
            limit: Maximum themes to return.

        Returns:
            ThemesResult for serialization.
        """
        return ThemesResult(
            window_days=window_days,
            total_items_considered=len(records),
            themes=self.count_themes(records, limit),
        )

    def heatmap(self, records: Sequence[FeedbackRecord]) -> HeatmapResult:
        """Build the theme x sentiment matrix over the top themes.

        Each row sums to that theme's total count, since every record
        carries exactly one sentiment from the fixed axis.

        Args:
            records: Working set.

        Returns:
            HeatmapResult with rows in ranking order and columns in
            the fixed sentiment order.
        """
        themes = [tc.theme for tc in self.count_themes(records)]
        groups = group_by_theme(records)

        matrix: list[list[int]] = []
        for theme in themes:
            group = groups[theme]
            matrix.append([sum(1 for r in group if r.sentiment == s) for s in SENTIMENT_AXIS])

        return HeatmapResult(
            themes=themes,
            sentiments=[s.value for s in SENTIMENT_AXIS],
            matrix=matrix,
            total_items_considered=len(records),
        )

    def sankey(self, records: Sequence[FeedbackRecord]) -> SankeyResult:
        """Build weighted source -> theme edges over the top themes.

        Sources are iterated in fixed channel order and themes in ranking
        order; only pairs that co-occur produce an edge.

        Args:
            records: Working set.

        Returns:
            SankeyResult with every source node followed by theme nodes.
        """
        themes = [tc.theme for tc in self.count_themes(records)]

        pair_counts: dict[tuple[FeedbackSource, str], int] = {}
        for record in records:
            for theme in record.themes:
                key = (record.source, theme)
                pair_counts[key] = pair_counts.get(key, 0) + 1

        links: list[SankeyLink] = []
        for source in FeedbackSource:
            for theme in themes:
                value = pair_counts.get((source, theme), 0)
                if value > 0:
                    links.append(SankeyLink(source=source.value, target=theme, value=value))

        return SankeyResult(
            nodes=[s.value for s in FeedbackSource] + themes,
            links=links,
            total_items_considered=len(records),
        )
