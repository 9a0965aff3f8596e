"""Delta detection: last 24 hours against the 24 hours before.

Three categories are selected independently of each other:
    - spike: largest delta, at least +2
    - drop: most negative delta, at most -2
    - new: at least 2 current records and none previously, highest count

At most one item per category is returned (three in total). A theme
may appear in more than one category; a spike and a drop can never be
the same theme because their thresholds have opposite signs.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

from insights.src.config import InsightConfig
from insights.src.grouping import dominant_source, group_by_theme
from insights.src.models import (
    DeltaItem,
    DeltaKind,
    FeedbackRecord,
    capitalize_theme,
    ensure_utc,
    utc_now,
)


@dataclass
class ThemeDelta:
    """Per-theme counts in both windows.

    Attributes:
        theme: Theme label.
        current: Records carrying the theme in the current window.
        previous: Records carrying the theme in the previous window.
    """

    theme: str
    current: list[FeedbackRecord]
    previous: list[FeedbackRecord]

    @property
    def count_current(self) -> int:
        return len(self.current)

    @property
    def count_previous(self) -> int:
        return len(self.previous)

    @property
    def delta(self) -> int:
        return self.count_current - self.count_previous


class DeltaDetector:
    """Compares adjacent 24-hour windows per theme.

    Args:
        config: Insight configuration (defaults to standard thresholds).
    """

    def __init__(self, config: InsightConfig | None = None) -> None:
        self._config = config or InsightConfig()

    def theme_deltas(
        self,
        records: Sequence[FeedbackRecord],
        now: datetime | None = None,
    ) -> list[ThemeDelta]:
        """Split the working set into windows and pair theme counts.

        Current window: ``now - 24h <= ingested_at <= now``.
        Previous window: ``now - 48h <= ingested_at < now - 24h``.

        Args:
            records: Working set.
            now: Reference time (defaults to current UTC time).

        Returns:
            One entry per theme seen in either window, current-window
            themes first, each in first-seen order.
        """
        reference = ensure_utc(now) if now is not None else utc_now()
        window = timedelta(hours=self._config.delta_window_hours)
        boundary = reference - window
        start = boundary - window

        current = [r for r in records if boundary <= r.ingested_at <= reference]
        previous = [r for r in records if start <= r.ingested_at < boundary]
        current_groups = group_by_theme(current)
        previous_groups = group_by_theme(previous)

        themes = list(current_groups) + [t for t in previous_groups if t not in current_groups]
        return [
            ThemeDelta(
                theme=theme,
                current=current_groups.get(theme, []),
                previous=previous_groups.get(theme, []),
            )
            for theme in themes
        ]

    def detect(
        self,
        records: Sequence[FeedbackRecord],
        now: datetime | None = None,
    ) -> list[DeltaItem]:
        """Select the top spike, drop and new theme.

        Args:
            records: Working set.
            now: Reference time (defaults to current UTC time).

        Returns:
            Zero to three DeltaItems, ordered spike, drop, new.
        """
        cfg = self._config
        deltas = self.theme_deltas(records, now)

        spike = _pick(
            [d for d in deltas if d.delta >= cfg.delta_threshold],
            key=lambda d: d.delta,
        )
        drop = _pick(
            [d for d in deltas if d.delta <= -cfg.delta_threshold],
            key=lambda d: -d.delta,
        )
        new = _pick(
            [
                d
                for d in deltas
                if d.count_current >= cfg.new_theme_min_count and d.count_previous == 0
            ],
            key=lambda d: d.count_current,
        )

        results: list[DeltaItem] = []
        if spike is not None:
            results.append(self._build(DeltaKind.SPIKE, spike))
        if drop is not None:
            results.append(self._build(DeltaKind.DROP, drop))
        if new is not None:
            results.append(self._build(DeltaKind.NEW, new))
        return results

    def _build(self, kind: DeltaKind, entry: ThemeDelta) -> DeltaItem:
        """Turn a selected theme into a labelled DeltaItem."""
        display = capitalize_theme(entry.theme)
        if kind == DeltaKind.SPIKE:
            label = f"🔺 {display} feedback increased (+{entry.delta})"
        elif kind == DeltaKind.DROP:
            label = f"🔻 {display} feedback decreased ({entry.delta})"
        else:
            label = f"🆕 New theme detected: {display} ({entry.count_current} items)"

        return DeltaItem(
            kind=kind,
            theme=entry.theme,
            source=dominant_source(entry.current or entry.previous),
            count_current=entry.count_current,
            count_previous=entry.count_previous,
            delta=entry.delta,
            label=label,
        )


def _pick(
    candidates: list[ThemeDelta],
    key: Callable[[ThemeDelta], int],
) -> ThemeDelta | None:
    """Return the candidate with the highest key, first one on ties."""
    if not candidates:
        return None
    return max(candidates, key=key)
