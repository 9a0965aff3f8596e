"""Trend analysis: calendar-day buckets with z-score spike flags.

Spike detection is a simple anomaly heuristic, not a statistical test:
a day is flagged when its count sits more than ``spike_z_threshold``
population standard deviations above the window mean. It carries no
significance guarantee and flags nothing when every day is equal.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import date, datetime, timedelta

import numpy as np

from insights.src.config import InsightConfig
from insights.src.models import FeedbackRecord, TrendPoint, TrendResult, ensure_utc, utc_now

logger = logging.getLogger(__name__)


class TrendAnalyzer:
    """Buckets a working set into one count per UTC day.

    Args:
        config: Insight configuration (defaults to standard thresholds).
    """

    def __init__(self, config: InsightConfig | None = None) -> None:
        self._config = config or InsightConfig()

    def analyze(
        self,
        records: Sequence[FeedbackRecord],
        window_days: int,
        now: datetime | None = None,
    ) -> TrendResult:
        """Build the daily trend series for ``[today - window_days, today]``.

        Every day in the range appears exactly once, ascending, even when
        its count is zero. Records whose ingestion date lies outside the
        range are not counted.

        Args:
            records: Working set.
            window_days: Days to look back; non-positive uses the default window.
            now: Reference time (defaults to current UTC time).

        Returns:
            TrendResult with ``window_days + 1`` points.
        """
        if window_days <= 0:
            window_days = self._config.default_window_days
        reference = ensure_utc(now) if now is not None else utc_now()
        today = reference.date()
        start = today - timedelta(days=window_days)

        day_counts: dict[date, int] = {}
        for record in records:
            day = record.ingested_at.date()
            if start <= day <= today:
                day_counts[day] = day_counts.get(day, 0) + 1

        points = [
            TrendPoint(date=day.isoformat(), count=day_counts.get(day, 0))
            for day in (start + timedelta(days=offset) for offset in range(window_days + 1))
        ]
        self._flag_spikes(points)

        return TrendResult(
            points=points,
            window_days=window_days,
            total_items_considered=sum(day_counts.values()),
        )

    def _flag_spikes(self, points: list[TrendPoint]) -> None:
        """Mark points whose z-score exceeds the threshold.

        Args:
            points: Daily points, mutated in place.
        """
        counts = np.array([p.count for p in points], dtype=float)
        mean = float(counts.mean())
        stddev = float(counts.std())
        if stddev == 0.0:
            return

        for point in points:
            z_score = (point.count - mean) / stddev
            if z_score > self._config.spike_z_threshold and point.count > 0:
                point.is_spike = True
                logger.debug(
                    "Trend spike on %s (count=%d, z=%.2f)", point.date, point.count, z_score
                )
