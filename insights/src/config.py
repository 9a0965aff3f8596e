"""Tunable constants for the insight computations.

Every threshold used by the aggregators, recommenders and detectors
lives here so a deployment can adjust them in one place. Defaults
reproduce the documented heuristics exactly.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any

from insights.src.models import DEFAULT_WINDOW_DAYS


@dataclass
class InsightConfig:
    """Configuration for the analytics layer.

    Attributes:
        default_window_days: Window used when a filter set has no day-window.
        top_theme_limit: Number of themes kept by top-N rollups.
        focus_limit: Maximum number of focus recommendations returned.
        recency_days: Fixed recency window for focus scoring.
        recency_majority: Recent share above which the recency bonus applies.
        recency_multiplier: Score multiplier for mostly-recent themes.
        high_signal_score: Minimum score for a high signal.
        medium_signal_score: Minimum score for a medium signal.
        high_confidence_volume: Volume needed for high confidence.
        high_confidence_sources: Distinct sources needed for high confidence.
        high_confidence_recent_share: Recent share needed for high confidence.
        medium_confidence_volume: Volume needed for medium confidence.
        medium_confidence_sources: Distinct sources needed for medium confidence.
        medium_confidence_recent_share: Recent share needed for medium confidence.
        spike_z_threshold: Z-score a day must exceed to be flagged a spike.
        delta_window_hours: Length of each delta comparison window.
        delta_threshold: Minimum absolute delta for a spike or drop.
        new_theme_min_count: Minimum current count for a new theme.
        cache_ttl_seconds: Lifetime of memoised analytics results.
    """

    default_window_days: int = DEFAULT_WINDOW_DAYS
    top_theme_limit: int = 15
    focus_limit: int = 3
    recency_days: int = 7
    recency_majority: float = 0.5
    recency_multiplier: float = 1.5
    high_signal_score: float = 10.0
    medium_signal_score: float = 5.0
    high_confidence_volume: int = 10
    high_confidence_sources: int = 2
    high_confidence_recent_share: float = 0.6
    medium_confidence_volume: int = 5
    medium_confidence_sources: int = 1
    medium_confidence_recent_share: float = 0.4
    spike_z_threshold: float = 2.0
    delta_window_hours: int = 24
    delta_threshold: int = 2
    new_theme_min_count: int = 2
    cache_ttl_seconds: int = 600

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InsightConfig:
        """Deserialize from dictionary, ignoring unknown keys.

        Args:
            data: Dict with configuration values.

        Returns:
            InsightConfig instance with defaults for missing keys.
        """
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})
