"""Insights data models for feedback analytics.

Defines the normalized feedback record, the filter set shared by every
analytics computation, and the derived result types (theme counts, trend
points, heatmap/sankey aggregates, focus items, delta items). All models
are dataclasses with dictionary serialization for the HTTP layer.
"""

from __future__ import annotations

import dataclasses
import logging
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from urllib.parse import urlencode

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 7


class InsightError(Exception):
    """Raised when a model is constructed from ill-typed values."""


# ===================================================================
# Enums
# ===================================================================


class FeedbackSource(str, Enum):
    """Channel a feedback item arrived from.

    Declaration order is the fixed channel order used by every
    aggregate that iterates sources.
    """

    X = "x"
    GITHUB = "github"
    DISCORD = "discord"
    SUPPORT = "support"
    EMAIL = "email"
    FORUM = "forum"


class Sentiment(str, Enum):
    """Sentiment label assigned during enrichment."""

    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"
    UNKNOWN = "unknown"


# Column order of the theme x sentiment matrix
SENTIMENT_AXIS: tuple[Sentiment, ...] = (
    Sentiment.NEGATIVE,
    Sentiment.NEUTRAL,
    Sentiment.POSITIVE,
    Sentiment.UNKNOWN,
)


class FeedbackStatus(str, Enum):
    """Workflow status set by a human triager."""

    NEW = "new"
    TRIAGED = "triaged"
    IGNORED = "ignored"


class Tier(str, Enum):
    """Coarse low/medium/high bucket used for signal and confidence."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SuggestedAction(str, Enum):
    """What a product manager should do with a focus item."""

    INVESTIGATE = "Investigate"
    MONITOR = "Monitor"
    IGNORE = "Ignore"


class DeltaKind(str, Enum):
    """Classification of a 24h-over-24h theme change."""

    SPIKE = "spike"
    DROP = "drop"
    NEW = "new"


# ===================================================================
# Helpers
# ===================================================================


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC, treating naive values as UTC.

    Args:
        value: Any datetime.

    Returns:
        The same instant as an aware UTC datetime.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse an ISO-8601 timestamp (``Z`` suffix accepted) to aware UTC."""
    if isinstance(value, datetime):
        return ensure_utc(value)
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


def clean_labels(labels: Iterable[str] | None) -> list[str]:
    """Strip labels, dropping empties and duplicates (first occurrence wins)."""
    seen: set[str] = set()
    cleaned: list[str] = []
    for raw in labels or []:
        label = str(raw).strip()
        if not label or label in seen:
            continue
        seen.add(label)
        cleaned.append(label)
    return cleaned


def capitalize_theme(theme: str) -> str:
    """Upper-case the first character of a theme label for display."""
    return theme[:1].upper() + theme[1:]


def _coerce_enum(enum_cls: type[Enum], value: Any, field_name: str) -> Any:
    try:
        return enum_cls(value)
    except ValueError as exc:
        raise InsightError(f"Invalid {field_name}: {value!r}") from exc


# ===================================================================
# FeedbackRecord
# ===================================================================


@dataclass
class FeedbackRecord:
    """One normalized item of external feedback.

    Sentiment is ``unknown``, themes empty and summary absent until the
    enrichment collaborator sets all three together. Status may change
    independently during triage.

    Attributes:
        id: Unique, stable identifier (prefixed with 'fb_').
        source: Channel the feedback came from.
        content: Body text, never empty.
        created_at: When the feedback originated.
        ingested_at: When the system received it. Every recency
            computation uses this timestamp.
        sentiment: Enrichment sentiment label.
        themes: Theme labels, unique and non-empty.
        summary: One-sentence enrichment summary.
        external_id: Identifier in the originating system.
        url: Link back to the original item.
        title: Optional title (issues, tickets).
        author_handle: Optional author handle.
        urgency: Optional urgency level from 1 to 5.
        status: Triage workflow status.
        product_area: Optional product area label.
        tags: Free-form tags, unique and non-empty.
    """

    id: str
    source: FeedbackSource
    content: str
    created_at: datetime
    ingested_at: datetime
    sentiment: Sentiment = Sentiment.UNKNOWN
    themes: list[str] = field(default_factory=list)
    summary: str | None = None
    external_id: str | None = None
    url: str | None = None
    title: str | None = None
    author_handle: str | None = None
    urgency: int | None = None
    status: FeedbackStatus = FeedbackStatus.NEW
    product_area: str | None = None
    tags: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.content or not self.content.strip():
            raise InsightError("Feedback content must not be empty")
        if self.urgency is not None and not 1 <= self.urgency <= 5:
            raise InsightError(f"Urgency must be between 1 and 5, got {self.urgency}")
        self.source = _coerce_enum(FeedbackSource, self.source, "source")
        self.sentiment = _coerce_enum(Sentiment, self.sentiment or "unknown", "sentiment")
        self.status = _coerce_enum(FeedbackStatus, self.status or "new", "status")
        self.created_at = ensure_utc(self.created_at)
        self.ingested_at = ensure_utc(self.ingested_at)
        self.themes = clean_labels(self.themes)
        self.tags = clean_labels(self.tags)

    @staticmethod
    def generate_id() -> str:
        """Generate a unique record ID.

        Returns:
            A prefixed UUID string like 'fb_abc123def456'.
        """
        return f"fb_{uuid.uuid4().hex[:12]}"

    @property
    def is_enriched(self) -> bool:
        """Whether enrichment has run (summary presence is the signal)."""
        return self.summary is not None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary.

        Returns:
            Dictionary with all fields, enums as values, datetimes as ISO strings.
        """
        return {
            "id": self.id,
            "source": self.source.value,
            "external_id": self.external_id,
            "url": self.url,
            "title": self.title,
            "content": self.content,
            "author_handle": self.author_handle,
            "created_at": self.created_at.isoformat(),
            "ingested_at": self.ingested_at.isoformat(),
            "sentiment": self.sentiment.value,
            "themes": list(self.themes),
            "summary": self.summary,
            "urgency": self.urgency,
            "status": self.status.value,
            "product_area": self.product_area,
            "tags": list(self.tags),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FeedbackRecord:
        """Deserialize from dictionary.

        ``ingested_at`` falls back to ``created_at`` when absent.

        Args:
            data: Dictionary with record fields.

        Returns:
            Reconstructed FeedbackRecord instance.
        """
        created_at = parse_timestamp(data["created_at"])
        ingested_raw = data.get("ingested_at")
        return cls(
            id=data["id"],
            source=data["source"],
            content=data["content"],
            created_at=created_at,
            ingested_at=parse_timestamp(ingested_raw) if ingested_raw else created_at,
            sentiment=data.get("sentiment") or Sentiment.UNKNOWN,
            themes=data.get("themes") or [],
            summary=data.get("summary"),
            external_id=data.get("external_id"),
            url=data.get("url"),
            title=data.get("title"),
            author_handle=data.get("author_handle"),
            urgency=data.get("urgency"),
            status=data.get("status") or FeedbackStatus.NEW,
            product_area=data.get("product_area"),
            tags=data.get("tags") or [],
        )


# ===================================================================
# FilterSet
# ===================================================================

_QUERY_KEYS = ("source", "sentiment", "status", "theme", "q", "days")


@dataclass(frozen=True)
class FilterSet:
    """Optional constraints applied uniformly to every computation.

    Constraints combine with logical AND. An empty FilterSet matches
    every record. ``days`` of 0 means all time; ``None`` means no
    time restriction when filtering and the default window length
    when a computation needs one.

    Attributes:
        source: Exact source channel value.
        sentiment: Exact sentiment value.
        status: Exact workflow status value.
        theme: Theme label the record must carry.
        q: Case-insensitive substring matched against title or content.
        days: Day-window length.
    """

    source: str | None = None
    sentiment: str | None = None
    status: str | None = None
    theme: str | None = None
    q: str | None = None
    days: int | None = None

    @property
    def is_empty(self) -> bool:
        """True when no constraint is set."""
        return all(getattr(self, key) is None for key in _QUERY_KEYS)

    @property
    def window_days(self) -> int:
        """Window length for computations that need one (0 = all time)."""
        return DEFAULT_WINDOW_DAYS if self.days is None else self.days

    def replace(self, **changes: Any) -> FilterSet:
        """Return a copy with the given fields replaced."""
        return dataclasses.replace(self, **changes)

    def to_query(self) -> dict[str, str]:
        """Serialize to the flat query-string mapping.

        Returns:
            Mapping containing only the keys that are set.
        """
        query: dict[str, str] = {}
        for key in _QUERY_KEYS:
            value = getattr(self, key)
            if value is None:
                continue
            query[key] = str(value.value if isinstance(value, Enum) else value)
        return query

    def cache_key(self, prefix: str) -> str:
        """Build a stable cache key for a computation over this filter set.

        Args:
            prefix: Name of the computation (e.g. 'recommended').

        Returns:
            Key of the form ``<prefix>:<sorted query string>``.
        """
        return f"{prefix}:{urlencode(sorted(self.to_query().items()))}"

    @classmethod
    def from_query(cls, params: Mapping[str, Any]) -> FilterSet:
        """Parse the flat query-string representation.

        Blank values count as absent. An unparseable or negative ``days``
        falls back to the default window instead of failing.

        Args:
            params: Query parameters (e.g. ``request.query_params``).

        Returns:
            Parsed FilterSet.
        """
        values: dict[str, Any] = {}
        for key in ("source", "sentiment", "status", "theme", "q"):
            raw = params.get(key)
            if raw is not None and str(raw).strip():
                values[key] = str(raw).strip()

        raw_days = params.get("days")
        if raw_days is not None and str(raw_days).strip():
            values["days"] = _parse_days(str(raw_days))
        return cls(**values)


def _parse_days(raw: str) -> int:
    try:
        days = int(raw.strip())
    except ValueError:
        logger.warning("Unparseable days filter %r, using %d", raw, DEFAULT_WINDOW_DAYS)
        return DEFAULT_WINDOW_DAYS
    if days < 0:
        logger.warning("Negative days filter %d, using %d", days, DEFAULT_WINDOW_DAYS)
        return DEFAULT_WINDOW_DAYS
    return days


# ===================================================================
# Theme aggregates
# ===================================================================


@dataclass
class ThemeCount:
    """Number of records carrying a theme."""

    theme: str
    count: int

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {"theme": self.theme, "count": self.count}


@dataclass
class ThemesResult:
    """Top-N theme counts over a working set.

    Attributes:
        window_days: Window length the working set was drawn from.
        total_items_considered: Number of records in the working set.
        themes: Theme counts, highest first.
    """

    window_days: int
    total_items_considered: int
    themes: list[ThemeCount]

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "window_days": self.window_days,
            "total_items_considered": self.total_items_considered,
            "themes": [t.to_dict() for t in self.themes],
        }


@dataclass
class HeatmapResult:
    """Theme x sentiment count matrix.

    Attributes:
        themes: Row labels (top themes, in ranking order).
        sentiments: Column labels (fixed sentiment axis).
        matrix: ``matrix[row][col]`` is the number of records with that
            theme and that sentiment.
        total_items_considered: Number of records in the working set.
    """

    themes: list[str]
    sentiments: list[str]
    matrix: list[list[int]]
    total_items_considered: int

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "themes": list(self.themes),
            "sentiments": list(self.sentiments),
            "matrix": [list(row) for row in self.matrix],
            "total_items_considered": self.total_items_considered,
        }


@dataclass
class SankeyLink:
    """Weighted source -> theme edge."""

    source: str
    target: str
    value: int

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {"source": self.source, "target": self.target, "value": self.value}


@dataclass
class SankeyResult:
    """Source -> theme flow graph.

    Attributes:
        nodes: Node names, all sources first then top themes.
        links: Non-zero source -> theme edges.
        total_items_considered: Number of records in the working set.
    """

    nodes: list[str]
    links: list[SankeyLink]
    total_items_considered: int

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "nodes": [{"name": name} for name in self.nodes],
            "links": [link.to_dict() for link in self.links],
            "total_items_considered": self.total_items_considered,
        }


# ===================================================================
# Trend
# ===================================================================


@dataclass
class TrendPoint:
    """Record count for one UTC calendar day."""

    date: str
    count: int
    is_spike: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {"date": self.date, "count": self.count, "is_spike": self.is_spike}


@dataclass
class TrendResult:
    """Day-bucketed counts over a window.

    Attributes:
        points: One point per day, ascending, zero-filled.
        window_days: Window length; there are ``window_days + 1`` points.
        total_items_considered: Records counted into the points.
    """

    points: list[TrendPoint]
    window_days: int
    total_items_considered: int

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "points": [p.to_dict() for p in self.points],
            "window_days": self.window_days,
            "total_items_considered": self.total_items_considered,
        }


# ===================================================================
# Focus and delta items
# ===================================================================


@dataclass
class SupportingStats:
    """Numbers behind a focus recommendation.

    Attributes:
        item_count: Records in the theme group.
        source_count: Distinct sources in the group.
        negative_count: Negative records in the group.
        window_days: Recency window length.
        recent_share: Fraction of the group inside the recency window.
    """

    item_count: int
    source_count: int
    negative_count: int
    window_days: int
    recent_share: float

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "item_count": self.item_count,
            "source_count": self.source_count,
            "negative_count": self.negative_count,
            "window_days": self.window_days,
            "recent_share": self.recent_share,
        }


@dataclass
class FocusItem:
    """A ranked recommendation of which theme deserves attention.

    Recommendations are advisory: they rank themes for a human to
    look at, they never trigger anything.

    Attributes:
        id: Identifier derived from the theme ('focus-<theme>').
        title: Display title.
        theme: Theme this recommendation is about.
        source: Dominant source of the theme group.
        score: Heuristic score (higher is more urgent).
        signal: Score tier.
        explanation: Short text with volume, negativity and recency.
        suggested_action: Action derived from the signal tier.
        confidence: Tier from sample size, source diversity and recency.
        coverage_text: Text describing the evidence coverage.
        supporting_stats: The numbers behind the score.
    """

    id: str
    title: str
    theme: str
    source: FeedbackSource | None
    score: float
    signal: Tier
    explanation: str
    suggested_action: SuggestedAction
    confidence: Tier
    coverage_text: str
    supporting_stats: SupportingStats

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary.

        Returns:
            Dictionary with enums as values and nested stats serialized.
        """
        return {
            "id": self.id,
            "title": self.title,
            "theme": self.theme,
            "source": self.source.value if self.source else None,
            "score": self.score,
            "signal": self.signal.value,
            "explanation": self.explanation,
            "suggested_action": self.suggested_action.value,
            "confidence": self.confidence.value,
            "coverage_text": self.coverage_text,
            "supporting_stats": self.supporting_stats.to_dict(),
        }


@dataclass
class DeltaItem:
    """A theme whose volume changed notably between adjacent 24h windows.

    Attributes:
        kind: spike, drop or new.
        theme: Theme label.
        source: Dominant source of the theme in the window that has records.
        count_current: Records in the last 24 hours.
        count_previous: Records 24-48 hours ago.
        delta: ``count_current - count_previous``.
        label: Human-readable description.
    """

    kind: DeltaKind
    theme: str
    source: FeedbackSource | None
    count_current: int
    count_previous: int
    delta: int
    label: str

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "kind": self.kind.value,
            "theme": self.theme,
            "source": self.source.value if self.source else None,
            "count_current": self.count_current,
            "count_previous": self.count_previous,
            "delta": self.delta,
            "label": self.label,
        }
