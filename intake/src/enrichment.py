"""Enrichment: sentiment, themes and a summary for one feedback item.

Two enrichers implement the same ``Enricher`` protocol:

    - ``LLMEnricher`` posts a prompt to a text-generation HTTP endpoint
      and parses the reply with ``parse_enrichment_response``.
    - ``LexiconEnricher`` is an offline, deterministic word-list
      enricher used when no endpoint is configured and in tests.

Transport failures from the HTTP enricher surface as ``TimeoutError``
or ``ConnectionError`` subclasses so the pipeline's retry helper treats
them as transient. A reply that parses badly is never an error: the
parser falls back to neutral sentiment, a ``general`` theme and the
first 100 characters of the content.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import httpx

from insights.src.models import Sentiment, clean_labels

logger = logging.getLogger(__name__)

FALLBACK_THEME = "general"
SUMMARY_FALLBACK_CHARS = 100

# ===================================================================
# Errors
# ===================================================================


class EnrichmentError(Exception):
    """Raised when an enrichment call fails."""


class EnrichmentTimeoutError(EnrichmentError, TimeoutError):
    """The enrichment endpoint did not answer in time."""


class EnrichmentUnavailableError(EnrichmentError, ConnectionError):
    """The enrichment endpoint could not be reached or failed server-side."""


# ===================================================================
# Result and protocol
# ===================================================================


@dataclass
class EnrichmentResult:
    """Annotations produced for one feedback item.

    Attributes:
        sentiment: Sentiment label (never ``unknown`` once enriched).
        themes: Theme labels, unique and non-empty.
        summary: One-sentence summary.
    """

    sentiment: Sentiment
    themes: list[str] = field(default_factory=list)
    summary: str = ""

    def __post_init__(self) -> None:
        self.themes = clean_labels(self.themes) or [FALLBACK_THEME]

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "sentiment": self.sentiment.value,
            "themes": list(self.themes),
            "summary": self.summary,
        }


@runtime_checkable
class Enricher(Protocol):
    """Protocol for anything that can annotate feedback text."""

    def enrich(self, text: str) -> EnrichmentResult:
        """Produce sentiment, themes and summary for *text*.

        Args:
            text: Feedback body.

        Returns:
            The enrichment annotations.
        """
        ...


# ===================================================================
# Response parsing
# ===================================================================

_SENTIMENT_LINE = re.compile(r"Sentiment:\s*(positive|negative|neutral)", re.IGNORECASE)
_THEMES_LINE = re.compile(r"Themes?:\s*([^\n]+)", re.IGNORECASE)
_SUMMARY_LINE = re.compile(r"Summary:\s*([^\n]+)", re.IGNORECASE)
_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)
_ENRICHED_SENTIMENTS = {
    Sentiment.POSITIVE.value,
    Sentiment.NEGATIVE.value,
    Sentiment.NEUTRAL.value,
}


def _split_themes(raw: Any) -> list[str]:
    if isinstance(raw, list):
        items = [str(item) for item in raw]
    elif isinstance(raw, str):
        items = raw.strip().strip("[]").split(",")
    else:
        return []
    return clean_labels(item.strip().strip("\"'").lower() for item in items)


def _coerce_sentiment(raw: Any) -> Sentiment:
    value = str(raw or "").strip().lower()
    return Sentiment(value) if value in _ENRICHED_SENTIMENTS else Sentiment.NEUTRAL


def _parse_json_reply(text: str) -> dict[str, Any] | None:
    match = _JSON_OBJECT.search(text)
    if match is None:
        return None
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError:
        logger.warning("Enrichment reply contained malformed JSON")
        return None
    return data if isinstance(data, dict) else None


def parse_enrichment_response(text: str, content: str) -> EnrichmentResult:
    """Parse a model reply into an EnrichmentResult.

    Accepts the line format::

        Sentiment: negative
        Themes: billing, pricing
        Summary: Customer confused by pricing.

    or an embedded JSON object with ``sentiment``, ``theme``/``themes``
    and ``summary`` keys. Missing pieces fall back independently.

    Args:
        text: Raw reply from the model.
        content: Original feedback body (used for the summary fallback).

    Returns:
        Parsed annotations.
    """
    reply = text or ""
    fallback_summary = content[:SUMMARY_FALLBACK_CHARS]

    if _SENTIMENT_LINE.search(reply) or _THEMES_LINE.search(reply):
        sentiment_match = _SENTIMENT_LINE.search(reply)
        themes_match = _THEMES_LINE.search(reply)
        summary_match = _SUMMARY_LINE.search(reply)
        return EnrichmentResult(
            sentiment=_coerce_sentiment(sentiment_match.group(1) if sentiment_match else None),
            themes=_split_themes(themes_match.group(1)) if themes_match else [],
            summary=summary_match.group(1).strip() if summary_match else fallback_summary,
        )

    data = _parse_json_reply(reply)
    if data is not None:
        raw_themes = data.get("themes", data.get("theme"))
        summary = str(data.get("summary") or "").strip()
        return EnrichmentResult(
            sentiment=_coerce_sentiment(data.get("sentiment")),
            themes=_split_themes(raw_themes),
            summary=summary or fallback_summary,
        )

    logger.warning("Unrecognised enrichment reply, using fallbacks")
    return EnrichmentResult(sentiment=Sentiment.NEUTRAL, summary=fallback_summary)


# ===================================================================
# HTTP enricher
# ===================================================================

_PROMPT_TEMPLATE = """Analyze this customer feedback and provide:
1. Sentiment (positive/negative/neutral)
2. Themes (comma-separated lowercase keywords, e.g. performance, billing, docs)
3. A brief one-sentence summary

Feedback: "{content}"

Respond in this exact format:
Sentiment: [positive/negative/neutral]
Themes: [comma,separated,themes]
Summary: [one sentence]"""


@dataclass
class LLMEnricherConfig:
    """Configuration for the HTTP enricher.

    Attributes:
        endpoint: URL of the text-generation endpoint.
        model: Model identifier sent with each request.
        timeout_seconds: Per-request timeout.
        max_tokens: Generation budget for the reply.
        api_key: Optional bearer token.
    """

    endpoint: str
    model: str = "llama-3-8b-instruct"
    timeout_seconds: float = 30.0
    max_tokens: int = 200
    api_key: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary (the API key is never included)."""
        return {
            "endpoint": self.endpoint,
            "model": self.model,
            "timeout_seconds": self.timeout_seconds,
            "max_tokens": self.max_tokens,
        }


class LLMEnricher:
    """Enricher backed by a text-generation HTTP endpoint.

    The endpoint receives ``{"model", "prompt", "max_tokens"}`` and must
    answer with JSON carrying the generated text under ``response`` (or
    ``text``).

    Args:
        config: Endpoint configuration.
        transport: Optional httpx transport (tests use ``httpx.MockTransport``).

    Example::

        enricher = LLMEnricher(LLMEnricherConfig(endpoint="http://localhost:8080/generate"))
        result = enricher.enrich("Billing page keeps timing out")
    """

    def __init__(
        self,
        config: LLMEnricherConfig,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._config = config
        headers = {"Authorization": f"Bearer {config.api_key}"} if config.api_key else {}
        self._client = httpx.Client(
            timeout=config.timeout_seconds,
            headers=headers,
            transport=transport,
        )

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._client.close()

    def build_prompt(self, text: str) -> str:
        """Render the enrichment prompt for *text*."""
        return _PROMPT_TEMPLATE.format(content=text)

    def enrich(self, text: str) -> EnrichmentResult:
        """Call the endpoint and parse its reply.

        Args:
            text: Feedback body.

        Returns:
            Parsed annotations.

        Raises:
            EnrichmentTimeoutError: The request timed out.
            EnrichmentUnavailableError: Network failure or a 5xx reply.
            EnrichmentError: A 4xx reply or a body that is not JSON.
        """
        payload = {
            "model": self._config.model,
            "prompt": self.build_prompt(text),
            "max_tokens": self._config.max_tokens,
        }
        try:
            response = self._client.post(self._config.endpoint, json=payload)
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise EnrichmentTimeoutError(f"Enrichment request timed out: {exc}") from exc
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status >= 500:
                raise EnrichmentUnavailableError(f"Enrichment endpoint returned {status}") from exc
            raise EnrichmentError(f"Enrichment endpoint rejected request ({status})") from exc
        except httpx.TransportError as exc:
            raise EnrichmentUnavailableError(f"Enrichment endpoint unreachable: {exc}") from exc

        try:
            body = response.json()
        except ValueError as exc:
            raise EnrichmentError("Enrichment endpoint returned a non-JSON body") from exc

        reply = ""
        if isinstance(body, dict):
            reply = str(body.get("response") or body.get("text") or "")
        return parse_enrichment_response(reply, text)


# ===================================================================
# Offline lexicon enricher
# ===================================================================

_POSITIVE_WORDS = {
    "amazing",
    "awesome",
    "excellent",
    "fast",
    "fastest",
    "great",
    "incredible",
    "love",
    "loving",
    "needed",
    "perfect",
    "praise",
    "smooth",
    "thanks",
}

_NEGATIVE_WORDS = {
    "blocking",
    "broken",
    "bug",
    "crash",
    "crashes",
    "degradation",
    "error",
    "errors",
    "fail",
    "failing",
    "fails",
    "killing",
    "outage",
    "regression",
    "slow",
    "slower",
    "slowdowns",
    "terrible",
    "timeout",
    "unable",
}

_THEME_KEYWORDS: dict[str, tuple[str, ...]] = {
    "performance": ("slow", "slower", "latency", "fast", "cold start", "speed", "regression"),
    "billing": ("billing", "invoice", "charge", "refund", "subscription"),
    "pricing": ("pricing", "price", "cost", "plan"),
    "database": ("database", "query", "queries", "sql", "rows"),
    "deployment": ("deploy", "deployment", "release", "rollout"),
    "docs": ("documentation", "docs", "tutorial", "guide"),
    "auth": ("login", "password", "sso", "oauth", "auth"),
    "developer-experience": ("dx", "developer experience", "local dev", "cli", "tooling"),
    "reliability": ("outage", "downtime", "crash", "500", "unavailable"),
    "integrations": ("webhook", "integration", "plugin", "sdk"),
}

_TOKEN = re.compile(r"[A-Za-z]+")
_THEME_TOKEN = re.compile(r"[a-z0-9]+")
_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")


class LexiconEnricher:
    """Deterministic word-list enricher.

    Sentiment comes from counting positive and negative keywords, themes
    from keyword matches (whole words, or phrases for multi-word
    keywords), and the summary is the first sentence of the content.

    Args:
        theme_keywords: Optional override of the theme -> keywords map.
    """

    def __init__(self, theme_keywords: dict[str, tuple[str, ...]] | None = None) -> None:
        self._theme_keywords = theme_keywords or _THEME_KEYWORDS

    def score(self, text: str) -> float:
        """Lexicon score in [-1, 1] (0 when no keyword matches)."""
        words = [w.lower() for w in _TOKEN.findall(text)]
        pos = sum(1 for w in words if w in _POSITIVE_WORDS)
        neg = sum(1 for w in words if w in _NEGATIVE_WORDS)
        if pos == 0 and neg == 0:
            return 0.0
        return (pos - neg) / (pos + neg)

    def enrich(self, text: str) -> EnrichmentResult:
        score = self.score(text)
        if score > 0.1:
            sentiment = Sentiment.POSITIVE
        elif score < -0.1:
            sentiment = Sentiment.NEGATIVE
        else:
            sentiment = Sentiment.NEUTRAL

        lowered = text.lower()
        tokens = set(_THEME_TOKEN.findall(lowered))
        themes = [
            theme
            for theme, keywords in self._theme_keywords.items()
            if any(
                (keyword in lowered) if " " in keyword else (keyword in tokens)
                for keyword in keywords
            )
        ]

        first_sentence = _SENTENCE_END.split(text.strip(), maxsplit=1)[0]
        return EnrichmentResult(
            sentiment=sentiment,
            themes=themes,
            summary=first_sentence[:200],
        )
