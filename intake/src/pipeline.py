"""Intake pipeline: ingestion, enrichment and triage of feedback items.

Ingestion stores a record with no annotations. Enrichment sets
sentiment, themes and summary together in a single update; triage
changes only the workflow status. The enrichment call is the only
network boundary, so it is the only step wrapped in retries.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from insights.src.models import (
    FeedbackRecord,
    FeedbackSource,
    FeedbackStatus,
    ensure_utc,
    utc_now,
)
from intake.src.enrichment import Enricher, EnrichmentResult
from intake.src.storage import FeedbackStorage
from shared.hardening import InputValidator, RetryConfig, retry_with_backoff

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 10_000
MAX_TITLE_LENGTH = 500


class IntakeError(Exception):
    """Raised for pipeline errors (record not found, already enriched)."""


class RecordNotFoundError(IntakeError):
    """Raised when the requested feedback record does not exist."""


@dataclass
class IngestRequest:
    """Fields accepted when ingesting a new feedback item.

    Attributes:
        source: Channel the feedback came from.
        content: Body text (required, non-empty after cleaning).
        created_at: When the feedback originated (defaults to now).
        external_id: Identifier in the originating system.
        url: Link back to the original item.
        title: Optional title.
        author_handle: Optional author handle.
        urgency: Optional urgency level from 1 to 5.
        product_area: Optional product area.
        tags: Free-form tags.
        record_id: Explicit ID (generated when absent).
    """

    source: FeedbackSource | str
    content: str
    created_at: datetime | None = None
    external_id: str | None = None
    url: str | None = None
    title: str | None = None
    author_handle: str | None = None
    urgency: int | None = None
    product_area: str | None = None
    tags: list[str] = field(default_factory=list)
    record_id: str | None = None


class IntakePipeline:
    """Coordinates the record store and the enricher.

    Args:
        storage: Record store (schema already initialised).
        enricher: Enricher used for annotation.
        retry_config: Retry settings for the enrichment call.
        clock: Callable returning the current UTC time.
        sleep_func: Injectable sleep for the retry helper (tests).
    """

    def __init__(
        self,
        storage: FeedbackStorage,
        enricher: Enricher,
        retry_config: RetryConfig | None = None,
        clock: Callable[[], datetime] | None = None,
        sleep_func: Callable[[float], None] | None = None,
    ) -> None:
        self._storage = storage
        self._enricher = enricher
        self._retry_config = retry_config or RetryConfig()
        self._clock = clock or utc_now
        self._sleep = sleep_func
        self._validator = InputValidator()

    @property
    def storage(self) -> FeedbackStorage:
        return self._storage

    # ---------------------------------------------------------------
    # Ingestion
    # ---------------------------------------------------------------

    def ingest(self, request: IngestRequest) -> FeedbackRecord:
        """Store a new, unenriched feedback record.

        Args:
            request: Incoming feedback fields.

        Returns:
            The stored record (sentiment unknown, no themes, status new).

        Raises:
            ValidationError: If the content is empty after cleaning.
            InsightError: If the source or urgency is invalid.
            FeedbackStorageError: If the explicit ID already exists.
        """
        now = ensure_utc(self._clock())
        content = self._validator.require_text(
            request.content, "content", max_length=MAX_CONTENT_LENGTH
        )
        title = None
        if request.title:
            title = self._validator.sanitize_string(request.title, max_length=MAX_TITLE_LENGTH)

        record = FeedbackRecord(
            id=request.record_id or FeedbackRecord.generate_id(),
            source=request.source,
            content=content,
            created_at=request.created_at or now,
            ingested_at=now,
            external_id=request.external_id,
            url=request.url,
            title=title or None,
            author_handle=request.author_handle,
            urgency=request.urgency,
            product_area=request.product_area,
            tags=request.tags,
        )
        self._storage.create_record(record)
        logger.info("Ingested feedback %s from %s", record.id, record.source.value)
        return record

    # ---------------------------------------------------------------
    # Enrichment
    # ---------------------------------------------------------------

    def enrich(self, record_id: str, *, force: bool = False) -> FeedbackRecord:
        """Annotate a record through the enricher, with retries.

        Sentiment, themes and summary are written together, so a reader
        never sees a partially enriched record.

        Args:
            record_id: Record to enrich.
            force: Re-enrich a record that already has annotations.

        Returns:
            The enriched record.

        Raises:
            RecordNotFoundError: If the record does not exist.
            IntakeError: If the record is already enriched.
            RetriesExhaustedError: If every enrichment attempt failed transiently.
            EnrichmentError: If the enricher failed permanently.
        """
        record = self._require(record_id)
        if record.is_enriched and not force:
            raise IntakeError(f"Feedback already enriched: {record_id}")

        result: EnrichmentResult = retry_with_backoff(
            self._enricher.enrich,
            self._retry_config,
            record.content,
            sleep_func=self._sleep,
        )
        record.sentiment = result.sentiment
        record.themes = list(result.themes)
        record.summary = result.summary
        self._storage.update_record(record)
        logger.info(
            "Enriched feedback %s: %s, themes=%s",
            record.id,
            record.sentiment.value,
            ",".join(record.themes),
        )
        return record

    def enrich_pending(self, limit: int | None = None) -> list[FeedbackRecord]:
        """Enrich every record that has not been enriched yet.

        Records whose enrichment fails are logged and left unenriched so
        a later run can pick them up.

        Args:
            limit: Maximum records to process.

        Returns:
            The records that were enriched.
        """
        enriched: list[FeedbackRecord] = []
        for record in self._storage.get_unenriched(limit):
            try:
                enriched.append(self.enrich(record.id))
            except Exception as exc:
                logger.warning("Enrichment failed for %s: %s", record.id, exc)
        logger.info("Enriched %d pending feedback records", len(enriched))
        return enriched

    # ---------------------------------------------------------------
    # Triage
    # ---------------------------------------------------------------

    def triage(self, record_id: str, status: FeedbackStatus | str) -> FeedbackRecord:
        """Set the workflow status of a record.

        Args:
            record_id: Record to update.
            status: New status.

        Returns:
            The updated record.

        Raises:
            RecordNotFoundError: If the record does not exist.
            ValueError: If the status is not a known value.
        """
        new_status = FeedbackStatus(status)
        record = self._require(record_id)
        record.status = new_status
        self._storage.update_record(record)
        logger.info("Feedback %s marked %s", record_id, new_status.value)
        return record

    def _require(self, record_id: str) -> FeedbackRecord:
        record = self._storage.get_record(record_id)
        if record is None:
            raise RecordNotFoundError(f"Feedback not found: {record_id}")
        return record

