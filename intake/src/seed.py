"""Deterministic demo data spanning the last 48 hours.

Records are placed relative to ``now`` so both delta windows are
populated: eight in the last 24 hours and two between 24 and 48 hours
ago. Every record is already enriched, which makes the dashboard
meaningful without an enrichment endpoint.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from insights.src.models import FeedbackRecord, ensure_utc, utc_now
from intake.src.storage import FeedbackStorage

logger = logging.getLogger(__name__)

# (hours ago, fields)
_SEED_ROWS: list[tuple[int, dict[str, Any]]] = [
    (
        5,
        {
            "source": "github",
            "title": "Workers AI cold start latency",
            "content": "Workers AI is great but cold starts are killing my real-time use case.",
            "url": "https://github.com/example/workers-sdk/issues/1",
            "sentiment": "negative",
            "themes": ["performance", "workers-ai"],
            "summary": "User experiencing high cold start latency with Workers AI",
            "urgency": 4,
        },
    ),
    (
        10,
        {
            "source": "github",
            "title": "D1 query performance degradation",
            "content": "Since migrating to D1 we see big slowdowns on tables over 100k rows.",
            "url": "https://github.com/example/workers-sdk/issues/2",
            "sentiment": "negative",
            "themes": ["database", "performance", "d1"],
            "summary": "D1 query performance degrades with large datasets",
            "urgency": 5,
            "status": "triaged",
        },
    ),
    (
        2,
        {
            "source": "discord",
            "content": "Deployed my first Worker today and the local dev experience is amazing!",
            "sentiment": "positive",
            "themes": ["developer-experience", "wrangler"],
            "summary": "Positive feedback on the local development experience",
            "urgency": 1,
        },
    ),
    (
        36,
        {
            "source": "support",
            "title": "Unable to bind multiple D1 databases",
            "content": "Our multi-tenant setup needs a different D1 database bound per tenant.",
            "sentiment": "neutral",
            "themes": ["architecture", "d1", "multi-tenancy"],
            "summary": "Customer needs dynamic D1 database binding per tenant",
            "urgency": 3,
            "status": "triaged",
        },
    ),
    (
        3,
        {
            "source": "x",
            "content": "Pages deployment just took 3 minutes. What is going on?",
            "url": "https://x.com/example/status/1",
            "sentiment": "negative",
            "themes": ["pages", "deployment", "performance"],
            "summary": "User reporting slow Pages deployment times",
            "urgency": 3,
        },
    ),
    (
        30,
        {
            "source": "discord",
            "content": "The new Images API is exactly what we needed.",
            "sentiment": "positive",
            "themes": ["images", "cdn"],
            "summary": "Very positive feedback on Images API features",
            "urgency": 1,
        },
    ),
    (
        15,
        {
            "source": "github",
            "title": "Billing confusion",
            "content": "Trying to understand R2 pricing for 500TB of storage with heavy reads.",
            "url": "https://github.com/example/workers-sdk/issues/3",
            "sentiment": "neutral",
            "themes": ["billing", "pricing", "r2"],
            "summary": "Customer confused about the R2 pricing model",
            "urgency": 2,
        },
    ),
    (
        18,
        {
            "source": "github",
            "title": "Another billing question",
            "content": "How does billing work for Workers AI inference requests?",
            "url": "https://github.com/example/workers-sdk/issues/4",
            "sentiment": "neutral",
            "themes": ["billing", "workers-ai"],
            "summary": "Questions about Workers AI billing",
            "urgency": 2,
        },
    ),
    (
        4,
        {
            "source": "github",
            "title": "Performance regression in Workers",
            "content": "After the latest deployment our Workers respond 50ms slower on average.",
            "url": "https://github.com/example/workers-sdk/issues/5",
            "sentiment": "negative",
            "themes": ["performance", "workers"],
            "summary": "Performance regression detected in the Workers runtime",
            "urgency": 4,
        },
    ),
    (
        6,
        {
            "source": "x",
            "content": "Workers is the fastest edge runtime I have used.",
            "url": "https://x.com/example/status/2",
            "sentiment": "positive",
            "themes": ["performance", "workers"],
            "summary": "Praise for Workers performance",
            "urgency": 1,
        },
    ),
]


def build_seed_records(now: datetime | None = None) -> list[FeedbackRecord]:
    """Build the demo records relative to *now*.

    Args:
        now: Reference time (defaults to current UTC time).

    Returns:
        Ten enriched records with IDs ``seed-1`` to ``seed-10``.
    """
    reference = ensure_utc(now) if now is not None else utc_now()
    records: list[FeedbackRecord] = []
    for index, (hours_ago, fields) in enumerate(_SEED_ROWS, start=1):
        timestamp = reference - timedelta(hours=hours_ago)
        records.append(
            FeedbackRecord(
                id=f"seed-{index}",
                created_at=timestamp,
                ingested_at=timestamp,
                **fields,
            )
        )
    return records


def seed_storage(storage: FeedbackStorage, now: datetime | None = None) -> int:
    """Replace the store's contents with the demo records.

    Args:
        storage: Record store to reset.
        now: Reference time for the relative timestamps.

    Returns:
        Number of records loaded.
    """
    records = build_seed_records(now)
    storage.clear()
    count = storage.create_many(records)
    logger.info("Seeded %d feedback records", count)
    return count
