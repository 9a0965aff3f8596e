"""SQLite-backed record store for feedback items.

Implements the ``RecordSource`` protocol consumed by the insight
service, plus plain CRUD used by the intake pipeline. Timestamps are
stored as UTC ISO strings with fixed precision so lexicographic order
matches chronological order.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from insights.src.filtering import apply_filters
from insights.src.models import FeedbackRecord, FilterSet, ensure_utc, utc_now

logger = logging.getLogger(__name__)

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS feedback (
    id TEXT PRIMARY KEY,
    source TEXT NOT NULL,
    external_id TEXT,
    url TEXT,
    title TEXT,
    content TEXT NOT NULL,
    author_handle TEXT,
    created_at TEXT NOT NULL,
    ingested_at TEXT NOT NULL,
    sentiment TEXT NOT NULL DEFAULT 'unknown',
    themes_json TEXT DEFAULT '[]',
    summary TEXT,
    urgency INTEGER,
    status TEXT NOT NULL DEFAULT 'new',
    product_area TEXT,
    tags_json TEXT DEFAULT '[]'
);

CREATE INDEX IF NOT EXISTS idx_feedback_created
    ON feedback(created_at);
CREATE INDEX IF NOT EXISTS idx_feedback_ingested
    ON feedback(ingested_at);
CREATE INDEX IF NOT EXISTS idx_feedback_source
    ON feedback(source);
"""

_COLUMNS = (
    "id",
    "source",
    "external_id",
    "url",
    "title",
    "content",
    "author_handle",
    "created_at",
    "ingested_at",
    "sentiment",
    "themes_json",
    "summary",
    "urgency",
    "status",
    "product_area",
    "tags_json",
)


class FeedbackStorageError(Exception):
    """Raised for storage-level errors (duplicates, not found, etc.)."""


def _timestamp(value: datetime) -> str:
    return ensure_utc(value).isoformat(timespec="microseconds")


class FeedbackStorage:
    """SQLite-backed storage for feedback records.

    Args:
        db_path: Path to SQLite database file, or ':memory:' for in-memory.

    Example::

        with FeedbackStorage("feedback.db") as store:
            store.initialize_schema()
            store.create_record(record)
            store.fetch_feedback(FilterSet(source="github"))
    """

    def __init__(self, db_path: str | Path = ":memory:") -> None:
        self._db_path = str(db_path)
        self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        # One connection is shared by the router threadpool; serialise access.
        self._lock = threading.RLock()

    def __enter__(self) -> FeedbackStorage:
        """Enter context manager."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Close the database connection."""
        self.close()

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()

    def initialize_schema(self) -> None:
        """Create the table and indexes if they don't exist."""
        with self._lock:
            self._conn.executescript(_SCHEMA_SQL)
            self._conn.commit()

    # ---------------------------------------------------------------
    # CRUD
    # ---------------------------------------------------------------

    def create_record(self, record: FeedbackRecord) -> FeedbackRecord:
        """Insert a new record.

        Args:
            record: Record to insert.

        Returns:
            The inserted record.

        Raises:
            FeedbackStorageError: If a record with the same ID exists.
        """
        placeholders = ", ".join("?" for _ in _COLUMNS)
        try:
            with self._lock:
                self._conn.execute(
                    f"INSERT INTO feedback ({', '.join(_COLUMNS)}) VALUES ({placeholders})",
                    self._record_values(record),
                )
                self._conn.commit()
        except sqlite3.IntegrityError as exc:
            raise FeedbackStorageError(f"Feedback already exists: {record.id}") from exc
        return record

    def create_many(self, records: list[FeedbackRecord]) -> int:
        """Insert several records in one transaction.

        Args:
            records: Records to insert.

        Returns:
            Number of records inserted.

        Raises:
            FeedbackStorageError: If any ID already exists (nothing is inserted).
        """
        placeholders = ", ".join("?" for _ in _COLUMNS)
        try:
            with self._lock, self._conn:
                self._conn.executemany(
                    f"INSERT INTO feedback ({', '.join(_COLUMNS)}) VALUES ({placeholders})",
                    [self._record_values(r) for r in records],
                )
        except sqlite3.IntegrityError as exc:
            raise FeedbackStorageError("Duplicate feedback id in batch") from exc
        return len(records)

    def get_record(self, record_id: str) -> FeedbackRecord | None:
        """Fetch a record by ID.

        Args:
            record_id: The record's unique ID.

        Returns:
            FeedbackRecord or None if not found.
        """
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM feedback WHERE id = ?", (record_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_record(row)

    def update_record(self, record: FeedbackRecord) -> FeedbackRecord:
        """Overwrite every mutable field of an existing record.

        Args:
            record: Record with updated fields.

        Returns:
            The updated record.

        Raises:
            FeedbackStorageError: If the record does not exist.
        """
        assignments = ", ".join(f"{col} = ?" for col in _COLUMNS[1:])
        values = self._record_values(record)
        with self._lock:
            cursor = self._conn.execute(
                f"UPDATE feedback SET {assignments} WHERE id = ?",
                (*values[1:], record.id),
            )
            if cursor.rowcount == 0:
                raise FeedbackStorageError(f"Feedback not found: {record.id}")
            self._conn.commit()
        return record

    def delete_record(self, record_id: str) -> bool:
        """Delete a record by ID.

        Args:
            record_id: ID of the record to delete.

        Returns:
            True if deleted, False if not found.
        """
        with self._lock:
            cursor = self._conn.execute("DELETE FROM feedback WHERE id = ?", (record_id,))
            self._conn.commit()
        return cursor.rowcount > 0

    def clear(self) -> int:
        """Delete every record.

        Returns:
            Number of records removed.
        """
        with self._lock:
            cursor = self._conn.execute("DELETE FROM feedback")
            self._conn.commit()
        logger.info("Cleared %d feedback records", cursor.rowcount)
        return cursor.rowcount

    # ---------------------------------------------------------------
    # Queries
    # ---------------------------------------------------------------

    def fetch_feedback(
        self,
        filters: FilterSet,
        limit: int | None = None,
        offset: int = 0,
        now: datetime | None = None,
    ) -> list[FeedbackRecord]:
        """Return records matching *filters*, newest ``created_at`` first.

        Source, sentiment, status and the day-window are narrowed in SQL;
        theme membership and text search are then applied by the
        filtering engine so the semantics match it exactly.

        Args:
            filters: Constraints to apply.
            limit: Maximum records to return (None for all).
            offset: Records to skip before collecting.
            now: Reference time for the day-window.

        Returns:
            Matching records.
        """
        reference = ensure_utc(now) if now is not None else utc_now()
        clauses: list[str] = []
        params: list[Any] = []
        for column in ("source", "sentiment", "status"):
            value = getattr(filters, column)
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(value)
        if filters.days:
            clauses.append("ingested_at >= ? AND ingested_at <= ?")
            params.extend(
                [_timestamp(reference - timedelta(days=filters.days)), _timestamp(reference)]
            )

        sql = "SELECT * FROM feedback"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY created_at DESC, id"

        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        records = apply_filters([self._row_to_record(r) for r in rows], filters, reference)
        end = None if limit is None else offset + limit
        return records[offset:end]

    def count_feedback(self, filters: FilterSet, now: datetime | None = None) -> int:
        """Return the number of records matching *filters*."""
        if filters.is_empty:
            with self._lock:
                row = self._conn.execute("SELECT COUNT(*) FROM feedback").fetchone()
            return int(row[0])
        return len(self.fetch_feedback(filters, now=now))

    def get_unenriched(self, limit: int | None = None) -> list[FeedbackRecord]:
        """Return records that have not been enriched yet, oldest first.

        Args:
            limit: Maximum records to return.

        Returns:
            Records with no summary.
        """
        sql = "SELECT * FROM feedback WHERE summary IS NULL ORDER BY ingested_at ASC, id"
        params: tuple[Any, ...] = ()
        if limit is not None:
            sql += " LIMIT ?"
            params = (limit,)
        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        return [self._row_to_record(r) for r in rows]

    # ---------------------------------------------------------------
    # Row mapping
    # ---------------------------------------------------------------

    @staticmethod
    def _record_values(record: FeedbackRecord) -> tuple[Any, ...]:
        return (
            record.id,
            record.source.value,
            record.external_id,
            record.url,
            record.title,
            record.content,
            record.author_handle,
            _timestamp(record.created_at),
            _timestamp(record.ingested_at),
            record.sentiment.value,
            json.dumps(record.themes),
            record.summary,
            record.urgency,
            record.status.value,
            record.product_area,
            json.dumps(record.tags),
        )

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> FeedbackRecord:
        """Convert a database row to a FeedbackRecord."""
        return FeedbackRecord(
            id=row["id"],
            source=row["source"],
            external_id=row["external_id"],
            url=row["url"],
            title=row["title"],
            content=row["content"],
            author_handle=row["author_handle"],
            created_at=datetime.fromisoformat(row["created_at"]),
            ingested_at=datetime.fromisoformat(row["ingested_at"]),
            sentiment=row["sentiment"],
            themes=json.loads(row["themes_json"] or "[]"),
            summary=row["summary"],
            urgency=row["urgency"],
            status=row["status"],
            product_area=row["product_area"],
            tags=json.loads(row["tags_json"] or "[]"),
        )
