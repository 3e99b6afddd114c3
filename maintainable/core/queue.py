"""
maintainable — Processing Queue.

Durable work queue backed by the inbound_emails table:

1. Email discovered → enqueue() inserts status='new' (duplicates ignored)
2. dequeue() hands out 'new' items plus 'failed' items due for a retry
3. mark_processing() before the pipeline runs
4. Success → mark_replied(); error → mark_failed() bumps retry_count
5. On restart, recover_interrupted() resets 'processing' back to 'new'

Retries back off linearly: a failed item becomes eligible again
(retry_count + 1) minutes after its last attempt. After max_retries failures
it stays 'failed' forever and is reported as dead-letter by stats().

Single consumer only: dequeue does not claim rows atomically, so two
processes polling the same file could pick up the same item.
"""

from __future__ import annotations

import logging
import sqlite3

from maintainable.data.db import SQLiteStore
from maintainable.data.models import InboundEmail

logger = logging.getLogger(__name__)


def _row_to_item(row: sqlite3.Row) -> InboundEmail:
    return InboundEmail(
        id=row["id"],
        message_id=row["message_id"],
        from_email=row["from_email"],
        subject=row["subject"],
        body=row["body"],
        status=row["status"],
        error=row["error"],
        retry_count=row["retry_count"] or 0,
        received_at=row["received_at"],
        processed_at=row["processed_at"],
    )


class ProcessingQueue(SQLiteStore):
    """At-least-once queue over persisted inbound emails."""

    def __init__(self, db_path: str | None = None, max_retries: int | None = None) -> None:
        if max_retries is None:
            from maintainable.config import settings
            max_retries = settings.MAX_RETRIES
        self.max_retries = max_retries
        super().__init__(db_path)

    def enqueue(self, message_id: str, from_email: str, subject: str, body: str) -> bool:
        """Record a discovered email. Returns False if the message id was already seen."""
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO inbound_emails (message_id, from_email, subject, body, status) "
                "VALUES (?, ?, ?, ?, 'new')",
                (message_id, from_email, subject, body),
            )
        added = cursor.rowcount > 0
        if added:
            logger.info("Queued %s from %s", message_id, from_email)
        return added

    def get(self, message_id: str) -> InboundEmail | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM inbound_emails WHERE message_id = ?", (message_id,),
            ).fetchone()
        return _row_to_item(row) if row is not None else None

    def recover_interrupted(self) -> int:
        """Reset items left in 'processing' by a crashed run. Returns the count."""
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE inbound_emails SET status = 'new' WHERE status = 'processing'"
            )
        count = cursor.rowcount
        if count:
            logger.warning("Recovered %d interrupted item(s)", count)
        return count

    def dequeue(self, limit: int = 5) -> list[InboundEmail]:
        """Next batch: 'new' items plus 'failed' items whose backoff has elapsed."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM inbound_emails
                WHERE status = 'new'
                   OR (status = 'failed'
                       AND COALESCE(retry_count, 0) < ?
                       AND datetime(processed_at,
                                    '+' || (COALESCE(retry_count, 0) + 1) || ' minutes')
                           <= datetime('now'))
                ORDER BY received_at ASC, id ASC
                LIMIT ?
                """,
                (self.max_retries, limit),
            ).fetchall()
        return [_row_to_item(r) for r in rows]

    def mark_processing(self, message_id: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE inbound_emails SET status = 'processing' WHERE message_id = ?",
                (message_id,),
            )
        logger.debug("%s → processing", message_id)

    def mark_replied(self, message_id: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE inbound_emails SET status = 'replied', processed_at = datetime('now'), "
                "error = NULL WHERE message_id = ?",
                (message_id,),
            )
        logger.info("%s → replied", message_id)

    def mark_failed(self, message_id: str, error: str) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE inbound_emails
                SET status = 'failed',
                    error = ?,
                    processed_at = datetime('now'),
                    retry_count = COALESCE(retry_count, 0) + 1
                WHERE message_id = ?
                """,
                (error, message_id),
            )
            row = conn.execute(
                "SELECT retry_count FROM inbound_emails WHERE message_id = ?", (message_id,),
            ).fetchone()
        if row is not None and row["retry_count"] >= self.max_retries:
            logger.error("%s dead-lettered after %d attempts: %s",
                         message_id, row["retry_count"], error)
        else:
            logger.warning("%s → failed (will retry): %s", message_id, error)

    def stats(self) -> dict[str, int]:
        """Counts per effective status; exhausted failures count as dead_letter."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT CASE
                         WHEN status = 'failed' AND COALESCE(retry_count, 0) >= ?
                         THEN 'dead_letter' ELSE status
                       END AS effective_status,
                       COUNT(*) AS n
                FROM inbound_emails
                GROUP BY effective_status
                """,
                (self.max_retries,),
            ).fetchall()

        result = {"new": 0, "processing": 0, "failed": 0, "replied": 0, "dead_letter": 0}
        for row in rows:
            if row["effective_status"] in result:
                result[row["effective_status"]] = row["n"]
        return result
