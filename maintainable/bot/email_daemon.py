"""
maintainable — Email daemon.

Long-running loop that ties the mailbox to the pipeline:

1. On start, items a crashed run left in 'processing' go back to 'new'
2. Every POLL_INTERVAL_SECONDS: fetch mail → enqueue (duplicates ignored)
3. Drain one batch: processing → pipeline → reply → replied (or failed)

Items are handled one at a time so same-day check-ins from one user apply
in order. The reminder scheduler's cron job runs on the same event loop.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from maintainable.config import settings
from maintainable.core.pipeline import Stores, process_email
from maintainable.core.queue import ProcessingQueue

if TYPE_CHECKING:
    from maintainable.ports.mail_port import MailPort

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EmailDaemon:
    """Polls the mailbox and drains the processing queue."""

    def __init__(
        self,
        mail: MailPort,
        queue: ProcessingQueue,
        stores: Stores,
        batch_size: int | None = None,
        poll_interval: float | None = None,
    ) -> None:
        self._mail = mail
        self._queue = queue
        self._stores = stores
        self._batch_size = batch_size or settings.QUEUE_BATCH_SIZE
        self._poll_interval = poll_interval or settings.POLL_INTERVAL_SECONDS
        self._active = True

        self.started_at = _utcnow()
        self.processed = 0
        self.failed = 0
        self.last_poll_at: datetime | None = None
        self.last_email_at: datetime | None = None
        self.last_error: str | None = None

    def recover(self) -> int:
        count = self._queue.recover_interrupted()
        logger.info("Startup recovery: %d item(s) reset to new", count)
        return count

    async def poll_once(self) -> int:
        """Fetch the mailbox and enqueue unseen messages. Returns how many were new."""
        self.last_poll_at = _utcnow()
        messages = await self._mail.fetch_new()
        added = sum(
            1 for m in messages
            if self._queue.enqueue(m.message_id, m.from_email, m.subject, m.body)
        )
        if added:
            logger.info("Found %d new email(s)", added)
        return added

    async def drain_once(self) -> int:
        """Handle one batch from the queue. Returns how many items were replied to."""
        replied = 0
        for item in self._queue.dequeue(self._batch_size):
            try:
                self._queue.mark_processing(item.message_id)
                result = await process_email(item, self._stores)
                if result.should_reply:
                    await self._mail.send_reply(
                        item.from_email, result.reply_subject, result.reply_body, item.message_id,
                    )
                self._queue.mark_replied(item.message_id)
            except Exception as exc:
                self.failed += 1
                self.last_error = f"{exc} ({_utcnow().isoformat()})"
                logger.error("Error processing %s from %s: %s",
                             item.message_id, item.from_email, exc, exc_info=True)
                self._queue.mark_failed(item.message_id, str(exc))
                continue

            replied += 1
            self.processed += 1
            self.last_email_at = _utcnow()
        return replied

    async def run_cycle(self) -> None:
        """One poll + drain; errors are logged and never escape."""
        try:
            await self.poll_once()
        except Exception as exc:
            self.last_error = f"{exc} ({_utcnow().isoformat()})"
            logger.error("Polling error: %s", exc)
        try:
            await self.drain_once()
        except Exception as exc:
            self.last_error = f"{exc} ({_utcnow().isoformat()})"
            logger.error("Queue error: %s", exc, exc_info=True)

    async def run(self) -> None:
        logger.info("Email daemon started (poll every %ss, batch %d)",
                    self._poll_interval, self._batch_size)
        self.recover()
        while self._active:
            await self.run_cycle()
            await asyncio.sleep(self._poll_interval)

    def stop(self) -> None:
        self._active = False

    def health(self) -> dict:
        return {
            "status": "ok",
            "service": "maintainable",
            "uptime_seconds": int((_utcnow() - self.started_at).total_seconds()),
            "started_at": self.started_at.isoformat(),
            "emails_processed": self.processed,
            "emails_failed": self.failed,
            "last_poll_at": self.last_poll_at.isoformat() if self.last_poll_at else None,
            "last_email_at": self.last_email_at.isoformat() if self.last_email_at else None,
            "last_error": self.last_error,
            "queue": self._queue.stats(),
        }


async def _serve() -> None:
    from maintainable.adapters.imap_mail import ImapMailAdapter
    from maintainable.core.scheduler import ReminderScheduler

    mail = ImapMailAdapter.from_settings()
    stores = Stores.open()
    daemon = EmailDaemon(mail, ProcessingQueue(), stores)
    scheduler = ReminderScheduler(mail, stores.users, stores.habits)

    logger.info("Monitoring mailbox %s", settings.MAIL_ADDRESS)
    scheduler.start()
    try:
        await daemon.run()
    finally:
        daemon.stop()
        scheduler.stop()
        logger.info("Shutting down: %s", daemon.health())


def main() -> None:
    """Entry point: start the email daemon and reminder scheduler."""
    logger.info("Starting maintainable email daemon...")
    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        logger.info("Interrupted, exiting")


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    main()
