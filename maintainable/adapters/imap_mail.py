"""IMAP/SMTP mail adapter — implements MailPort.

Blocking imaplib/smtplib calls run in a worker thread via asyncio.to_thread.
Messages are fetched with BODY.PEEK so the mailbox's read state is left
alone; deduplication is the processing queue's job, keyed by Message-ID.
"""

from __future__ import annotations

import asyncio
import email as email_lib
import hashlib
import imaplib
import logging
import re
import smtplib
import ssl
from datetime import datetime, timedelta
from email.header import decode_header
from email.message import Message
from email.mime.text import MIMEText
from email.utils import formatdate, make_msgid, parseaddr

from maintainable.ports.mail_port import IncomingEmail

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r"<[^>]+>")
_SPACE_RE = re.compile(r"\s+")


def _decode_header_val(val: str | None) -> str:
    if not val:
        return ""
    out = []
    for part, enc in decode_header(val):
        if isinstance(part, bytes):
            out.append(part.decode(enc or "utf-8", errors="replace"))
        else:
            out.append(part)
    return "".join(out)


def _decode_part(part: Message) -> str:
    payload = part.get_payload(decode=True)
    if payload is None:
        return ""
    return payload.decode(part.get_content_charset() or "utf-8", errors="replace")


def extract_body(msg: Message) -> str:
    """Plain-text body, falling back to tag-stripped HTML."""
    if not msg.is_multipart():
        text = _decode_part(msg)
        if msg.get_content_type() == "text/html":
            text = _SPACE_RE.sub(" ", _TAG_RE.sub(" ", text))
        return text.strip()

    for part in msg.walk():
        if part.get_content_type() == "text/plain" and part.get("Content-Disposition") != "attachment":
            return _decode_part(part).strip()
    for part in msg.walk():
        if part.get_content_type() == "text/html":
            return _SPACE_RE.sub(" ", _TAG_RE.sub(" ", _decode_part(part))).strip()
    return ""


def _fallback_message_id(sender: str, sent_at: str, subject: str, body: str) -> str:
    """Stable id for mail without a Message-ID, so re-polls dedup against the queue."""
    digest = hashlib.sha256("|".join((sender.lower(), sent_at, subject, body)).encode("utf-8"))
    return f"<generated-{digest.hexdigest()[:32]}>"


def parse_message(raw: bytes) -> IncomingEmail | None:
    """Build an IncomingEmail from raw RFC 822 bytes; None if unusable."""
    msg = email_lib.message_from_bytes(raw)
    _, from_address = parseaddr(_decode_header_val(msg.get("From")))
    body = extract_body(msg)
    if not from_address or not body:
        return None

    subject = _decode_header_val(msg.get("Subject")) or "(no subject)"
    message_id = (msg.get("Message-ID") or "").strip() or _fallback_message_id(
        from_address, str(msg.get("Date") or ""), subject, body,
    )
    return IncomingEmail(
        message_id=message_id,
        from_email=from_address.lower(),
        subject=subject,
        body=body,
        in_reply_to=(msg.get("In-Reply-To") or "").strip() or None,
    )


class ImapMailAdapter:
    """IMAP (inbound) + SMTP over SSL (outbound) implementation of MailPort."""

    def __init__(
        self,
        address: str,
        password: str,
        imap_host: str,
        smtp_host: str,
        imap_port: int = 993,
        smtp_port: int = 465,
        lookback_days: int = 2,
        max_messages: int = 50,
    ) -> None:
        self._address = address
        self._password = password
        self._imap_host = imap_host
        self._imap_port = imap_port
        self._smtp_host = smtp_host
        self._smtp_port = smtp_port
        self._lookback_days = lookback_days
        self._max_messages = max_messages

    @classmethod
    def from_settings(cls) -> ImapMailAdapter:
        from maintainable.config import settings

        return cls(
            address=settings.MAIL_ADDRESS,
            password=settings.MAIL_PASSWORD,
            imap_host=settings.IMAP_HOST,
            smtp_host=settings.SMTP_HOST,
            imap_port=settings.IMAP_PORT,
            smtp_port=settings.SMTP_PORT,
        )

    # -- inbound -----------------------------------------------------------

    def _fetch_sync(self) -> list[IncomingEmail]:
        since = (datetime.now() - timedelta(days=self._lookback_days)).strftime("%d-%b-%Y")
        mail = imaplib.IMAP4_SSL(self._imap_host, self._imap_port)
        try:
            mail.login(self._address, self._password)
            mail.select("INBOX", readonly=True)
            _, data = mail.search(None, f"SINCE {since}")
            nums = data[0].split() if data and data[0] else []

            messages = []
            for num in nums[-self._max_messages:]:
                _, msg_data = mail.fetch(num, "(BODY.PEEK[])")
                if not msg_data or not isinstance(msg_data[0], tuple):
                    continue
                parsed = parse_message(msg_data[0][1])
                if parsed is None:
                    logger.debug("Skipping message %s: no sender or empty body", num)
                    continue
                if parsed.from_email == self._address.lower():
                    continue  # our own sent replies
                messages.append(parsed)
            return messages
        finally:
            try:
                mail.logout()
            except (imaplib.IMAP4.error, OSError) as exc:
                logger.debug("IMAP logout failed: %s", exc)

    async def fetch_new(self) -> list[IncomingEmail]:
        messages = await asyncio.to_thread(self._fetch_sync)
        logger.debug("IMAP poll returned %d message(s)", len(messages))
        return messages

    # -- outbound ----------------------------------------------------------

    def _send_sync(self, to: str, subject: str, body: str, in_reply_to: str | None) -> None:
        msg = MIMEText(body, "plain", "utf-8")
        msg["Subject"] = subject
        msg["From"] = self._address
        msg["To"] = to
        msg["Date"] = formatdate(localtime=True)
        msg["Message-ID"] = make_msgid(domain=self._address.split("@")[-1])
        if in_reply_to:
            msg["In-Reply-To"] = in_reply_to
            msg["References"] = in_reply_to

        ctx = ssl.create_default_context()
        with smtplib.SMTP_SSL(self._smtp_host, self._smtp_port, context=ctx) as smtp:
            smtp.login(self._address, self._password)
            smtp.send_message(msg)

    async def send_reply(
        self, to: str, subject: str, body: str, in_reply_to: str | None = None,
    ) -> None:
        await asyncio.to_thread(self._send_sync, to, subject, body, in_reply_to)
        logger.info("Sent reply to %s: %s", to, subject)

    async def send_fresh(self, to: str, subject: str, body: str) -> None:
        await asyncio.to_thread(self._send_sync, to, subject, body, None)
        logger.info("Sent email to %s: %s", to, subject)
