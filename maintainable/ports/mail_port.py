"""Mail port — abstract interface for receiving and sending email.

The daemon and scheduler depend on this protocol, never on a specific
mail transport.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass
class IncomingEmail:
    message_id: str
    from_email: str
    subject: str
    body: str
    in_reply_to: str | None = None


class MailPort(Protocol):
    """Abstract mail interface used by the daemon and the reminder scheduler."""

    async def fetch_new(self) -> list[IncomingEmail]: ...

    async def send_reply(
        self, to: str, subject: str, body: str, in_reply_to: str | None = None,
    ) -> None: ...

    async def send_fresh(self, to: str, subject: str, body: str) -> None: ...
