"""
maintainable — Email → reply pipeline.

One inbound email runs through:

    strip quotes → combine subject/body → user lookup → onboarding
    → pre-parse / LLM parse → validate → execute → context → reply

Parse failures (ExtractionError) propagate so the queue can retry the item
before anything was written. Once intents have executed, a failed reply
LLM call degrades to a plain summary instead, since a retry would apply
the same check-ins twice.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from zoneinfo import ZoneInfo

from maintainable.config import settings
from maintainable.core.context_builder import build_structured_context
from maintainable.core.executor import ExecutionResult, execute_intents
from maintainable.core.onboarding import (
    augment_first_checkin_response,
    has_trackable_intent,
    looks_like_first_message,
    welcome_email,
)
from maintainable.core.parser import CheckinIntent, Intent, intents_to_json, parse_intents
from maintainable.core.pre_parser import pre_parse
from maintainable.core.response_gen import fallback_response, generate_response
from maintainable.core.validation import validate_intents
from maintainable.data.db import EmailLogDB, HabitDB, PendingActionDB, UserDB
from maintainable.data.models import InboundEmail

logger = logging.getLogger(__name__)

_WROTE_RE = re.compile(r"^On .+ wrote:$", re.IGNORECASE)
_DIVIDER_RE = re.compile(r"^-{3,}")
_REPLY_SUBJECT_RE = re.compile(r"^(Re|Fwd):", re.IGNORECASE)


@dataclass
class Stores:
    """The store objects one pipeline run needs, sharing one database file."""

    users: UserDB
    habits: HabitDB
    pending: PendingActionDB
    email_log: EmailLogDB

    @classmethod
    def open(cls, db_path: str | None = None) -> Stores:
        return cls(
            users=UserDB(db_path),
            habits=HabitDB(db_path),
            pending=PendingActionDB(db_path),
            email_log=EmailLogDB(db_path),
        )


@dataclass
class PipelineOutput:
    user_id: int
    is_new_user: bool
    should_reply: bool
    reply_subject: str
    reply_body: str
    intents: list[Intent] = field(default_factory=list)
    results: list[ExecutionResult] = field(default_factory=list)


def strip_quoted_text(body: str) -> str:
    """Cut the body at the first quoted-reply marker."""
    cleaned = []
    for line in body.split("\n"):
        stripped = line.strip()
        if _WROTE_RE.match(stripped) or stripped.startswith(">") or _DIVIDER_RE.match(stripped):
            break
        cleaned.append(line)
    return "\n".join(cleaned).strip()


def build_input(subject: str, body: str) -> str:
    """Combine subject and body into the text handed to the parser.

    A fresh thread's subject may carry the message ("water 8" with an empty
    body); a reply's subject is threading noise.
    """
    subject = subject or ""
    is_reply = bool(_REPLY_SUBJECT_RE.match(subject))
    if not is_reply and len(body) < 10:
        return ". ".join(p for p in (subject, body) if p).strip()
    return (body or subject).strip()


def reply_subject_for(subject: str) -> str:
    return subject if subject.lower().startswith("re:") else f"Re: {subject}"


def local_today() -> str:
    return datetime.now(ZoneInfo(settings.TIMEZONE)).date().isoformat()


def _welcome(stores: Stores, user_id: int, subject: str, body: str, intents_json: str | None) -> PipelineOutput:
    welcome_subject, welcome_body = welcome_email()
    stores.email_log.log_incoming(user_id, subject, body, intents_json)
    stores.email_log.log_outgoing(user_id, welcome_subject, welcome_body)
    logger.info("Sending welcome email to new user %d", user_id)
    return PipelineOutput(
        user_id=user_id,
        is_new_user=True,
        should_reply=True,
        reply_subject=welcome_subject,
        reply_body=welcome_body,
    )


async def process_email(
    email: InboundEmail,
    stores: Stores,
    today: str | None = None,
) -> PipelineOutput:
    """Turn one inbound email into a reply, applying its intents on the way."""
    today = today or local_today()
    body = strip_quoted_text(email.body)
    text = build_input(email.subject, body)
    logger.info("Processing %s from %s: %r", email.message_id, email.from_email, text[:120])

    user, is_new = stores.users.get_or_create(email.from_email)

    if is_new and looks_like_first_message(text):
        return _welcome(stores, user.id, email.subject, body, None)

    intents = pre_parse(text)
    if intents is None:
        habit_names = [h.name for h in stores.habits.list_active(user.id)]
        outcome = await parse_intents(text, habit_names=habit_names)
        intents = outcome.intents
    else:
        logger.info("Pre-parsed %r as %s", text, [i.type for i in intents])

    if is_new and not has_trackable_intent(intents):
        return _welcome(stores, user.id, email.subject, body, intents_to_json(intents))

    valid, errors = validate_intents(intents)
    for err in errors:
        logger.warning("Dropped invalid intent field %s: %s", err.field, err.message)

    results = execute_intents(stores.habits, user.id, valid, today, stores.pending)

    context = build_structured_context(
        stores.habits, stores.users, user.id, today, results, text,
    )
    try:
        reply, latency_ms = await generate_response(context)
        logger.info("Reply generated for user %d in %dms", user.id, latency_ms)
    except Exception as exc:
        logger.warning("Reply generation failed, using plain summary: %s", exc)
        reply = ""
    if not reply:
        reply = fallback_response(results)

    if is_new and any(isinstance(i, CheckinIntent) for i in valid):
        reply = augment_first_checkin_response(reply)

    subject = reply_subject_for(email.subject)
    stores.email_log.log_incoming(user.id, email.subject, body, intents_to_json(valid))
    stores.email_log.log_outgoing(user.id, subject, reply)

    return PipelineOutput(
        user_id=user.id,
        is_new_user=is_new,
        should_reply=True,
        reply_subject=subject,
        reply_body=reply,
        intents=valid,
        results=results,
    )
