"""
maintainable — New-user onboarding.

A first email from an unknown sender either gets a welcome email (when it
reads like a greeting or question, or carries nothing we can track) or is
processed as a normal check-in whose reply is wrapped in a welcome.
"""

from __future__ import annotations

import logging
import re

from maintainable.core.parser import AddHabitIntent, CheckinIntent, Intent

logger = logging.getLogger(__name__)

WELCOME_SUBJECT = "Welcome to maintainable"

_WELCOME_BODY = """\
Hey{name}! Thanks for reaching out.

I'm your habit tracking assistant. Here's how it works:

1. Tell me what habits you want to track — just reply with something like "add stretching, add water 8 glasses, add multivitamin"
2. Each day, I'll send you a check-in reminder. Just reply with what you did: "water 6, stretched, took vitamin"
3. I remember everything — your streaks, your patterns, your personal bests

That's it. No app, no login, just email.

Reply with the habits you want to track and we'll get started."""

_GREETING_START_RE = re.compile(r"^(hi|hey|hello|yo|sup)", re.IGNORECASE)
_SERVICE_QUESTIONS = ("how does this work", "what can you do", "sign up", "get started")


def welcome_email(user_name: str | None = None) -> tuple[str, str]:
    """Return (subject, body) of the welcome email."""
    return WELCOME_SUBJECT, _WELCOME_BODY.format(name=f" {user_name}" if user_name else "")


def looks_like_first_message(text: str) -> bool:
    """True for greetings, questions about the service, and near-empty messages."""
    lower = text.lower().strip()
    if _GREETING_START_RE.match(lower):
        return True
    if any(q in lower for q in _SERVICE_QUESTIONS):
        return True
    return len(lower) < 10


def has_trackable_intent(intents: list[Intent]) -> bool:
    return any(isinstance(i, (CheckinIntent, AddHabitIntent)) for i in intents)


def augment_first_checkin_response(reply: str) -> str:
    """Wrap the reply to a new user's first check-in in a welcome."""
    return (
        "Welcome to maintainable! 🎉\n\n"
        f"{reply}\n\n"
        "I'll remember everything you share with me. Just email whenever you're "
        "ready — daily, every other day, whatever works for you."
    )
