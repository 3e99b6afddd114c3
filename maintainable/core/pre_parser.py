"""
maintainable — Pre-parser.

Fast heuristics for very short inputs ("yes", "hi", "help") that never need
an LLM round-trip. Returns a list of intents when confident, None when the
input should go to the LLM parser.

Only SHORT inputs are eligible, and only by exact phrase lookup: stealing a
real check-in like "no water today" is worse than an extra LLM call.
"""

from __future__ import annotations

import logging
import re

from maintainable.core.parser import (
    AffirmIntent,
    DeclineIntent,
    GreetingIntent,
    HelpIntent,
    Intent,
)

logger = logging.getLogger(__name__)

MAX_SHORT_CHARS = 20
MAX_SHORT_WORDS = 6

AFFIRM_PATTERNS = frozenset({
    "yes", "yeah", "yep", "yup", "sure", "ok", "okay", "absolutely",
    "let's do it", "lets do it", "sounds good", "go ahead", "go for it",
    "do it", "please", "yes please",
})

DECLINE_PATTERNS = frozenset({
    "no", "nah", "nope", "no thanks", "no thank you", "never mind",
    "nevermind", "skip that", "don't", "dont", "not now", "not right now",
    "maybe later", "pass",
})

GREETING_PATTERNS = frozenset({
    "hey", "hi", "hello", "yo", "sup", "howdy", "good morning",
    "good evening", "gm", "morning", "skip", "off day", "day off",
})

HELP_PATTERNS = frozenset({
    "help", "what can you do", "how does this work", "what is this",
    "commands", "options", "features",
})

HELP_PREFIXES = ("how do i", "how can i")

_TRAILING_PUNCT_RE = re.compile(r"[.!?]+$")
_NOISE_RE = re.compile(r"^[.\-_~*]+$")


def normalize_input(text: str) -> str:
    """Lowercase, trim, and strip trailing . ! ? characters."""
    return _TRAILING_PUNCT_RE.sub("", text.lower().strip())


def is_short_input(text: str) -> bool:
    """Eligible for heuristics: <= 20 chars OR <= 6 words."""
    return len(text) <= MAX_SHORT_CHARS or len(text.split()) <= MAX_SHORT_WORDS


def pre_parse(text: str) -> list[Intent] | None:
    """Classify a short input into a fixed conversational intent.

    Returns None when nothing matches, deferring to the LLM parser.
    """
    # A lone "?" would be stripped by normalization
    if text.strip() == "?":
        return [HelpIntent()]

    normalized = normalize_input(text)

    if not normalized or _NOISE_RE.match(normalized):
        return [GreetingIntent()]

    if not is_short_input(normalized):
        return None

    if normalized in AFFIRM_PATTERNS:
        result: list[Intent] = [AffirmIntent()]
    elif normalized in DECLINE_PATTERNS:
        result = [DeclineIntent()]
    elif normalized in GREETING_PATTERNS:
        result = [GreetingIntent()]
    elif normalized in HELP_PATTERNS or normalized.startswith(HELP_PREFIXES):
        result = [HelpIntent()]
    else:
        return None

    logger.info("Pre-parsed '%s' as %s", normalized, result[0].type)
    return result
