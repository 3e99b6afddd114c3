"""
maintainable — Reply generation.

Second LLM call of the pipeline: turns the structured context into a short,
warm reply. The model only sees facts rendered by the context builder, and
the system prompt forbids inventing any others.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from maintainable.config import settings
from maintainable.core.llm import complete

if TYPE_CHECKING:
    from maintainable.core.executor import ExecutionResult

logger = logging.getLogger(__name__)

RESPONSE_SYSTEM_PROMPT = """\
You are a friendly habit tracking assistant. Respond to the user based ONLY on the structured context below.

CRITICAL — NEVER FABRICATE DATA:
- ONLY reference numbers, streaks, averages, or trends that appear in the structured context
- If the context says "No check-ins recorded" or shows a first day of tracking, do NOT invent past performance
- If there are no weekly stats, do NOT make them up
- If you're unsure about a number, don't mention it at all
- NEVER say things like "you've been consistent" or "that's a full week" unless the data explicitly shows it

Rules:
- Acknowledge what the user just reported — that's it
- If the message isn't a check-in (it's a question, greeting, or general chat), respond conversationally without inventing habit data
- If the user asks off-topic questions, politely redirect: you only track habits. Don't ignore the questions silently.
- Keep it under 150 words
- Be warm but not saccharine — like a friend who actually cares
- Don't ask about unreported habits. If they didn't mention it, move on.
- Don't ask "is everything okay?" or "did something come up?" — no concern-checking.
- Never frame something as a decline or disappointment
- When a habit was added or removed, confirm ALL changes with personality, not just a robotic list
- When answering queries, reference ALL habits and their current status from the context, not just one
- If the user corrects you, acknowledge the correction gracefully
- If multiple actions happened (shown in WHAT JUST HAPPENED), acknowledge each one. Don't silently skip any.
- One emoji max
- No signoff"""

# Results whose detail is user-facing text, not a note for the reply model
_REPORTABLE = frozenset({"add_habit", "remove_habit", "update_habit", "checkin"})


async def generate_response(context: str, model: str | None = None) -> tuple[str, int]:
    """Ask the LLM for a reply to the structured context.

    Returns (reply_text, latency_ms). Raises on provider errors and on
    asyncio.TimeoutError after RESPONSE_TIMEOUT_SECONDS.
    """
    start = time.monotonic()
    text = await complete(
        system=RESPONSE_SYSTEM_PROMPT,
        user_message=context,
        max_tokens=512,
        temperature=0.7,
        model=model or settings.RESPONSE_MODEL or None,
        timeout=settings.RESPONSE_TIMEOUT_SECONDS,
    )
    latency_ms = int((time.monotonic() - start) * 1000)
    logger.debug("Reply generated in %dms", latency_ms)
    return (text or "").strip(), latency_ms


def fallback_response(results: list[ExecutionResult]) -> str:
    """Plain-text reply built from execution results, used when the LLM is down."""
    done = [r.detail for r in results if r.success and r.action in _REPORTABLE]
    if not done:
        return "Got your message, thanks! Reply any time with what you did today."
    lines = "\n".join(f"- {d}" for d in done)
    return f"Got it! Here's what I recorded:\n\n{lines}"
