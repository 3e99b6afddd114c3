"""
maintainable — LLM Intent Parser.

Brain of the check-in pipeline: converts a free-text email into a list of
typed intents (check-ins, habit CRUD, queries, confirmations) using the
configured LLM provider.

A single email may produce multiple intents. The LLM output goes through a
repair chain (direct parse → fenced block → brace span) and a pure,
idempotent normalization pass before being instantiated into the typed
models below.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Annotated, Any, Callable, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from maintainable.config import settings
from maintainable.core.llm import complete

logger = logging.getLogger(__name__)

VALID_STATUSES = ("full", "partial", "skip")


class ExtractionError(Exception):
    """The LLM could not be reached, timed out, or returned unusable output."""


# ---------------------------------------------------------------------------
# Shared intent contract: consumed by validation, executor and pipeline
# ---------------------------------------------------------------------------

class CheckinEntry(BaseModel):
    """One habit report inside a check-in.

    JSON example:
    {"habit": "water", "status": "partial", "value": 4, "unit": "glasses", "note": "rough day"}
    """
    habit: str = ""
    status: str = "full"     # full | partial | skip
    value: float | None = None
    unit: str | None = None
    note: str | None = None


class CheckinIntent(BaseModel):
    type: Literal["checkin"] = "checkin"
    date: str | None = None   # "today", "yesterday" or YYYY-MM-DD; None → today
    entries: list[CheckinEntry] = Field(default_factory=list)


class AddHabitEntry(BaseModel):
    name: str = ""
    unit: str | None = None
    goal: float | None = None


class AddHabitIntent(BaseModel):
    """JSON example: {"type": "add_habit", "habits": [{"name": "meditation", "unit": "minutes", "goal": 10}]}"""
    type: Literal["add_habit"] = "add_habit"
    habits: list[AddHabitEntry] = Field(default_factory=list)


class RemoveHabitIntent(BaseModel):
    type: Literal["remove_habit"] = "remove_habit"
    habits: list[str] = Field(default_factory=list)


class UpdateHabitIntent(BaseModel):
    """JSON example: {"type": "update_habit", "habit": "water", "goal": 10}"""
    type: Literal["update_habit"] = "update_habit"
    habit: str = ""
    unit: str | None = None
    goal: float | None = None


class QueryIntent(BaseModel):
    type: Literal["query"] = "query"
    scope: str | None = None  # today | week | month | all
    question: str = ""


class GreetingIntent(BaseModel):
    type: Literal["greeting"] = "greeting"


class HelpIntent(BaseModel):
    type: Literal["help"] = "help"


class SettingsIntent(BaseModel):
    type: Literal["settings"] = "settings"
    changes: dict[str, Any] = Field(default_factory=dict)


class CorrectionIntent(BaseModel):
    """The user disputes something previously recorded.

    JSON example: {"type": "correction", "claim": "I didn't drink water today"}
    """
    type: Literal["correction"] = "correction"
    claim: str = ""


class AffirmIntent(BaseModel):
    type: Literal["affirm"] = "affirm"


class DeclineIntent(BaseModel):
    type: Literal["decline"] = "decline"


Intent = Annotated[
    Union[
        CheckinIntent, AddHabitIntent, RemoveHabitIntent, UpdateHabitIntent,
        QueryIntent, GreetingIntent, HelpIntent, SettingsIntent,
        CorrectionIntent, AffirmIntent, DeclineIntent,
    ],
    Field(discriminator="type"),
]

INTENT_TYPES = (
    "checkin", "add_habit", "remove_habit", "update_habit", "query",
    "greeting", "help", "settings", "correction", "affirm", "decline",
)

_INTENT_ADAPTER: TypeAdapter[Intent] = TypeAdapter(Intent)


@dataclass
class ParseOutcome:
    intents: list[Intent] = field(default_factory=list)
    latency_ms: int = 0


def intents_to_json(intents: list[Intent]) -> str:
    """Serialize intents for the audit log."""
    return json.dumps([i.model_dump(exclude_none=True) for i in intents])


# ---------------------------------------------------------------------------
# System prompt for LLM
# ---------------------------------------------------------------------------

_SYSTEM_PROMPT = """\
You are an intent parser for a habit tracking service. Given a user's email, extract ALL intents as structured JSON.

Rules:
- A single message can contain MULTIPLE intents. Extract all of them.
- Check-in values are numbers whenever possible.
- Habit names are lowercase singular form.
- Every check-in entry has a "status":
  - "full": did it fully / met the goal ("did pullups", "took vitamins", "water 8" with goal 8, "X yes")
  - "partial": did some ("some water", "a few pushups", "water 3" under goal, "water 4/8" → value 4)
  - "skip": didn't do it ("no water", "skipped water", "didn't stretch", "X no")

NEGATION PATTERNS (CRITICAL):
- "No X" / "No X today" / "No X yet" / "Skipped X" / "X no" → ONE skip entry for X.
- "No X or Y" / "No X and Y" → a skip entry for EACH of X and Y.
- "X yes, Y no" → full entry for X, skip entry for Y.
- A negated habit is a SKIP check-in, never a remove_habit intent.

NOTES:
- Context like "back hurts", "felt great", "traveling today", "rough day" goes in the "note" field of the check-in entry, NOT a separate intent.

GOAL-SETTING vs CHECK-IN (CRITICAL):
- Future tense or desire ("I want to drink 4 glasses", "my goal is 4", "I want to track X", "I want to work on X") → add_habit (with goal if given).
- Past tense or completed ("I drank 4 glasses", "water 4") → checkin with value 4.
- "add" / "track" / "start" + habit → add_habit. "drop" / "stop" / "remove" + habit → remove_habit.
- Use update_habit ONLY for explicit "change goal" / "set target" / "update X to Y".

OTHER INTENTS:
- Genuine questions about stats, progress or trends → { "type": "query", "scope": "today|week|month|all", "question": "<original text>" }
- "help", "what can you do?", "how does this work?" → { "type": "help" }
- "skip", "off day", or content-free messages → { "type": "greeting" }
- "That's wrong" / "I didn't actually..." / "Undo that" → { "type": "correction", "claim": "<what the user says is wrong>" }
- "yes" / "sure" / "sounds good" / "go ahead" (confirming a suggestion) → { "type": "affirm" }
- "no thanks" / "not now" (rejecting a suggestion) → { "type": "decline" }

Output ONLY valid JSON matching this schema:
{
  "intents": [
    { "type": "checkin", "entries": [{ "habit": "water", "status": "full", "value": 8, "unit": "glasses", "note": "optional" }] },
    { "type": "add_habit", "habits": [{ "name": "meditation", "unit": null, "goal": null }] },
    { "type": "remove_habit", "habits": ["vitamins"] },
    { "type": "update_habit", "habit": "water", "goal": 10 },
    { "type": "query", "scope": "week", "question": "how am I doing?" },
    { "type": "greeting" },
    { "type": "help" },
    { "type": "correction", "claim": "I didn't drink water today" },
    { "type": "affirm" },
    { "type": "decline" }
  ]
}

Output ONLY the JSON object. No markdown, no explanation, no code fences.
"""

_HABITS_BLOCK = """

=== USER'S ACTIVE HABITS ===
{habits}

EXPANSION RULES (use the habits list above):
- "all good" / "everything" / "all done" → FULL entries for EVERY habit listed above.
- "everything but X" / "all good except X" → FULL for every habit EXCEPT X; X gets SKIP.
- "No X or Y, but good otherwise" / "No X, rest is good" → SKIP for X and Y, FULL for all other habits.

When you see these patterns you MUST generate an entry for EACH habit in the list. Do not leave any out.
"""


def build_system_prompt(habit_names: list[str]) -> str:
    """Return the parser prompt, with the habit expansion block when habits exist."""
    if not habit_names:
        return _SYSTEM_PROMPT
    return _SYSTEM_PROMPT + _HABITS_BLOCK.format(habits=", ".join(habit_names))


# ---------------------------------------------------------------------------
# JSON repair chain
# ---------------------------------------------------------------------------

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_BRACE_RE = re.compile(r"(\{[\s\S]*\})")


def _try_json(text: str) -> Any | None:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return None


def _parse_direct(raw: str) -> Any | None:
    return _try_json(raw)


def _parse_fenced(raw: str) -> Any | None:
    match = _FENCE_RE.search(raw)
    return _try_json(match.group(1).strip()) if match else None


def _parse_brace_span(raw: str) -> Any | None:
    match = _BRACE_RE.search(raw)
    return _try_json(match.group(1).strip()) if match else None


_REPAIR_STRATEGIES: tuple[Callable[[str], Any | None], ...] = (
    _parse_direct,
    _parse_fenced,
    _parse_brace_span,
)


def repair_json(raw_text: str) -> Any:
    """Run the repair strategies in order; raise ExtractionError if all fail."""
    raw = raw_text.strip()
    for strategy in _REPAIR_STRATEGIES:
        data = strategy(raw)
        if data is not None:
            if strategy is not _parse_direct:
                logger.debug("LLM output recovered via %s", strategy.__name__)
            return data
    logger.error("Failed to parse LLM response as JSON — raw: '%s'", raw[:200])
    raise ExtractionError(f"Failed to parse LLM output as JSON: {raw[:200]}")


def coerce_intent_list(data: Any) -> list[dict]:
    """Pull the list of raw intent dicts out of whatever shape the LLM returned."""
    if isinstance(data, dict):
        intents = data.get("intents")
        if isinstance(intents, list):
            return [i for i in intents if isinstance(i, dict)]
        # Single intent at the top level
        if "type" in data:
            return [data]
    elif isinstance(data, list) and data and all(isinstance(i, dict) for i in data):
        return list(data)

    logger.warning("LLM returned no usable intents, defaulting to greeting")
    return [{"type": "greeting"}]


# ---------------------------------------------------------------------------
# Normalization (pure and idempotent)
# ---------------------------------------------------------------------------

def _norm_name(value: Any) -> str:
    if value is None:
        return ""
    return str(value).lower().strip()


def normalize_status(entry: dict) -> str:
    """Force a status into {full, partial, skip}, inferring from legacy fields."""
    status = entry.get("status")
    if status in VALID_STATUSES:
        return status
    if entry.get("done") is False:
        return "skip"
    return "full"


def as_item_list(value: Any) -> list:
    """Wrap a lone item the LLM returned where a list belongs: "yoga" → ["yoga"]."""
    if isinstance(value, list):
        return value
    if isinstance(value, (str, dict)):
        return [value]
    return []


def _absorb_notes(intents: list[dict]) -> list[dict]:
    notes = [i for i in intents if i.get("type") == "note"]
    if not notes:
        return intents

    texts = [str(n.get("text") or n.get("note") or "").strip() for n in notes]
    texts = [t for t in texts if t]
    checkin = next((i for i in intents if i.get("type") == "checkin"), None)
    if checkin is not None and texts:
        entries = as_item_list(checkin.get("entries"))
        target = next((e for e in reversed(entries) if isinstance(e, dict)), None)
        if target is not None:
            target["note"] = "; ".join(texts)
        checkin["entries"] = entries
    return [i for i in intents if i.get("type") != "note"]


def _merge_checkins(intents: list[dict]) -> list[dict]:
    checkins = [i for i in intents if i.get("type") == "checkin"]
    if len(checkins) <= 1:
        return intents

    merged: dict = {"type": "checkin", "entries": []}
    for c in checkins:
        merged["entries"].extend(as_item_list(c.get("entries")))
        if c.get("date") and "date" not in merged:
            merged["date"] = c["date"]
    return [merged] + [i for i in intents if i.get("type") != "checkin"]


def _normalize_names(intent: dict) -> None:
    kind = intent.get("type")
    if kind == "checkin":
        entries = [e for e in as_item_list(intent.get("entries")) if isinstance(e, dict)]
        for entry in entries:
            entry["habit"] = _norm_name(entry.get("habit"))
            entry["status"] = normalize_status(entry)
            entry.pop("done", None)
        intent["entries"] = entries
    elif kind == "add_habit":
        habits = []
        for h in as_item_list(intent.get("habits")):
            # Tolerate bare strings: ["meditation"]
            h = {"name": h} if isinstance(h, str) else h
            if isinstance(h, dict):
                h["name"] = _norm_name(h.get("name"))
                habits.append(h)
        intent["habits"] = habits
    elif kind == "remove_habit":
        intent["habits"] = [
            _norm_name(h.get("name") if isinstance(h, dict) else h)
            for h in as_item_list(intent.get("habits"))
        ]
    elif kind == "update_habit":
        intent["habit"] = _norm_name(intent.get("habit"))


def normalize_intents(raw_intents: list[dict]) -> list[dict]:
    """Absorb notes, merge check-ins, normalize names and statuses.

    Never mutates its input; normalize_intents(normalize_intents(x)) == normalize_intents(x).
    """
    intents = copy.deepcopy([i for i in raw_intents if isinstance(i, dict)])
    intents = _absorb_notes(intents)
    intents = _merge_checkins(intents)
    for intent in intents:
        _normalize_names(intent)
    return intents


# ---------------------------------------------------------------------------
# Instantiation
# ---------------------------------------------------------------------------

def _handle_unknown_intent(intent: Any) -> None:
    """Log and handle cases where LLM returns an unknown intent."""
    logger.warning("LLM returned unknown intent: '%s'", intent)


def instantiate_intent(data: dict) -> Intent | None:
    """Build the typed model for one normalized intent dict, or None if unusable."""
    kind = data.get("type")
    if kind not in INTENT_TYPES:
        _handle_unknown_intent(kind)
        return None

    if kind == "checkin":
        # Drop malformed entries one by one instead of the whole check-in
        entries = []
        for raw_entry in data.get("entries") or []:
            try:
                entries.append(CheckinEntry.model_validate(raw_entry))
            except ValidationError as exc:
                logger.warning("Dropping malformed check-in entry %s: %s", raw_entry, exc)
        return CheckinIntent(date=data.get("date"), entries=entries)

    try:
        return _INTENT_ADAPTER.validate_python(data)
    except ValidationError as exc:
        logger.warning("Dropping malformed %s intent: %s", kind, exc)
        return None


# ---------------------------------------------------------------------------
# Parser function
# ---------------------------------------------------------------------------

async def parse_intents(
    text: str,
    habit_names: list[str] | None = None,
    model: str | None = None,
) -> ParseOutcome:
    """Parse an email body into typed intents using the configured LLM.

    Raises ExtractionError on network errors, timeouts, non-2xx responses
    and output that no repair strategy can parse.
    """
    system_prompt = build_system_prompt(habit_names or [])
    timeout = settings.PARSE_TIMEOUT_SECONDS

    start = time.monotonic()
    try:
        raw_text = await complete(
            system=system_prompt,
            user_message=text,
            max_tokens=1024,
            temperature=0.0,
            json_mode=True,
            model=model,
            timeout=timeout,
        )
    except asyncio.TimeoutError as exc:
        raise ExtractionError(f"LLM parse timed out after {timeout}s") from exc
    except Exception as exc:
        raise ExtractionError(f"LLM parse request failed: {exc}") from exc
    latency_ms = int((time.monotonic() - start) * 1000)
    logger.debug("LLM raw response: %s", raw_text)

    data = repair_json(raw_text or "")
    try:
        normalized = normalize_intents(coerce_intent_list(data))
        intents: list[Intent] = []
        for item in normalized:
            intent = instantiate_intent(item)
            if intent is not None:
                intents.append(intent)
    except Exception as exc:
        raise ExtractionError(f"LLM output has an unusable shape: {exc}") from exc

    logger.info("Parsed %d intent(s) in %dms: %s", len(intents), latency_ms,
                [i.type for i in intents])
    return ParseOutcome(intents=intents, latency_ms=latency_ms)
