"""
maintainable — Intent validation and sanitization.

Last line of defense between LLM output and the database. Each intent is
checked on its own: an invalid one is dropped and reported, the rest still
execute. Accepted intents come back sanitized (names normalized and
truncated, notes truncated, status coerced).
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass

from maintainable.core.parser import (
    VALID_STATUSES,
    AddHabitIntent,
    CheckinIntent,
    Intent,
    RemoveHabitIntent,
    UpdateHabitIntent,
)

MAX_HABIT_NAME = 50
MAX_VALUE = 10000
MAX_NOTE = 500
HABIT_NAME_RE = re.compile(r"^[a-z0-9 _-]+$")


@dataclass
class ValidationError:
    field: str
    message: str


def _check_name(name: str, field: str) -> list[ValidationError]:
    if not name or not isinstance(name, str):
        return [ValidationError(field, "Missing habit name")]
    errors = []
    if len(name) > MAX_HABIT_NAME:
        errors.append(ValidationError(field, f"Habit name too long: {name[:20]}..."))
    if not HABIT_NAME_RE.match(name):
        errors.append(ValidationError(field, f"Invalid habit name chars: {name[:20]}"))
    return errors


def _check_number(value: float | None, field: str, label: str) -> list[ValidationError]:
    if value is None:
        return []
    if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value):
        return [ValidationError(field, f"Non-numeric {label}")]
    if value < 0 or value > MAX_VALUE:
        return [ValidationError(field, f"{label.capitalize()} out of range: {value}")]
    return []


def _validate_intent(intent: Intent) -> list[ValidationError]:
    errors: list[ValidationError] = []

    if isinstance(intent, CheckinIntent):
        for entry in intent.entries:
            name_errors = _check_name(entry.habit, "checkin.habit")
            errors.extend(name_errors)
            if name_errors and not entry.habit:
                continue
            errors.extend(_check_number(entry.value, "checkin.value", f"value for {entry.habit}"))
            if entry.status and entry.status not in VALID_STATUSES:
                errors.append(ValidationError(
                    "checkin.status", f"Invalid status for {entry.habit}: {entry.status}",
                ))

    elif isinstance(intent, AddHabitIntent):
        for h in intent.habits:
            errors.extend(_check_name(h.name, "add_habit.name"))
            errors.extend(_check_number(h.goal, "add_habit.goal", "goal"))

    elif isinstance(intent, RemoveHabitIntent):
        for name in intent.habits:
            errors.extend(_check_name(name, "remove_habit.name"))

    elif isinstance(intent, UpdateHabitIntent):
        errors.extend(_check_name(intent.habit, "update_habit.habit"))
        errors.extend(_check_number(intent.goal, "update_habit.goal", "goal"))

    # greeting, help, query, settings, correction, affirm, decline: no dangerous fields
    return errors


def _clean_name(name: str) -> str:
    return name[:MAX_HABIT_NAME].lower().strip()


def _sanitize_intent(intent: Intent) -> Intent:
    if isinstance(intent, CheckinIntent):
        entries = [
            e.model_copy(update={
                "habit": _clean_name(e.habit),
                "note": e.note[:MAX_NOTE] if e.note else None,
                "status": e.status if e.status in VALID_STATUSES else "full",
            })
            for e in intent.entries
        ]
        return intent.model_copy(update={"entries": entries})
    if isinstance(intent, AddHabitIntent):
        habits = [h.model_copy(update={"name": _clean_name(h.name)}) for h in intent.habits]
        return intent.model_copy(update={"habits": habits})
    if isinstance(intent, RemoveHabitIntent):
        return intent.model_copy(update={"habits": [_clean_name(h) for h in intent.habits]})
    if isinstance(intent, UpdateHabitIntent):
        return intent.model_copy(update={"habit": _clean_name(intent.habit)})
    return intent


def validate_intents(intents: list[Intent]) -> tuple[list[Intent], list[ValidationError]]:
    """Split intents into sanitized valid ones and per-field errors.

    Pure: the input list and its models are left untouched.
    """
    valid: list[Intent] = []
    errors: list[ValidationError] = []

    for intent in intents:
        intent_errors = _validate_intent(intent)
        if intent_errors:
            errors.extend(intent_errors)
        else:
            valid.append(_sanitize_intent(intent))

    return valid, errors
