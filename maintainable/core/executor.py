"""
maintainable — Deterministic intent executor.

Applies validated intents to the store in a fixed priority order, so that
e.g. "add yoga, yoga done" always creates the habit before checking it in,
and an "affirm" resolves the pending suggestion before anything else runs.

Business failures ("already exists", "not found") are reported as
ExecutionResult(success=False) next to the successes of sibling intents;
they are never raised.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import date as date_cls, timedelta
from typing import TYPE_CHECKING, assert_never

from pydantic import ValidationError

from maintainable.core.parser import (
    AddHabitEntry,
    AddHabitIntent,
    AffirmIntent,
    CheckinIntent,
    CorrectionIntent,
    DeclineIntent,
    GreetingIntent,
    HelpIntent,
    Intent,
    QueryIntent,
    RemoveHabitIntent,
    SettingsIntent,
    UpdateHabitIntent,
    as_item_list,
)

if TYPE_CHECKING:
    from maintainable.data.db import HabitDB, PendingActionDB
    from maintainable.data.models import PendingAction

logger = logging.getLogger(__name__)

EXEC_ORDER = (
    "affirm", "add_habit", "remove_habit", "update_habit", "settings",
    "checkin", "query", "correction", "greeting", "help", "decline",
)


@dataclass
class ExecutionResult:
    action: str
    success: bool
    detail: str


def _fmt(number: float) -> str:
    """2.0 → '2', 2.5 → '2.5'."""
    return f"{number:g}"


def sort_intents(intents: list[Intent]) -> list[Intent]:
    """Stable sort into EXEC_ORDER."""
    return sorted(intents, key=lambda i: EXEC_ORDER.index(i.type))


def resolve_checkin_date(requested: str | None, today: str) -> str:
    """Map the intent's optional date ("today", "yesterday", ISO) onto a concrete day."""
    if not requested or requested.strip().lower() == "today":
        return today
    if requested.strip().lower() == "yesterday":
        return (date_cls.fromisoformat(today) - timedelta(days=1)).isoformat()
    try:
        return date_cls.fromisoformat(requested.strip()).isoformat()
    except ValueError:
        logger.warning("Ignoring unrecognized check-in date %r", requested)
        return today


# ---------------------------------------------------------------------------
# Habit CRUD
# ---------------------------------------------------------------------------


def _exec_add_habit(habit_db: HabitDB, user_id: int, intent: AddHabitIntent) -> list[ExecutionResult]:
    results: list[ExecutionResult] = []

    for h in intent.habits:
        existing = habit_db.find_habit(user_id, h.name)

        if existing is not None and existing.active:
            results.append(ExecutionResult("add_habit", False, f'"{h.name}" already exists'))
            continue

        if existing is not None:
            habit_db.reactivate(existing.id)
            results.append(ExecutionResult("add_habit", True, f'Reactivated "{h.name}"'))
            continue

        habit_db.add_habit(user_id, h.name, unit=h.unit, goal=h.goal)
        detail = f'Added "{h.name}"'
        if h.unit:
            detail += f" ({h.unit})"
        if h.goal:
            detail += f" goal: {_fmt(h.goal)}"
        results.append(ExecutionResult("add_habit", True, detail))

    return results


def _exec_remove_habit(habit_db: HabitDB, user_id: int, intent: RemoveHabitIntent) -> list[ExecutionResult]:
    results: list[ExecutionResult] = []

    for name in intent.habits:
        habit = habit_db.find_habit(user_id, name)
        if habit is None or not habit.active:
            results.append(ExecutionResult(
                "remove_habit", False, f'"{name}" not found or already removed',
            ))
            continue

        habit_db.soft_delete(habit.id)
        results.append(ExecutionResult("remove_habit", True, f'Removed "{name}"'))

    return results


def _exec_update_habit(habit_db: HabitDB, user_id: int, intent: UpdateHabitIntent) -> ExecutionResult:
    habit = habit_db.find_habit(user_id, intent.habit)
    if habit is None or not habit.active:
        return ExecutionResult("update_habit", False, f'"{intent.habit}" not found')

    changes = {}
    if intent.goal is not None:
        changes["goal"] = intent.goal
    if intent.unit is not None:
        changes["unit"] = intent.unit
    if not changes:
        return ExecutionResult("update_habit", False, "No changes specified")

    habit_db.update_habit(habit.id, changes)
    detail = f'Updated "{intent.habit}"'
    if "goal" in changes:
        detail += f" goal: {_fmt(changes['goal'])}"
    if "unit" in changes:
        detail += f" unit: {changes['unit']}"
    return ExecutionResult("update_habit", True, detail)


# ---------------------------------------------------------------------------
# Check-ins
# ---------------------------------------------------------------------------


def _exec_checkin(
    habit_db: HabitDB, user_id: int, intent: CheckinIntent, today: str,
) -> list[ExecutionResult]:
    results: list[ExecutionResult] = []
    day = resolve_checkin_date(intent.date, today)

    for entry in intent.entries:
        outcome = habit_db.record_checkin(
            user_id,
            entry.habit,
            day,
            value=entry.value,
            status=entry.status,
            note=entry.note,
            unit=entry.unit,
        )
        habit, checkin = outcome.habit, outcome.checkin

        if outcome.reactivated:
            results.append(ExecutionResult(
                "add_habit", True, f'Reactivated "{entry.habit}" (was removed)',
            ))
        elif outcome.created:
            detail = f'Auto-created "{entry.habit}"'
            if entry.unit:
                detail += f" ({entry.unit})"
            results.append(ExecutionResult("add_habit", True, detail))

        if checkin.value is not None:
            value_str = _fmt(checkin.value) + (f" {habit.unit}" if habit.unit else "")
        else:
            value_str = "✓" if checkin.done else "✗"

        goal_str = ""
        if habit.goal and checkin.value is not None:
            goal_str = " (goal met ✓)" if checkin.value >= habit.goal else f" (goal: {_fmt(habit.goal)})"

        detail = f"{entry.habit}: {value_str}{goal_str}"
        if outcome.accumulated and entry.value is not None:
            detail += f" (+{_fmt(entry.value)} today)"
        if day != today:
            detail += f" [for {day}]"
        results.append(ExecutionResult("checkin", True, detail))

    return results


# ---------------------------------------------------------------------------
# Pending suggestions: affirm / decline
# ---------------------------------------------------------------------------


def _pending_to_intent(pending: PendingAction) -> Intent | None:
    """Rebuild the intent a pending suggestion stands for, or None if unknown."""
    data = pending.action_data
    habits = as_item_list(data.get("habits")) if "habits" in data else [data]
    if pending.action_type == "add_habit":
        return AddHabitIntent(habits=[
            AddHabitEntry.model_validate({"name": h} if isinstance(h, str) else h) for h in habits
        ])
    if pending.action_type == "remove_habit":
        names = [h.get("name", "") if isinstance(h, dict) else h for h in habits]
        return RemoveHabitIntent(habits=[str(n).strip().lower() for n in names])
    return None


def _exec_affirm(
    habit_db: HabitDB, pending_db: PendingActionDB | None, user_id: int,
) -> list[ExecutionResult]:
    pending = pending_db.latest_unresolved(user_id) if pending_db is not None else None
    if pending is None:
        return [ExecutionResult("affirm", False, "No pending action to confirm")]

    try:
        inner = _pending_to_intent(pending)
    except ValidationError as exc:
        logger.warning("Pending action #%d has a malformed payload: %s", pending.id, exc)
        inner = None

    if inner is None:
        # Expire it so it cannot shadow newer suggestions on the next "yes"
        pending_db.resolve(pending.id, "expired")
        logger.warning("Expired pending action #%d of unknown type %r",
                       pending.id, pending.action_type)
        return [ExecutionResult(
            "affirm", False, f"Unknown pending action type: {pending.action_type}",
        )]

    if isinstance(inner, AddHabitIntent):
        results = _exec_add_habit(habit_db, user_id, inner)
    else:
        results = _exec_remove_habit(habit_db, user_id, inner)

    pending_db.resolve(pending.id, "affirmed")
    return [replace(r, detail=f"Confirmed: {r.detail}") for r in results]


def _exec_decline(pending_db: PendingActionDB | None, user_id: int) -> ExecutionResult:
    pending = pending_db.latest_unresolved(user_id) if pending_db is not None else None
    if pending is None:
        return ExecutionResult("decline", True, "User declined — nothing pending, just acknowledge")

    pending_db.resolve(pending.id, "declined")
    return ExecutionResult(
        "decline", True, f"Declined suggestion: {pending.action_type} {pending.action_data}",
    )


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------


def execute_intents(
    habit_db: HabitDB,
    user_id: int,
    intents: list[Intent],
    date: str,
    pending_db: PendingActionDB | None = None,
) -> list[ExecutionResult]:
    """Apply intents for one user on one day; returns one or more results per intent."""
    results: list[ExecutionResult] = []

    for intent in sort_intents(intents):
        match intent:
            case AffirmIntent():
                results.extend(_exec_affirm(habit_db, pending_db, user_id))
            case AddHabitIntent():
                results.extend(_exec_add_habit(habit_db, user_id, intent))
            case RemoveHabitIntent():
                results.extend(_exec_remove_habit(habit_db, user_id, intent))
            case UpdateHabitIntent():
                results.append(_exec_update_habit(habit_db, user_id, intent))
            case SettingsIntent():
                results.append(ExecutionResult("settings", True, f"Settings update noted: {intent.changes}"))
            case CheckinIntent():
                results.extend(_exec_checkin(habit_db, user_id, intent, date))
            case QueryIntent():
                results.append(ExecutionResult("query", True, intent.question))
            case CorrectionIntent():
                results.append(ExecutionResult(
                    "correction", True, f"User says something recorded is wrong: {intent.claim}",
                ))
            case GreetingIntent():
                results.append(ExecutionResult(
                    "greeting", True,
                    "User greeted the assistant — respond warmly and mention habits if relevant",
                ))
            case HelpIntent():
                results.append(ExecutionResult("help", True, "Help requested"))
            case DeclineIntent():
                results.append(_exec_decline(pending_db, user_id))
            case _:
                assert_never(intent)

    for r in results:
        if not r.success:
            logger.info("Execution %s failed for user %d: %s", r.action, user_id, r.detail)
    return results
