"""
maintainable — Structured context for the reply LLM.

Every fact the reply model may mention comes from a store query rendered
here; the model itself never sees raw tables. Sections, in order:

    USER PROFILE
    TODAY'S CHECK-IN
    THIS WEEK                       (only when the week has check-ins)
    HABITS NOT YET CHECKED IN TODAY (only when a query ran)
    WHAT JUST HAPPENED              (successful results only)
    USER'S ORIGINAL MESSAGE
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date as date_cls, timedelta
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from maintainable.core.executor import ExecutionResult
    from maintainable.data.db import HabitDB, UserDB
    from maintainable.data.models import Checkin, Habit


def _fmt(number: float) -> str:
    return f"{number:g}"


def week_start(day: str) -> str:
    """Monday of the ISO week containing day."""
    d = date_cls.fromisoformat(day)
    return (d - timedelta(days=d.weekday())).isoformat()


def _habit_label(habit: Habit) -> str:
    if not habit.goal:
        return habit.name
    unit = f" {habit.unit}" if habit.unit else ""
    return f"{habit.name} (goal: {_fmt(habit.goal)}{unit})"


def _checkin_line(c: Checkin) -> str:
    if c.value is not None:
        value_str = _fmt(c.value) + (f" {c.unit}" if c.unit else "")
    else:
        value_str = "✓" if c.done else "✗"

    goal_str = ""
    if c.goal and c.value is not None:
        goal_str = " (goal met ✓)" if c.value >= c.goal else f" (goal: {_fmt(c.goal)})"

    return f"  {c.habit_name}: {value_str} [{c.status}]{goal_str}"


def _week_lines(checkins: list[Checkin]) -> list[str]:
    by_habit: dict[str, list[Checkin]] = defaultdict(list)
    for c in checkins:
        by_habit[c.habit_name].append(c)

    lines = []
    for habit_name, entries in by_habit.items():
        values = [
            _fmt(e.value) if e.value is not None else ("✓" if e.done else "✗")
            for e in entries
        ]
        numeric = [e.value for e in entries if e.value is not None]
        goal = entries[0].goal

        extras = []
        if numeric:
            extras.append(f"avg {sum(numeric) / len(numeric):.1f}")
        if goal:
            met = sum(1 for v in numeric if v >= goal)
            extras.append(f"goal met {met}/{len(entries)} days")

        line = f"  {habit_name}: {', '.join(values)}"
        if extras:
            line += f" ({', '.join(extras)})"
        lines.append(line)
    return lines


def build_structured_context(
    habit_db: HabitDB,
    user_db: UserDB,
    user_id: int,
    date: str,
    results: list[ExecutionResult],
    original_message: str,
) -> str:
    """Render the reply model's input for one processed email."""
    user = user_db.get_user(user_id)
    habits = habit_db.list_active(user_id)
    today_checkins = habit_db.get_checkins_for_date(user_id, date)

    monday = week_start(date)
    week_checkins = habit_db.get_checkins_between(user_id, monday, date)

    first_date = habit_db.first_checkin_date(user_id)
    if first_date:
        days_since_start = (
            date_cls.fromisoformat(date) - date_cls.fromisoformat(first_date)
        ).days + 1
    else:
        days_since_start = 1

    name = user.friendly_name if user is not None else "there"
    sections: list[str] = []

    sections.append(
        "USER PROFILE:\n"
        f"  Name: {name}\n"
        f"  Tracking since: {first_date or date} ({days_since_start} days)\n"
        f"  Active habits: {', '.join(_habit_label(h) for h in habits) or 'none yet'}"
    )

    if today_checkins:
        lines = [_checkin_line(c) for c in today_checkins]
        reported = {c.habit_name for c in today_checkins}
        lines.extend(f"  {h.name}: (not reported)" for h in habits if h.name not in reported)
        sections.append("TODAY'S CHECK-IN:\n" + "\n".join(lines))
    else:
        sections.append("TODAY'S CHECK-IN:\n  No check-ins recorded yet today.")

    if week_checkins:
        sections.append(
            f"THIS WEEK ({monday} to {date}):\n" + "\n".join(_week_lines(week_checkins))
        )

    if any(r.action == "query" and r.success for r in results):
        reported = {c.habit_name for c in today_checkins}
        unchecked = [h.name for h in habits if h.name not in reported]
        if unchecked:
            sections.append(
                "HABITS NOT YET CHECKED IN TODAY:\n"
                + "\n".join(f"  - {n}" for n in unchecked)
            )

    action_lines = [f"  - {r.detail}" for r in results if r.success]
    if action_lines:
        sections.append("WHAT JUST HAPPENED:\n" + "\n".join(action_lines))

    sections.append(f"USER'S ORIGINAL MESSAGE:\n  \"{original_message}\"")

    return "\n\n".join(sections)
