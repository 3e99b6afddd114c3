"""
maintainable — Data Models.

Rows of the SQLite store as plain dataclasses. Habits are soft-deleted
(never hard-deleted), check-ins are unique per (user, habit, day), and
inbound emails double as the processing queue and the dedup ledger.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class User:
    """A sender we have seen at least once."""

    id: int
    email: str
    display_name: str | None = None
    tier: str = "free"
    preferences: str = "{}"
    created_at: str = ""
    last_checkin_at: str | None = None

    @property
    def friendly_name(self) -> str:
        return self.display_name or self.email.split("@")[0]


@dataclass
class Habit:
    """A tracked habit, identified by (user_id, name)."""

    id: int
    user_id: int
    name: str                       # normalized: lowercased, trimmed
    display_name: str | None = None
    unit: str | None = None         # e.g. "glasses"
    goal: float | None = None
    active: bool = True
    sort_order: int = 0
    created_at: str = ""
    removed_at: str | None = None   # set on soft-delete


@dataclass
class Checkin:
    """One day's report for one habit.

    value is None exactly when the check-in is a pure status report.
    habit_name/unit/goal are filled by joined queries only.
    """

    id: int
    user_id: int
    habit_id: int
    date: str                       # ISO date YYYY-MM-DD
    value: float | None = None
    status: str = "full"            # full | partial | skip
    done: bool = True
    note: str | None = None
    created_at: str = ""
    habit_name: str | None = None
    unit: str | None = None
    goal: float | None = None


@dataclass
class InboundEmail:
    """A discovered email and its processing state."""

    id: int
    message_id: str
    from_email: str
    subject: str
    body: str
    status: str = "new"             # new | processing | replied | failed
    error: str | None = None
    retry_count: int = 0
    received_at: str = ""
    processed_at: str | None = None


@dataclass
class PendingAction:
    """A suggested action awaiting an "affirm" from the user."""

    id: int
    user_id: int
    action_type: str                # "add_habit" | "remove_habit"
    action_data: dict = field(default_factory=dict)
    suggested_in_email_id: str | None = None
    created_at: str = ""
    resolved_at: str | None = None
    resolved_action: str | None = None  # "affirmed" | "declined"
