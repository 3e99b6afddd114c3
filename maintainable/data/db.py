"""
maintainable — SQLite storage.

Users, habits, check-ins, pending actions and the email audit log persist in
one SQLite file. Every store class opens short-lived connections; statements
that must succeed or fail together share a single `with conn:` transaction.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path

from maintainable.data.models import Checkin, Habit, PendingAction, User

logger = logging.getLogger(__name__)


_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    email            TEXT    NOT NULL UNIQUE,
    display_name     TEXT,
    tier             TEXT    NOT NULL DEFAULT 'free',
    preferences      TEXT    DEFAULT '{}',
    created_at       TEXT    NOT NULL DEFAULT (datetime('now')),
    last_checkin_at  TEXT
);

CREATE TABLE IF NOT EXISTS habits (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id       INTEGER NOT NULL REFERENCES users(id),
    name          TEXT    NOT NULL,
    display_name  TEXT,
    unit          TEXT,
    goal          REAL,
    active        INTEGER NOT NULL DEFAULT 1,
    sort_order    INTEGER DEFAULT 0,
    created_at    TEXT    NOT NULL DEFAULT (datetime('now')),
    removed_at    TEXT,
    UNIQUE(user_id, name)
);

CREATE TABLE IF NOT EXISTS checkins (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id     INTEGER NOT NULL REFERENCES users(id),
    habit_id    INTEGER NOT NULL REFERENCES habits(id),
    date        TEXT    NOT NULL,
    value       REAL,
    status      TEXT    NOT NULL DEFAULT 'full',
    done        INTEGER,
    note        TEXT,
    created_at  TEXT    NOT NULL DEFAULT (datetime('now')),
    UNIQUE(user_id, habit_id, date)
);

CREATE TABLE IF NOT EXISTS emails (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id         INTEGER REFERENCES users(id),
    direction       TEXT    NOT NULL,
    subject         TEXT,
    body            TEXT    NOT NULL,
    parsed_intents  TEXT,
    created_at      TEXT    NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS inbound_emails (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    message_id    TEXT    NOT NULL UNIQUE,
    from_email    TEXT    NOT NULL,
    subject       TEXT    NOT NULL,
    body          TEXT    NOT NULL,
    status        TEXT    NOT NULL DEFAULT 'new',
    error         TEXT,
    retry_count   INTEGER NOT NULL DEFAULT 0,
    received_at   TEXT    NOT NULL DEFAULT (datetime('now')),
    processed_at  TEXT
);

CREATE TABLE IF NOT EXISTS pending_actions (
    id                     INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id                INTEGER NOT NULL REFERENCES users(id),
    action_type            TEXT    NOT NULL,
    action_data            TEXT    NOT NULL,
    suggested_in_email_id  TEXT,
    created_at             TEXT    NOT NULL DEFAULT (datetime('now')),
    resolved_at            TEXT,
    resolved_action        TEXT
);

CREATE INDEX IF NOT EXISTS idx_checkins_user_date ON checkins(user_id, date);
CREATE INDEX IF NOT EXISTS idx_checkins_habit_date ON checkins(habit_id, date);
CREATE INDEX IF NOT EXISTS idx_habits_user ON habits(user_id, active);
CREATE INDEX IF NOT EXISTS idx_emails_user ON emails(user_id, created_at);
CREATE INDEX IF NOT EXISTS idx_inbound_emails_status ON inbound_emails(status, received_at);
CREATE INDEX IF NOT EXISTS idx_pending_actions_user_unresolved
    ON pending_actions(user_id, created_at) WHERE resolved_at IS NULL;
"""

# Columns added after the first deployed schema: (table, column, DDL)
_LATE_COLUMNS = [
    ("checkins", "status", "TEXT NOT NULL DEFAULT 'full'"),
    ("inbound_emails", "retry_count", "INTEGER NOT NULL DEFAULT 0"),
]


class SQLiteStore:
    """Base for the store classes: connection handling and schema setup."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from maintainable.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _init_db(self) -> None:
        """Create all tables if they don't exist, and migrate older files."""
        with self._connect() as conn:
            conn.executescript(_SCHEMA)
            for table, column, ddl in _LATE_COLUMNS:
                existing_cols = {
                    row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()
                }
                if column not in existing_cols:
                    conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}")
                    logger.info("Migrated %s: added column %s", table, column)
        logger.debug("Schema initialized at %s", self._db_path)


def _row_to_user(row: sqlite3.Row) -> User:
    return User(
        id=row["id"],
        email=row["email"],
        display_name=row["display_name"],
        tier=row["tier"],
        preferences=row["preferences"] or "{}",
        created_at=row["created_at"],
        last_checkin_at=row["last_checkin_at"],
    )


def _row_to_habit(row: sqlite3.Row) -> Habit:
    return Habit(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        display_name=row["display_name"],
        unit=row["unit"],
        goal=row["goal"],
        active=bool(row["active"]),
        sort_order=row["sort_order"] or 0,
        created_at=row["created_at"],
        removed_at=row["removed_at"],
    )


def _row_to_checkin(row: sqlite3.Row) -> Checkin:
    keys = row.keys()
    return Checkin(
        id=row["id"],
        user_id=row["user_id"],
        habit_id=row["habit_id"],
        date=row["date"],
        value=row["value"],
        status=row["status"],
        done=bool(row["done"]),
        note=row["note"],
        created_at=row["created_at"],
        habit_name=row["habit_name"] if "habit_name" in keys else None,
        unit=row["unit"] if "unit" in keys else None,
        goal=row["goal"] if "goal" in keys else None,
    )


class UserDB(SQLiteStore):
    """Users keyed by sender email address."""

    def get_or_create(self, email: str) -> tuple[User, bool]:
        """Return (user, is_new) for a sender address."""
        email = email.strip().lower()
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE email = ?", (email,)).fetchone()
            if row is not None:
                return _row_to_user(row), False
            cursor = conn.execute("INSERT INTO users (email) VALUES (?)", (email,))
            row = conn.execute(
                "SELECT * FROM users WHERE id = ?", (cursor.lastrowid,),
            ).fetchone()
        logger.info("User registered: #%d <%s>", row["id"], email)
        return _row_to_user(row), True

    def get_user(self, user_id: int) -> User | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM users ORDER BY created_at, id").fetchall()
        return [_row_to_user(r) for r in rows]


@dataclass
class CheckinOutcome:
    """What record_checkin did, for building the execution result."""

    habit: Habit
    checkin: Checkin
    created: bool = False
    reactivated: bool = False
    accumulated: bool = False


_UPSERT_CHECKIN = """
    INSERT INTO checkins (user_id, habit_id, date, value, status, done, note)
    VALUES (?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT(user_id, habit_id, date) DO UPDATE SET
        value = CASE
            WHEN excluded.value IS NOT NULL AND checkins.value IS NOT NULL
            THEN checkins.value + excluded.value
            ELSE COALESCE(excluded.value, checkins.value)
        END,
        status = excluded.status,
        done   = excluded.done,
        note   = excluded.note
"""


class HabitDB(SQLiteStore):
    """Habits and their daily check-ins."""

    def find_habit(self, user_id: int, name: str) -> Habit | None:
        """Exact match on normalized name, active or not."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM habits WHERE user_id = ? AND name = ?",
                (user_id, name.strip().lower()),
            ).fetchone()
        return _row_to_habit(row) if row is not None else None

    def list_active(self, user_id: int) -> list[Habit]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM habits WHERE user_id = ? AND active = 1 "
                "ORDER BY sort_order, created_at, id",
                (user_id,),
            ).fetchall()
        return [_row_to_habit(r) for r in rows]

    def add_habit(
        self,
        user_id: int,
        name: str,
        unit: str | None = None,
        goal: float | None = None,
    ) -> Habit:
        """Insert a new active habit."""
        normalized = name.strip().lower()
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO habits (user_id, name, display_name, unit, goal) VALUES (?, ?, ?, ?, ?)",
                (user_id, normalized, name.strip(), unit, goal),
            )
            row = conn.execute("SELECT * FROM habits WHERE id = ?", (cursor.lastrowid,)).fetchone()
        logger.info("Habit added: #%d '%s' for user %d", row["id"], normalized, user_id)
        return _row_to_habit(row)

    def reactivate(self, habit_id: int) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE habits SET active = 1, removed_at = NULL WHERE id = ?", (habit_id,),
            )
        logger.info("Habit #%d reactivated", habit_id)

    def soft_delete(self, habit_id: int) -> bool:
        """Mark a habit inactive with a removal timestamp."""
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE habits SET active = 0, removed_at = datetime('now') "
                "WHERE id = ? AND active = 1",
                (habit_id,),
            )
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Habit #%d soft-deleted", habit_id)
        return deleted

    def update_habit(self, habit_id: int, changes: dict) -> None:
        """Apply a subset of {goal, unit}."""
        allowed = {k: v for k, v in changes.items() if k in ("goal", "unit")}
        if not allowed:
            return
        assignments = ", ".join(f"{k} = ?" for k in allowed)
        with self._connect() as conn:
            conn.execute(
                f"UPDATE habits SET {assignments} WHERE id = ?",
                (*allowed.values(), habit_id),
            )
        logger.info("Habit #%d updated: %s", habit_id, allowed)

    def record_checkin(
        self,
        user_id: int,
        habit_name: str,
        date: str,
        value: float | None = None,
        status: str = "full",
        note: str | None = None,
        unit: str | None = None,
    ) -> CheckinOutcome:
        """Resolve (or auto-create) the habit and upsert the day's check-in.

        Runs as one transaction: a crash never leaves an auto-created habit
        without its check-in. Numeric values accumulate across same-day
        check-ins; status, done and note are last-write-wins.
        """
        normalized = habit_name.strip().lower()
        done = 0 if status == "skip" else 1
        created = reactivated = False

        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM habits WHERE user_id = ? AND name = ?", (user_id, normalized),
            ).fetchone()
            if row is None:
                cursor = conn.execute(
                    "INSERT INTO habits (user_id, name, display_name, unit) VALUES (?, ?, ?, ?)",
                    (user_id, normalized, habit_name.strip(), unit),
                )
                habit_id = cursor.lastrowid
                created = True
            else:
                habit_id = row["id"]
                if not row["active"]:
                    conn.execute(
                        "UPDATE habits SET active = 1, removed_at = NULL WHERE id = ?", (habit_id,),
                    )
                    reactivated = True

            previous = conn.execute(
                "SELECT value FROM checkins WHERE user_id = ? AND habit_id = ? AND date = ?",
                (user_id, habit_id, date),
            ).fetchone()
            conn.execute(_UPSERT_CHECKIN, (user_id, habit_id, date, value, status, done, note))
            conn.execute("UPDATE users SET last_checkin_at = ? WHERE id = ?", (date, user_id))

            habit_row = conn.execute("SELECT * FROM habits WHERE id = ?", (habit_id,)).fetchone()
            checkin_row = conn.execute(
                "SELECT * FROM checkins WHERE user_id = ? AND habit_id = ? AND date = ?",
                (user_id, habit_id, date),
            ).fetchone()

        if created:
            logger.info("Habit auto-created on check-in: '%s' for user %d", normalized, user_id)
        accumulated = (
            previous is not None and previous["value"] is not None and value is not None
        )
        return CheckinOutcome(
            habit=_row_to_habit(habit_row),
            checkin=_row_to_checkin(checkin_row),
            created=created,
            reactivated=reactivated,
            accumulated=accumulated,
        )

    def get_checkins_for_date(self, user_id: int, date: str) -> list[Checkin]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT c.*, h.name AS habit_name, h.unit, h.goal
                FROM checkins c JOIN habits h ON h.id = c.habit_id
                WHERE c.user_id = ? AND c.date = ?
                ORDER BY h.sort_order, h.created_at, h.id
                """,
                (user_id, date),
            ).fetchall()
        return [_row_to_checkin(r) for r in rows]

    def get_checkins_between(self, user_id: int, start: str, end: str) -> list[Checkin]:
        """Check-ins with start <= date <= end, oldest first."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT c.*, h.name AS habit_name, h.unit, h.goal
                FROM checkins c JOIN habits h ON h.id = c.habit_id
                WHERE c.user_id = ? AND c.date >= ? AND c.date <= ?
                ORDER BY c.date, h.id
                """,
                (user_id, start, end),
            ).fetchall()
        return [_row_to_checkin(r) for r in rows]

    def first_checkin_date(self, user_id: int) -> str | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT MIN(date) AS first_date FROM checkins WHERE user_id = ?", (user_id,),
            ).fetchone()
        return row["first_date"]

    def count_checkins(self, user_id: int, date: str) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM checkins WHERE user_id = ? AND date = ?",
                (user_id, date),
            ).fetchone()
        return row["n"]


def _row_to_pending(row: sqlite3.Row) -> PendingAction:
    return PendingAction(
        id=row["id"],
        user_id=row["user_id"],
        action_type=row["action_type"],
        action_data=json.loads(row["action_data"] or "{}"),
        suggested_in_email_id=row["suggested_in_email_id"],
        created_at=row["created_at"],
        resolved_at=row["resolved_at"],
        resolved_action=row["resolved_action"],
    )


class PendingActionDB(SQLiteStore):
    """Suggestions waiting for the user's yes/no."""

    def suggest(
        self,
        user_id: int,
        action_type: str,
        action_data: dict,
        email_id: str | None = None,
    ) -> PendingAction:
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO pending_actions (user_id, action_type, action_data, suggested_in_email_id) "
                "VALUES (?, ?, ?, ?)",
                (user_id, action_type, json.dumps(action_data), email_id),
            )
            row = conn.execute(
                "SELECT * FROM pending_actions WHERE id = ?", (cursor.lastrowid,),
            ).fetchone()
        logger.info("Pending action #%d suggested: %s %s", row["id"], action_type, action_data)
        return _row_to_pending(row)

    def latest_unresolved(self, user_id: int) -> PendingAction | None:
        """Most recent unresolved suggestion for this user, if any."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM pending_actions WHERE user_id = ? AND resolved_at IS NULL "
                "ORDER BY created_at DESC, id DESC LIMIT 1",
                (user_id,),
            ).fetchone()
        return _row_to_pending(row) if row is not None else None

    def resolve(self, action_id: int, resolved_action: str) -> bool:
        """Single-use: only an unresolved row can be resolved."""
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE pending_actions SET resolved_at = datetime('now'), resolved_action = ? "
                "WHERE id = ? AND resolved_at IS NULL",
                (resolved_action, action_id),
            )
        resolved = cursor.rowcount > 0
        if resolved:
            logger.info("Pending action #%d %s", action_id, resolved_action)
        return resolved


class EmailLogDB(SQLiteStore):
    """Audit log of incoming emails (with parsed intents) and our replies."""

    def log_incoming(
        self, user_id: int, subject: str, body: str, parsed_intents: str | None = None,
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO emails (user_id, direction, subject, body, parsed_intents) "
                "VALUES (?, 'incoming', ?, ?, ?)",
                (user_id, subject, body, parsed_intents),
            )

    def log_outgoing(self, user_id: int, subject: str, body: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO emails (user_id, direction, subject, body) VALUES (?, 'outgoing', ?, ?)",
                (user_id, subject, body),
            )
