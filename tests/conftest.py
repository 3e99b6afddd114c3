"""Shared test fixtures and configuration.

Sets up fake environment variables so maintainable.config doesn't sys.exit(),
and provides store fixtures backed by a temp SQLite file.
"""

import os
import sqlite3
import tempfile

# Patch env vars BEFORE any maintainable imports
os.environ.setdefault("MAIL_ADDRESS", "coach@maintainable.test")
os.environ.setdefault("MAIL_PASSWORD", "fake-password-for-tests")
os.environ.setdefault("LLM_PROVIDER", "ollama")
os.environ.setdefault("DATABASE_PATH", os.path.join(tempfile.gettempdir(), "maintainable-tests.db"))
os.environ.setdefault("TIMEZONE", "America/Chicago")

import pytest


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_maintainable.db")


@pytest.fixture
def user_db(tmp_db_path):
    from maintainable.data.db import UserDB
    return UserDB(db_path=tmp_db_path)


@pytest.fixture
def habit_db(tmp_db_path):
    from maintainable.data.db import HabitDB
    return HabitDB(db_path=tmp_db_path)


@pytest.fixture
def pending_db(tmp_db_path):
    from maintainable.data.db import PendingActionDB
    return PendingActionDB(db_path=tmp_db_path)


@pytest.fixture
def email_log(tmp_db_path):
    from maintainable.data.db import EmailLogDB
    return EmailLogDB(db_path=tmp_db_path)


@pytest.fixture
def queue(tmp_db_path):
    from maintainable.core.queue import ProcessingQueue
    return ProcessingQueue(db_path=tmp_db_path, max_retries=3)


@pytest.fixture
def stores(tmp_db_path):
    from maintainable.core.pipeline import Stores
    return Stores.open(tmp_db_path)


@pytest.fixture
def user(user_db):
    """A registered user."""
    created, _ = user_db.get_or_create("alex@example.com")
    return created


@pytest.fixture
def email_rows(tmp_db_path):
    """Read a user's audit-log rows straight from the emails table."""
    def _rows(user_id):
        conn = sqlite3.connect(tmp_db_path)
        conn.row_factory = sqlite3.Row
        try:
            rows = conn.execute(
                "SELECT * FROM emails WHERE user_id = ? ORDER BY id", (user_id,),
            ).fetchall()
        finally:
            conn.close()
        return [dict(r) for r in rows]
    return _rows
