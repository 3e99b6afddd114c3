"""Tests for maintainable.core.scheduler — daily reminder emails."""

from datetime import datetime
from zoneinfo import ZoneInfo

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from maintainable.core.scheduler import REMINDER_JOB_ID, ReminderScheduler, format_short_date

CHICAGO = ZoneInfo("America/Chicago")


def _at(hour, day=17):
    return datetime(2026, 2, day, hour, 5, tzinfo=CHICAGO)


@pytest.fixture
def mail():
    m = MagicMock()
    m.send_fresh = AsyncMock()
    return m


@pytest.fixture
def scheduler(mail, user_db, habit_db):
    return ReminderScheduler(mail, user_db, habit_db, reminder_hour=21, timezone="America/Chicago")


class TestFormatShortDate:
    def test_no_zero_padding(self):
        assert format_short_date("2026-02-07") == "2/7/26"


class TestJobRegistration:
    @pytest.mark.asyncio
    async def test_daily_cron_at_reminder_hour(self, scheduler):
        scheduler.start()
        try:
            job = scheduler.scheduler.get_job(REMINDER_JOB_ID)
            assert job is not None
            fields = {f.name: str(f) for f in job.trigger.fields}
            assert fields["hour"] == "21"
            assert fields["minute"] == "0"
            next_run = job.next_run_time.astimezone(CHICAGO)
            assert (next_run.hour, next_run.minute) == (21, 0)
        finally:
            scheduler.stop()
        assert scheduler.scheduler.running is False

    def test_stop_before_start_is_harmless(self, scheduler):
        scheduler.stop()

    @pytest.mark.asyncio
    async def test_job_errors_are_logged_not_raised(self, scheduler):
        with patch.object(scheduler, "send_reminders", AsyncMock(side_effect=RuntimeError("db gone"))):
            await scheduler._reminder_job()


class TestSendReminders:
    @pytest.mark.asyncio
    async def test_reminds_user_who_has_not_checked_in(self, scheduler, mail, habit_db, user):
        habit_db.add_habit(user.id, "water")
        habit_db.add_habit(user.id, "pushups")

        assert await scheduler.send_reminders(_at(21)) == 1
        to, subject, body = mail.send_fresh.await_args.args
        assert to == "alex@example.com"
        assert subject == "Daily check-in — 2/17/26"
        assert body.startswith("Hey alex! How did today go?")
        assert "Your habits: water, pushups" in body
        assert '"water done, pushups done"' in body

    @pytest.mark.asyncio
    async def test_already_checked_in_gets_nudge(self, scheduler, mail, habit_db, user):
        habit_db.record_checkin(user.id, "water", "2026-02-17", value=8)
        await scheduler.send_reminders(_at(21))
        body = mail.send_fresh.await_args.args[2]
        assert "You already checked in today" in body

    @pytest.mark.asyncio
    async def test_users_without_habits_skipped(self, scheduler, mail, user):
        assert await scheduler.send_reminders(_at(21)) == 0
        mail.send_fresh.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_once_per_day(self, scheduler, mail, habit_db, user):
        habit_db.add_habit(user.id, "water")
        await scheduler.send_reminders(_at(21))
        await scheduler.send_reminders(datetime(2026, 2, 17, 21, 45, tzinfo=CHICAGO))
        assert mail.send_fresh.await_count == 1

    @pytest.mark.asyncio
    async def test_day_rollover_resets(self, scheduler, mail, habit_db, user):
        habit_db.add_habit(user.id, "water")
        await scheduler.send_reminders(_at(21, day=17))
        await scheduler.send_reminders(_at(21, day=18))
        assert scheduler.current_day == "2026-02-18"
        assert mail.send_fresh.await_count == 2

    @pytest.mark.asyncio
    async def test_day_is_local_to_timezone(self, scheduler, mail, habit_db, user):
        habit_db.add_habit(user.id, "water")
        # 03:05 UTC on the 18th is 21:05 in Chicago on the 17th
        await scheduler.send_reminders(datetime(2026, 2, 18, 3, 5, tzinfo=ZoneInfo("UTC")))
        assert mail.send_fresh.await_args.args[1] == "Daily check-in — 2/17/26"

    @pytest.mark.asyncio
    async def test_send_failure_does_not_stop_others(self, scheduler, mail, user_db, habit_db, user):
        other, _ = user_db.get_or_create("sam@example.com")
        habit_db.add_habit(user.id, "water")
        habit_db.add_habit(other.id, "water")
        mail.send_fresh.side_effect = [OSError("smtp down"), None]

        assert await scheduler.send_reminders(_at(21)) == 1
        assert scheduler.sent_today == {other.id}
