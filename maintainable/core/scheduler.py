"""
maintainable — Daily check-in reminders.

An APScheduler cron job fires at REMINDER_HOUR:00 in TIMEZONE. Every user
with active habits gets an email: a gentle prompt if they haven't checked in
yet, a short "nice work" if they have. Users without habits are never emailed.

The "already reminded" set belongs to the scheduler instance and resets on
day rollover, so any second run on the same day sends nothing new.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from maintainable.config import settings

if TYPE_CHECKING:
    from maintainable.data.db import HabitDB, UserDB
    from maintainable.data.models import Habit, User
    from maintainable.ports.mail_port import MailPort

logger = logging.getLogger(__name__)

REMINDER_JOB_ID = "daily_reminder"
MISFIRE_GRACE_SECONDS = 300


def format_short_date(day: str) -> str:
    """'2026-02-07' → '2/7/26'."""
    d = date.fromisoformat(day)
    return f"{d.month}/{d.day}/{d.strftime('%y')}"


def build_reminder(user: User, habits: list[Habit], checked_in: bool) -> str:
    name = user.friendly_name
    if checked_in:
        return (
            f"Hey {name}! You already checked in today — nice work. If you did anything "
            "else, just reply with an update. Otherwise, see you tomorrow!"
        )

    names = [h.display_name or h.name for h in habits]
    example = f"{names[0]} done"
    if len(names) > 1:
        example += f", {names[1]} done"
    return (
        f"Hey {name}! How did today go?\n\n"
        f"Your habits: {', '.join(names)}\n\n"
        f"Just reply with what you did — like \"{example}\" or whatever feels natural."
    )


class ReminderScheduler:
    """Sends one reminder per user per local day from a daily cron job."""

    def __init__(
        self,
        mail: MailPort,
        user_db: UserDB,
        habit_db: HabitDB,
        reminder_hour: int | None = None,
        timezone: str | None = None,
    ) -> None:
        self._mail = mail
        self._user_db = user_db
        self._habit_db = habit_db
        self.reminder_hour = settings.REMINDER_HOUR if reminder_hour is None else reminder_hour
        self._tz = ZoneInfo(timezone or settings.TIMEZONE)
        self.sent_today: set[int] = set()
        self.current_day = ""
        self.scheduler = AsyncIOScheduler(
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": MISFIRE_GRACE_SECONDS,
            },
            timezone=self._tz,
        )

    async def send_reminders(self, now: datetime | None = None) -> int:
        """Email every user with active habits once for the local day.

        Returns the number of reminders sent. Users already reminded today
        are skipped, so a manual trigger after the cron run sends nothing.
        """
        local = (now or datetime.now(self._tz)).astimezone(self._tz)
        today = local.date().isoformat()

        if today != self.current_day:
            self.sent_today.clear()
            self.current_day = today

        sent = 0
        for user in self._user_db.list_users():
            if user.id in self.sent_today:
                continue

            habits = self._habit_db.list_active(user.id)
            if not habits:
                continue

            checked_in = self._habit_db.count_checkins(user.id, today) > 0
            body = build_reminder(user, habits, checked_in)
            try:
                await self._mail.send_fresh(
                    user.email, f"Daily check-in — {format_short_date(today)}", body,
                )
            except Exception as exc:
                logger.error("Failed to send reminder to %s: %s", user.email, exc)
                continue

            self.sent_today.add(user.id)
            sent += 1
            logger.info("Reminder sent to %s (%d habits, checked in: %s)",
                        user.email, len(habits), checked_in)
        return sent

    async def _reminder_job(self) -> None:
        try:
            sent = await self.send_reminders()
        except Exception as exc:
            logger.error("Daily reminder run failed: %s", exc, exc_info=True)
            return
        logger.info("Daily reminder run finished: %d sent", sent)

    def start(self) -> None:
        """Register the daily cron job and start the scheduler (needs a running loop)."""
        self.scheduler.add_job(
            self._reminder_job,
            trigger=CronTrigger(hour=self.reminder_hour, minute=0, timezone=self._tz),
            id=REMINDER_JOB_ID,
            name="Daily check-in reminder",
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info("Daily reminder scheduled at %02d:00 %s", self.reminder_hour, self._tz.key)

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Daily reminder scheduler stopped")
