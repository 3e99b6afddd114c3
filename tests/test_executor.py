"""Tests for maintainable.core.executor — applying intents to the store."""

import sqlite3

import pytest

from maintainable.core.executor import (
    EXEC_ORDER,
    ExecutionResult,
    execute_intents,
    resolve_checkin_date,
    sort_intents,
)
from maintainable.core.parser import (
    AddHabitEntry,
    AddHabitIntent,
    AffirmIntent,
    CheckinEntry,
    CheckinIntent,
    CorrectionIntent,
    DeclineIntent,
    GreetingIntent,
    HelpIntent,
    QueryIntent,
    RemoveHabitIntent,
    SettingsIntent,
    UpdateHabitIntent,
)

DAY = "2026-02-17"


def _add(*names, **kw):
    return AddHabitIntent(habits=[AddHabitEntry(name=n, **kw) for n in names])


def _checkin(*entries, date=None):
    return CheckinIntent(date=date, entries=[CheckinEntry(**e) for e in entries])


class TestOrdering:
    def test_stable_priority_sort(self):
        intents = [
            HelpIntent(), _checkin({"habit": "yoga"}), GreetingIntent(),
            _add("yoga"), AffirmIntent(), DeclineIntent(), QueryIntent(question="?"),
            _checkin({"habit": "water"}),
        ]
        ordered = sort_intents(intents)
        assert [i.type for i in ordered] == [
            "affirm", "add_habit", "checkin", "checkin", "query", "greeting", "help", "decline",
        ]
        checkins = [i for i in ordered if i.type == "checkin"]
        assert checkins[0].entries[0].habit == "yoga"

    def test_every_intent_type_has_a_rank(self):
        from maintainable.core.parser import INTENT_TYPES
        assert set(INTENT_TYPES) == set(EXEC_ORDER)

    def test_add_runs_before_checkin_in_same_message(self, habit_db, user):
        results = execute_intents(
            habit_db, user.id, [_checkin({"habit": "yoga", "value": 1}), _add("yoga")], DAY,
        )
        assert results[0] == ExecutionResult("add_habit", True, 'Added "yoga"')
        assert results[1].action == "checkin"
        assert results[1].success is True
        assert not any("not found" in r.detail for r in results)


class TestAddHabit:
    def test_added_with_unit_and_goal(self, habit_db, user):
        results = execute_intents(habit_db, user.id, [_add("meditation", unit="minutes", goal=10)], DAY)
        assert results == [ExecutionResult("add_habit", True, 'Added "meditation" (minutes) goal: 10')]

    def test_already_exists(self, habit_db, user):
        habit_db.add_habit(user.id, "water")
        results = execute_intents(habit_db, user.id, [_add("water")], DAY)
        assert results == [ExecutionResult("add_habit", False, '"water" already exists')]

    def test_soft_delete_round_trip(self, habit_db, user, tmp_db_path):
        execute_intents(habit_db, user.id, [_add("yoga")], DAY)
        execute_intents(habit_db, user.id, [RemoveHabitIntent(habits=["yoga"])], DAY)
        results = execute_intents(habit_db, user.id, [_add("yoga")], DAY)

        assert results == [ExecutionResult("add_habit", True, 'Reactivated "yoga"')]
        with sqlite3.connect(tmp_db_path) as conn:
            rows = conn.execute(
                "SELECT active, removed_at FROM habits WHERE user_id = ? AND name = 'yoga'",
                (user.id,),
            ).fetchall()
        conn.close()
        assert rows == [(1, None)]


class TestRemoveHabit:
    def test_removed(self, habit_db, user):
        habit_db.add_habit(user.id, "vitamins")
        results = execute_intents(habit_db, user.id, [RemoveHabitIntent(habits=["vitamins"])], DAY)
        assert results == [ExecutionResult("remove_habit", True, 'Removed "vitamins"')]

    def test_missing_and_already_removed(self, habit_db, user):
        habit = habit_db.add_habit(user.id, "vitamins")
        habit_db.soft_delete(habit.id)
        results = execute_intents(
            habit_db, user.id, [RemoveHabitIntent(habits=["vitamins", "ghost"])], DAY,
        )
        assert [r.success for r in results] == [False, False]
        assert all("not found or already removed" in r.detail for r in results)


class TestUpdateHabit:
    def test_updates_goal_only(self, habit_db, user):
        habit_db.add_habit(user.id, "water", unit="glasses", goal=8)
        results = execute_intents(habit_db, user.id, [UpdateHabitIntent(habit="water", goal=10)], DAY)
        assert results == [ExecutionResult("update_habit", True, 'Updated "water" goal: 10')]
        habit = habit_db.find_habit(user.id, "water")
        assert (habit.goal, habit.unit) == (10, "glasses")

    def test_no_changes(self, habit_db, user):
        habit_db.add_habit(user.id, "water")
        results = execute_intents(habit_db, user.id, [UpdateHabitIntent(habit="water")], DAY)
        assert results == [ExecutionResult("update_habit", False, "No changes specified")]

    def test_inactive_habit_not_found(self, habit_db, user):
        habit = habit_db.add_habit(user.id, "water")
        habit_db.soft_delete(habit.id)
        results = execute_intents(habit_db, user.id, [UpdateHabitIntent(habit="water", goal=3)], DAY)
        assert results == [ExecutionResult("update_habit", False, '"water" not found')]


class TestCheckin:
    def test_accumulates_same_day(self, habit_db, user):
        execute_intents(habit_db, user.id, [_checkin({"habit": "water", "value": 2})], DAY)
        results = execute_intents(habit_db, user.id, [_checkin({"habit": "water", "value": 3})], DAY)

        assert results[-1].detail == "water: 5 (+3 today)"
        assert habit_db.get_checkins_for_date(user.id, DAY)[0].value == 5

    def test_auto_create_emits_add_habit_result(self, habit_db, user):
        results = execute_intents(
            habit_db, user.id, [_checkin({"habit": "pushups", "value": 20, "unit": "reps"})], DAY,
        )
        assert results == [
            ExecutionResult("add_habit", True, 'Auto-created "pushups" (reps)'),
            ExecutionResult("checkin", True, "pushups: 20 reps"),
        ]

    def test_reactivation_emits_add_habit_result(self, habit_db, user):
        habit = habit_db.add_habit(user.id, "yoga")
        habit_db.soft_delete(habit.id)
        results = execute_intents(habit_db, user.id, [_checkin({"habit": "yoga"})], DAY)
        assert results[0] == ExecutionResult("add_habit", True, 'Reactivated "yoga" (was removed)')
        assert results[1] == ExecutionResult("checkin", True, "yoga: ✓")

    def test_goal_annotations(self, habit_db, user):
        habit_db.add_habit(user.id, "water", unit="glasses", goal=8)
        habit_db.add_habit(user.id, "running", unit="minutes", goal=30)
        results = execute_intents(habit_db, user.id, [_checkin(
            {"habit": "water", "value": 8},
            {"habit": "running", "value": 20, "status": "partial"},
        )], DAY)
        assert [r.detail for r in results] == [
            "water: 8 glasses (goal met ✓)",
            "running: 20 minutes (goal: 30)",
        ]

    def test_skip_entries(self, habit_db, user):
        for name in ("pullups", "vitamins", "water"):
            habit_db.add_habit(user.id, name)
        results = execute_intents(habit_db, user.id, [_checkin(
            {"habit": "pullups", "status": "skip"},
            {"habit": "vitamins", "status": "skip"},
        )], DAY)
        assert [r.detail for r in results] == ["pullups: ✗", "vitamins: ✗"]
        reported = {c.habit_name for c in habit_db.get_checkins_for_date(user.id, DAY)}
        assert reported == {"pullups", "vitamins"}

    def test_yesterday(self, habit_db, user):
        results = execute_intents(
            habit_db, user.id, [_checkin({"habit": "water", "value": 4}, date="yesterday")], DAY,
        )
        assert results[-1].detail.endswith("[for 2026-02-16]")
        assert habit_db.count_checkins(user.id, "2026-02-16") == 1
        assert habit_db.count_checkins(user.id, DAY) == 0


class TestResolveCheckinDate:
    @pytest.mark.parametrize("requested, expected", [
        (None, DAY),
        ("today", DAY),
        ("Yesterday", "2026-02-16"),
        ("2026-02-10", "2026-02-10"),
        ("last tuesday", DAY),
    ])
    def test_resolution(self, requested, expected):
        assert resolve_checkin_date(requested, DAY) == expected


class TestAffirmDecline:
    def test_affirm_without_pending(self, habit_db, pending_db, user):
        results = execute_intents(habit_db, user.id, [AffirmIntent()], DAY, pending_db)
        assert results == [ExecutionResult("affirm", False, "No pending action to confirm")]

    def test_affirm_without_pending_store(self, habit_db, user):
        results = execute_intents(habit_db, user.id, [AffirmIntent()], DAY)
        assert results[0].success is False

    def test_affirm_add_habit(self, habit_db, pending_db, user):
        action = pending_db.suggest(user.id, "add_habit", {"name": "stretching", "unit": "minutes"})
        results = execute_intents(habit_db, user.id, [AffirmIntent()], DAY, pending_db)

        assert results == [ExecutionResult("add_habit", True, 'Confirmed: Added "stretching" (minutes)')]
        assert habit_db.find_habit(user.id, "stretching").active is True
        assert pending_db.latest_unresolved(user.id) is None
        assert pending_db.resolve(action.id, "affirmed") is False

    def test_affirm_remove_habit(self, habit_db, pending_db, user):
        habit_db.add_habit(user.id, "vitamins")
        pending_db.suggest(user.id, "remove_habit", {"habits": ["vitamins"]})
        results = execute_intents(habit_db, user.id, [AffirmIntent()], DAY, pending_db)
        assert results == [ExecutionResult("remove_habit", True, 'Confirmed: Removed "vitamins"')]
        assert habit_db.find_habit(user.id, "vitamins").active is False

    def test_affirm_bare_string_payloads(self, habit_db, pending_db, user):
        habit_db.add_habit(user.id, "vitamins")
        pending_db.suggest(user.id, "remove_habit", {"habits": "vitamins"})
        results = execute_intents(habit_db, user.id, [AffirmIntent()], DAY, pending_db)
        assert results == [ExecutionResult("remove_habit", True, 'Confirmed: Removed "vitamins"')]

        pending_db.suggest(user.id, "add_habit", {"habits": "yoga"})
        results = execute_intents(habit_db, user.id, [AffirmIntent()], DAY, pending_db)
        assert results == [ExecutionResult("add_habit", True, 'Confirmed: Added "yoga"')]
        assert [h.name for h in habit_db.list_active(user.id)] == ["yoga"]

    def test_affirm_uses_most_recent(self, habit_db, pending_db, user):
        pending_db.suggest(user.id, "add_habit", {"name": "old"})
        pending_db.suggest(user.id, "add_habit", {"name": "new"})
        execute_intents(habit_db, user.id, [AffirmIntent()], DAY, pending_db)
        assert habit_db.find_habit(user.id, "new") is not None
        assert habit_db.find_habit(user.id, "old") is None
        assert pending_db.latest_unresolved(user.id).action_data == {"name": "old"}

    def test_affirm_runs_before_checkin(self, habit_db, pending_db, user):
        pending_db.suggest(user.id, "add_habit", {"name": "yoga", "goal": 1})
        results = execute_intents(
            habit_db, user.id, [_checkin({"habit": "yoga", "value": 1}), AffirmIntent()], DAY, pending_db,
        )
        assert results[0].detail == 'Confirmed: Added "yoga" goal: 1'
        assert results[1].detail == "yoga: 1 (goal met ✓)"

    def test_unknown_pending_type_expires(self, habit_db, pending_db, user):
        pending_db.suggest(user.id, "launch_rocket", {"target": "moon"})
        results = execute_intents(habit_db, user.id, [AffirmIntent()], DAY, pending_db)
        assert results == [ExecutionResult("affirm", False, "Unknown pending action type: launch_rocket")]
        assert pending_db.latest_unresolved(user.id) is None

    def test_decline_resolves_pending(self, habit_db, pending_db, user):
        pending_db.suggest(user.id, "add_habit", {"name": "yoga"})
        results = execute_intents(habit_db, user.id, [DeclineIntent()], DAY, pending_db)
        assert results[0].action == "decline"
        assert results[0].success is True
        assert pending_db.latest_unresolved(user.id) is None
        assert habit_db.find_habit(user.id, "yoga") is None

    def test_decline_without_pending_is_acknowledged(self, habit_db, pending_db, user):
        results = execute_intents(habit_db, user.id, [DeclineIntent()], DAY, pending_db)
        assert results[0].success is True


class TestPassthrough:
    def test_non_mutating_intents_echo_notes(self, habit_db, user):
        results = execute_intents(habit_db, user.id, [
            QueryIntent(scope="week", question="how am I doing?"),
            CorrectionIntent(claim="I didn't drink water"),
            GreetingIntent(),
            HelpIntent(),
            SettingsIntent(changes={"reminder_hour": 20}),
        ], DAY)
        by_action = {r.action: r for r in results}
        assert all(r.success for r in results)
        assert by_action["query"].detail == "how am I doing?"
        assert "I didn't drink water" in by_action["correction"].detail
        assert by_action["help"].detail == "Help requested"
        assert "reminder_hour" in by_action["settings"].detail
        assert habit_db.list_active(user.id) == []

    def test_failure_does_not_abort_siblings(self, habit_db, user):
        habit_db.add_habit(user.id, "water")
        results = execute_intents(habit_db, user.id, [
            _add("water"), RemoveHabitIntent(habits=["ghost"]), _checkin({"habit": "water", "value": 2}),
        ], DAY)
        assert [(r.action, r.success) for r in results] == [
            ("add_habit", False), ("remove_habit", False), ("checkin", True),
        ]
