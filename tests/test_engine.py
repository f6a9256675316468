from datetime import timedelta

import pytest

from core import engine
from core.models import (
    InvariantViolation, ValidationError, NotificationCategory, TaskState, TimerState, UserProgression
)
from factories import with_tasks, daily, reps, timed

def first_task_id(state):
    return state.tasks[0].task_id

class TestCompleteTask:
    def test_level_up(self, hunter, now):
        state = with_tasks(hunter, now, daily(exp_value=20))
        state.current_exp = 90

        outcome = engine.complete_task(state, first_task_id(state), now)
        result = outcome.state
        assert result.level == 2
        assert result.current_exp == 10
        assert result.stat_points == 5
        assert result.cumulative_exp == 20
        assert any(e.kind == "level_up" for e in outcome.events)
        assert any(n.category == NotificationCategory.LEVEL.value for n in result.notifications)

    def test_input_snapshot_untouched(self, hunter, now):
        state = with_tasks(hunter, now, daily())
        engine.complete_task(state, first_task_id(state), now)
        assert state.tasks[0].completed is False
        assert state.cumulative_exp == 0

    def test_idempotent(self, hunter, now):
        state = with_tasks(hunter, now, daily())
        once = engine.complete_task(state, first_task_id(state), now).state
        twice = engine.complete_task(once, first_task_id(state), now)
        assert twice.state is once
        assert twice.events == []

    def test_streak_bonus(self, hunter, now):
        state = with_tasks(hunter, now, daily(exp_value=10))
        state.streak = 3
        result = engine.complete_task(state, first_task_id(state), now).state
        assert result.cumulative_exp == 11

    def test_rank_modifier(self, hunter, now):
        state = with_tasks(hunter, now, daily(exp_value=10))
        state.cumulative_exp = 1000
        state.rank = "D"
        state.streak = 7
        result = engine.complete_task(state, first_task_id(state), now).state
        assert result.cumulative_exp == 1011

    def test_rank_up(self, hunter, now):
        state = with_tasks(hunter, now, daily(exp_value=20))
        state.cumulative_exp = 990
        outcome = engine.complete_task(state, first_task_id(state), now)
        assert outcome.state.rank == "D"
        assert any(e.kind == "rank_up" for e in outcome.events)

    def test_category_stat_grows(self, hunter, now):
        state = with_tasks(hunter, now, daily(category="physical_health"))
        result = engine.complete_task(state, first_task_id(state), now).state
        assert result.stats["strength"] == 1

    def test_analytics_one_entry_per_day(self, hunter, now):
        state = with_tasks(hunter, now, daily("A"), daily("B"))
        state = engine.complete_task(state, state.tasks[0].task_id, now).state
        state = engine.complete_task(state, state.tasks[1].task_id, now).state
        assert len(state.analytics_history) == 1
        entry = state.analytics_history[0]
        assert entry.date == "2025-06-10"
        assert entry.tasks_completed == 2
        assert entry.exp_earned == 20
        assert entry.efficiency == 100

    def test_first_quest_unlocks_title(self, hunter, now):
        state = with_tasks(hunter, now, daily())
        result = engine.complete_task(state, first_task_id(state), now).state
        assert "Novice Hunter" in result.titles_unlocked

    def test_unknown_task(self, hunter, now):
        with pytest.raises(ValidationError):
            engine.complete_task(hunter, "missing", now)

class TestFailTask:
    def test_penalty_from_current_exp(self, hunter, now):
        state = with_tasks(hunter, now, daily(exp_value=10))
        state.current_exp = 3
        state.cumulative_exp = 500
        result = engine.fail_task(state, first_task_id(state), now).state
        assert result.current_exp == 0
        assert result.cumulative_exp == 500
        assert result.tasks[0].state == TaskState.FAILED.value

    def test_completed_cannot_fail(self, hunter, now):
        state = with_tasks(hunter, now, daily())
        state = engine.complete_task(state, first_task_id(state), now).state
        with pytest.raises(InvariantViolation):
            engine.fail_task(state, first_task_id(state), now)

    def test_repeat_failure_is_noop(self, hunter, now):
        state = with_tasks(hunter, now, daily())
        state.current_exp = 50
        failed = engine.fail_task(state, first_task_id(state), now).state
        assert engine.fail_task(failed, first_task_id(state), now).state is failed

class TestProgressAndTimers:
    def test_reps_goal_completes(self, hunter, now):
        state = with_tasks(hunter, now, reps(target=10))
        state = engine.update_task_progress(state, first_task_id(state), 6, now).state
        assert state.tasks[0].completed is False
        state = engine.update_task_progress(state, first_task_id(state), 10, now).state
        assert state.tasks[0].completed is True
        assert state.cumulative_exp == 10

    def test_timer_expiry_completes(self, hunter, now):
        state = with_tasks(hunter, now, timed(seconds=60))
        state = engine.toggle_task_timer(state, first_task_id(state), now).state
        state = engine.tick_timers(state, now + timedelta(seconds=30)).state
        assert state.tasks[0].remaining_seconds == 30

        outcome = engine.tick_timers(state, now + timedelta(seconds=75))
        assert outcome.state.tasks[0].completed is True
        assert outcome.state.tasks[0].timer_state == TimerState.COMPLETED.value
        assert any(e.kind == "task_completed" for e in outcome.events)

    def test_tick_without_running_timers(self, hunter, now):
        state = with_tasks(hunter, now, timed())
        assert engine.tick_timers(state, now).state is state

class TestTaskManagement:
    def test_delete_within_window(self, hunter, now):
        state = with_tasks(hunter, now, daily())
        result = engine.delete_task(state, first_task_id(state), now + timedelta(minutes=4)).state
        assert result.tasks == []

    def test_delete_after_window(self, hunter, now):
        state = with_tasks(hunter, now, daily())
        with pytest.raises(InvariantViolation):
            engine.delete_task(state, first_task_id(state), now + timedelta(minutes=10))

    def test_edit_cannot_shrink_goal(self, hunter, now):
        state = with_tasks(hunter, now, reps(target=10))
        with pytest.raises(InvariantViolation):
            engine.edit_task(state, first_task_id(state), now, reps_target=5)
        assert state.tasks[0].reps_target == 10

class TestStatsAndPenalties:
    def test_spend_stat_point(self, hunter, now):
        state = hunter.copy()
        state.stat_points = 1
        result = engine.spend_stat_point(state, "sense", now).state
        assert result.stat_points == 0
        assert result.stats["sense"] == 1

    def test_spend_without_points(self, hunter, now):
        with pytest.raises(InvariantViolation):
            engine.spend_stat_point(hunter, "sense", now)

    def test_spend_unknown_stat(self, hunter, now):
        state = hunter.copy()
        state.stat_points = 1
        with pytest.raises(ValidationError):
            engine.spend_stat_point(state, "luck", now)

    def test_penalty_protocol_recomputes_rank(self, hunter, now):
        state = hunter.copy()
        state.cumulative_exp = 1100
        state.rank = "D"
        outcome = engine.apply_penalty_protocol(state, 200, "Нарушение протокола", now)
        assert outcome.state.cumulative_exp == 900
        assert outcome.state.rank == "E"
        assert any(e.kind == "rank_down" for e in outcome.events)

    def test_extra_penalty_is_capped(self, hunter, now, policy):
        state = hunter.copy()
        state.current_exp = 90
        result = engine.apply_extra_penalty(state, 500, "Слабость", now, policy).state
        assert result.current_exp == 90 - policy.max_extra_penalty

class TestNotificationsAndReminders:
    def test_notification_cap(self, hunter, now, policy):
        state = hunter
        for i in range(policy.notification_cap + 5):
            state = engine.add_notification(state, f"#{i}", now).state
        assert len(state.notifications) == policy.notification_cap
        assert state.notifications[0].message == f"#{policy.notification_cap + 4}"

    def test_mark_read(self, hunter, now):
        state = engine.add_notification(hunter, "Сообщение", now).state
        assert state.unread_count == 1
        state = engine.mark_notifications_read(state).state
        assert state.unread_count == 0
        assert engine.mark_notifications_read(state).state is state

    def test_reminder_fires_once(self, hunter, now):
        state = engine.schedule_reminder(hunter, "Вода", now + timedelta(minutes=5), now).state

        early = engine.poll_reminders(state, now + timedelta(minutes=4))
        assert early.state is state

        fired = engine.poll_reminders(state, now + timedelta(minutes=5, seconds=7))
        assert fired.state.reminders[0].triggered is True
        assert fired.state.notifications[0].category == NotificationCategory.REMINDER.value
        assert len(fired.events) == 1

        again = engine.poll_reminders(fired.state, now + timedelta(minutes=6))
        assert again.events == []

class TestProfileAndImport:
    def test_title_must_be_unlocked(self, hunter, now):
        with pytest.raises(InvariantViolation):
            engine.update_profile(hunter, now, selected_title="Shadow Monarch")

    def test_reset_time_format(self, hunter, now):
        with pytest.raises(ValidationError):
            engine.update_profile(hunter, now, reset_time="25:00")
        assert engine.update_profile(hunter, now, reset_time="06:30").state.reset_time == "06:30"

    def test_import_requires_identity(self, now):
        with pytest.raises(ValidationError):
            engine.import_snapshot({"streak": 4}, now)

    def test_import_replaces_snapshot(self, hunter, now):
        data = hunter.to_dict()
        data["level"] = 7
        result = engine.import_snapshot(data, now).state
        assert isinstance(result, UserProgression)
        assert result.level == 7

class TestTermination:
    def test_start_sets_deadline(self, hunter, now):
        outcome = engine.start_termination(hunter, now)
        state = outcome.state
        assert state.termination_deadline == (now + timedelta(seconds=60)).isoformat()
        assert state.notifications[0].category == NotificationCategory.WARNING.value
        assert outcome.events[0].kind == "termination_started"
        assert hunter.termination_deadline is None

    def test_restart_keeps_deadline(self, hunter, now):
        state = engine.start_termination(hunter, now).state
        assert engine.start_termination(state, now + timedelta(seconds=30)).state is state

    def test_countdown_follows_wall_clock(self, hunter, now):
        state = engine.start_termination(hunter, now).state
        assert engine.termination_remaining(state, now + timedelta(seconds=30)) == 30
        assert engine.termination_remaining(state, now + timedelta(seconds=59, milliseconds=500)) == 1
        assert not engine.termination_due(state, now + timedelta(seconds=59))
        assert engine.termination_due(state, now + timedelta(minutes=10))
        assert engine.termination_remaining(hunter, now) is None
        assert not engine.termination_due(hunter, now)

    def test_cancel(self, hunter, now):
        state = engine.start_termination(hunter, now).state
        cancelled = engine.cancel_termination(state, now).state
        assert cancelled.termination_deadline is None
        assert engine.cancel_termination(cancelled, now).state is cancelled

    def test_deadline_survives_serialization(self, hunter, now):
        state = engine.start_termination(hunter, now).state
        assert UserProgression.from_dict(state.to_dict()).termination_deadline == state.termination_deadline

        data = state.to_dict()
        data["termination_deadline"] = "скоро"
        with pytest.raises(ValidationError):
            UserProgression.from_dict(data)
