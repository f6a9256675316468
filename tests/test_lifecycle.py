from datetime import timedelta

import pytest

from core import lifecycle
from core.models import TaskType, TimerState, TaskState, ValidationError, InvariantViolation

def make_reps(now, target=10):
    return lifecycle.create_task("Приседания", now, task_type=TaskType.REPS.value, reps_target=target)

def make_timed(now, seconds=60):
    return lifecycle.create_task("Медитация", now, task_type=TaskType.DURATION.value, duration_seconds=seconds)

class TestCreate:
    def test_defaults(self, now):
        task = lifecycle.create_task("Бег", now)
        assert task.completed is False
        assert task.timer_state == TimerState.IDLE.value
        assert task.created_at == now.isoformat()

    def test_duration_starts_full(self, now):
        assert make_timed(now, 90).remaining_seconds == 90

    @pytest.mark.parametrize("kwargs", [
        {"task_type": "sprint"},
        {"category": "work"},
        {"reps_target": -1},
        {"exp_value": True},
        {"deadline": "tomorrow"},
    ])
    def test_rejects_bad_input(self, now, kwargs):
        with pytest.raises(ValidationError):
            lifecycle.create_task("Бег", now, **kwargs)

    def test_rejects_blank_name(self, now):
        with pytest.raises(ValidationError):
            lifecycle.create_task("   ", now)

class TestRecordProgress:
    def test_partial(self, now):
        task, reached = lifecycle.record_progress(make_reps(now), 4, now)
        assert task.reps_done == 4
        assert reached is False

    def test_clamped_to_target(self, now):
        task, reached = lifecycle.record_progress(make_reps(now), 25, now)
        assert task.reps_done == 10
        assert reached is True

    def test_completed_task_unchanged(self, now):
        task = lifecycle.mark_completed(make_reps(now), now)
        updated, reached = lifecycle.record_progress(task, 3, now)
        assert updated is task
        assert reached is False

    def test_only_for_reps(self, now):
        with pytest.raises(ValidationError):
            lifecycle.record_progress(lifecycle.create_task("Бег", now), 1, now)

    def test_input_not_mutated(self, now):
        task = make_reps(now)
        lifecycle.record_progress(task, 5, now)
        assert task.reps_done == 0

class TestTimer:
    def test_start_and_tick_by_elapsed_time(self, now):
        task = lifecycle.toggle_timer(make_timed(now), now)
        assert task.timer_state == TimerState.RUNNING.value

        task, finished = lifecycle.tick_timer(task, now + timedelta(seconds=25))
        assert task.remaining_seconds == 35
        assert finished is False

    def test_skipped_ticks_do_not_lose_time(self, now):
        task = lifecycle.toggle_timer(make_timed(now), now)
        task, _ = lifecycle.tick_timer(task, now + timedelta(seconds=10, milliseconds=600))
        task, _ = lifecycle.tick_timer(task, now + timedelta(seconds=20, milliseconds=400))
        assert task.remaining_seconds == 40

    def test_finishes_at_zero(self, now):
        task = lifecycle.toggle_timer(make_timed(now), now)
        task, finished = lifecycle.tick_timer(task, now + timedelta(minutes=5))
        assert finished is True
        assert task.remaining_seconds == 0
        assert task.timer_state == TimerState.COMPLETED.value

    def test_pause_keeps_remaining(self, now):
        task = lifecycle.toggle_timer(make_timed(now), now)
        task = lifecycle.toggle_timer(task, now + timedelta(seconds=15))
        assert task.timer_state == TimerState.IDLE.value
        assert task.remaining_seconds == 45

        later, finished = lifecycle.tick_timer(task, now + timedelta(minutes=10))
        assert later is task
        assert finished is False

    def test_toggle_completed_is_noop(self, now):
        task = lifecycle.mark_completed(make_timed(now), now)
        assert lifecycle.toggle_timer(task, now) is task

class TestEdit:
    def test_goal_cannot_shrink(self, now):
        with pytest.raises(InvariantViolation):
            lifecycle.edit_task(make_reps(now, 10), now, reps_target=8)

    def test_duration_cannot_shrink(self, now):
        with pytest.raises(InvariantViolation):
            lifecycle.edit_task(make_timed(now, 60), now, duration_seconds=30)

    def test_completed_is_frozen(self, now):
        task = lifecycle.mark_completed(make_reps(now), now)
        with pytest.raises(InvariantViolation):
            lifecycle.edit_task(task, now, name="Новое имя")

    def test_idle_timer_resets_to_new_duration(self, now):
        task = lifecycle.edit_task(make_timed(now, 60), now, duration_seconds=120)
        assert task.remaining_seconds == 120

    def test_running_timer_extends_remaining(self, now):
        task = lifecycle.toggle_timer(make_timed(now, 60), now)
        task, _ = lifecycle.tick_timer(task, now + timedelta(seconds=30))
        task = lifecycle.edit_task(task, now + timedelta(seconds=30), duration_seconds=120)
        assert task.remaining_seconds == 90
        assert task.duration_seconds == 120

class TestDeletionAndReset:
    def test_lock_window(self, now):
        task = lifecycle.create_task("Бег", now)
        assert lifecycle.can_delete(task, now + timedelta(minutes=4)) is True
        assert lifecycle.can_delete(task, now + timedelta(minutes=10)) is False

    def test_hard_tasks_lock_later(self, now):
        task = lifecycle.create_task("Бег", now, difficulty="hard")
        assert lifecycle.can_delete(task, now + timedelta(minutes=9)) is True

    def test_completed_never_deletable(self, now):
        task = lifecycle.mark_completed(lifecycle.create_task("Бег", now), now)
        assert lifecycle.can_delete(task, now) is False

    def test_reset_transient(self, now):
        task = lifecycle.mark_completed(make_reps(now), now)
        task = lifecycle.reset_transient(task, now)
        assert task.completed is False
        assert task.reps_done == 0
        assert task.state == TaskState.NORMAL.value
