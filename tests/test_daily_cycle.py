import asyncio
from datetime import datetime, timedelta

from core import daily_cycle, engine
from core.daily_cycle import (
    should_reset, run_daily_reset, DailyCycleController, ResetSummary, fallback_penalty_message
)
from core.models import NotificationCategory, TaskState
from factories import with_tasks, daily, custom, reps

def complete(state, index, now):
    return engine.complete_task(state, state.tasks[index].task_id, now).state

class TestShouldReset:
    def test_waits_for_reset_time(self, hunter):
        state = hunter.copy()
        state.last_reset_timestamp = "2025-06-09T00:00:00"
        state.reset_time = "06:00"
        assert should_reset(state, datetime(2025, 6, 10, 5, 59)) is False
        assert should_reset(state, datetime(2025, 6, 10, 6, 0)) is True

    def test_same_day_never_resets(self, hunter):
        state = hunter.copy()
        state.last_reset_timestamp = "2025-06-10T06:00:00"
        assert should_reset(state, datetime(2025, 6, 10, 23, 0)) is False

class TestRunDailyReset:
    def test_missed_task_breaks_streak(self, hunter, now):
        state = with_tasks(hunter, now, daily("A", exp_value=10), daily("B", exp_value=10))
        state = complete(state, 0, now)
        state.streak = 5
        state.current_exp = 50

        result = run_daily_reset(state, now)
        new_state = result.outcome.state
        assert result.summary.applied is True
        assert result.summary.missed == 1
        assert result.summary.exp_lost == 5
        assert new_state.streak == 0
        assert new_state.current_exp == 45
        assert new_state.notifications[0].category == NotificationCategory.WARNING.value
        assert all(not t.completed for t in new_state.tasks)
        assert new_state.last_reset_timestamp == now.isoformat()

    def test_perfect_day_extends_streak(self, hunter, now):
        state = with_tasks(hunter, now, daily("A"), daily("B"))
        state = complete(complete(state, 0, now), 1, now)
        state.streak = 2

        result = run_daily_reset(state, now)
        assert result.summary.perfect is True
        assert result.outcome.state.streak == 3
        assert "Consistent Striker" in result.outcome.state.titles_unlocked

    def test_second_reset_same_day_is_noop(self, hunter, now):
        state = with_tasks(hunter, now, daily())
        first = run_daily_reset(state, now).outcome.state
        second = run_daily_reset(first, now + timedelta(hours=3), manual=True)
        assert second.outcome.state is first
        assert second.summary.applied is False

    def test_custom_tasks_are_exempt(self, hunter, now):
        state = with_tasks(hunter, now, daily("A"), custom("Проект"), reps("Книга", target=50, repeat="custom"))
        state = complete(state, 0, now)
        state = engine.update_task_progress(state, state.tasks[2].task_id, 20, now).state
        state.streak = 1

        new_state = run_daily_reset(state, now).outcome.state
        assert new_state.streak == 2
        assert new_state.tasks[2].reps_done == 20
        assert new_state.tasks[1] == state.tasks[1]

    def test_no_daily_tasks_keeps_streak(self, hunter, now):
        state = with_tasks(hunter, now, custom())
        state.streak = 4
        result = run_daily_reset(state, now)
        assert result.summary.applied is True
        assert result.outcome.state.streak == 4

    def test_failed_task_counts_in_reset_penalty(self, hunter, now):
        state = with_tasks(hunter, now, daily("A", exp_value=20), daily("B", exp_value=20))
        state.current_exp = 50
        state = engine.fail_task(state, state.tasks[0].task_id, now).state
        assert state.current_exp == 40

        result = run_daily_reset(state, now)
        assert result.summary.missed == 2
        assert result.summary.exp_lost == 20
        assert result.outcome.state.current_exp == 20
        assert result.outcome.state.tasks[0].state == TaskState.NORMAL.value

    def test_exp_never_negative(self, hunter, now):
        state = with_tasks(hunter, now, daily(exp_value=100))
        state.current_exp = 10
        assert run_daily_reset(state, now).outcome.state.current_exp == 0

    def test_before_reset_time_waits(self, hunter, now):
        state = hunter.copy()
        state.reset_time = "18:00"
        assert run_daily_reset(state, now).summary.applied is False
        assert run_daily_reset(state, now, manual=True).summary.applied is True

class FailingAnalyst:
    async def analyze(self, summary, context):
        raise RuntimeError("AI недоступен")

class FixedAnalyst:
    async def analyze(self, summary, context):
        return "Слабость зафиксирована", 20

class SlowAnalyst:
    async def analyze(self, summary, context):
        await asyncio.sleep(1)
        return "поздно", 50

class TestController:
    def test_check_never_raises(self, hunter, now):
        state = hunter.copy()
        state.last_reset_timestamp = "not a timestamp"
        controller = DailyCycleController()
        result = controller.check(state, now)
        assert result.outcome.state is state
        assert result.summary.retry is True

    def test_check_applies_when_due(self, hunter, now):
        controller = DailyCycleController()
        result = controller.check(with_tasks(hunter, now, daily()), now)
        assert result.summary.applied is True
        assert controller.resets_applied == 1

    def test_transient_failure_retried_on_next_tick(self, hunter, now, monkeypatch):
        calls = []

        def flaky_reset(state, now, manual=False, policy=None):
            calls.append(now)
            if len(calls) == 1:
                raise OSError("диск занят")
            return run_daily_reset(state, now, manual=manual, policy=policy)

        monkeypatch.setattr(daily_cycle, "run_daily_reset", flaky_reset)
        controller = DailyCycleController()
        state = with_tasks(hunter, now, daily())

        failed = controller.check(state, now)
        assert failed.summary.retry is True
        assert failed.outcome.state is state
        assert controller.failed_attempts == 1

        retried = controller.check(failed.outcome.state, now + timedelta(seconds=1))
        assert retried.summary.applied is True
        assert retried.summary.missed == 1
        assert controller.failed_attempts == 0

        again = controller.check(retried.outcome.state, now + timedelta(seconds=2))
        assert again.summary.applied is False
        assert controller.resets_applied == 1

    async def test_analysis_falls_back(self, hunter):
        summary = ResetSummary(applied=True, missed=2, exp_lost=10)
        controller = DailyCycleController(analyst=FailingAnalyst())
        assert await controller.analyze_missed(hunter, summary) == (fallback_penalty_message(summary), 0)

    async def test_analysis_without_analyst(self, hunter):
        summary = ResetSummary(applied=True, missed=1, exp_lost=5)
        message, extra = await DailyCycleController().analyze_missed(hunter, summary)
        assert (message, extra) == (fallback_penalty_message(summary), 0)

    async def test_analysis_timeout(self, hunter):
        summary = ResetSummary(applied=True, missed=1, exp_lost=5)
        controller = DailyCycleController(analyst=SlowAnalyst(), analysis_timeout=0.01)
        assert await controller.analyze_missed(hunter, summary) == (fallback_penalty_message(summary), 0)

    async def test_analysis_result(self, hunter):
        summary = ResetSummary(applied=True, missed=1, exp_lost=5)
        controller = DailyCycleController(analyst=FixedAnalyst())
        assert await controller.analyze_missed(hunter, summary) == ("Слабость зафиксирована", 20)
