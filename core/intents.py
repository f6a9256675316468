# core/intents.py

"""
Закрытый набор намерений пользователя и внешних коллабораторов.

Каждое намерение - отдельный неизменяемый класс со своими полями;
apply_intent маршрутизирует его в соответствующую операцию ядра.
Незарегистрированный тип намерения - ошибка программиста (TypeError),
а не тихо проигнорированное действие.
"""

from dataclasses import dataclass
from datetime import datetime
from functools import singledispatch
from typing import Any, Dict, Optional

from core import engine, lifecycle
from core.daily_cycle import run_daily_reset
from core.models import UserProgression, Outcome, TaskType, TaskCategory, TaskDifficulty, TaskRepeat

@dataclass(frozen=True)
class AddTask:
    name: str
    task_type: str = TaskType.CHECKBOX.value
    category: str = TaskCategory.PERSONAL.value
    difficulty: str = TaskDifficulty.NORMAL.value
    repeat: str = TaskRepeat.DAILY.value
    reps_target: int = 0
    duration_seconds: int = 0
    exp_value: int = 10
    deadline: Optional[str] = None

@dataclass(frozen=True)
class EditTask:
    task_id: str
    name: Optional[str] = None
    category: Optional[str] = None
    reps_target: Optional[int] = None
    duration_seconds: Optional[int] = None
    deadline: Optional[str] = None

@dataclass(frozen=True)
class DeleteTask:
    task_id: str

@dataclass(frozen=True)
class RecordProgress:
    task_id: str
    progress: int

@dataclass(frozen=True)
class ToggleTimer:
    task_id: str

@dataclass(frozen=True)
class CompleteTask:
    task_id: str

@dataclass(frozen=True)
class FailTask:
    task_id: str

@dataclass(frozen=True)
class SpendStatPoint:
    stat: str

@dataclass(frozen=True)
class ScheduleReminder:
    message: str
    target: datetime

@dataclass(frozen=True)
class SendNotification:
    message: str
    category: str = "system_alert"

@dataclass(frozen=True)
class MarkNotificationsRead:
    pass

@dataclass(frozen=True)
class UpdateProfile:
    username: Optional[str] = None
    selected_title: Optional[str] = None
    reset_time: Optional[str] = None

@dataclass(frozen=True)
class ImportSnapshot:
    data: Dict[str, Any]

@dataclass(frozen=True)
class TriggerReset:
    pass

@dataclass(frozen=True)
class PenaltyProtocol:
    amount: int
    reason: str

@dataclass(frozen=True)
class StartTermination:
    pass

@dataclass(frozen=True)
class CancelTermination:
    pass

@singledispatch
def apply_intent(intent: Any, state: UserProgression, now: datetime) -> Outcome:
    raise TypeError(f"Неизвестное намерение: {type(intent).__name__}")

@apply_intent.register
def _(intent: AddTask, state: UserProgression, now: datetime) -> Outcome:
    task = lifecycle.create_task(
        intent.name, now,
        task_type=intent.task_type,
        category=intent.category,
        difficulty=intent.difficulty,
        repeat=intent.repeat,
        reps_target=intent.reps_target,
        duration_seconds=intent.duration_seconds,
        exp_value=intent.exp_value,
        deadline=intent.deadline
    )
    return engine.add_task(state, task, now)

@apply_intent.register
def _(intent: EditTask, state: UserProgression, now: datetime) -> Outcome:
    return engine.edit_task(
        state, intent.task_id, now,
        name=intent.name,
        category=intent.category,
        reps_target=intent.reps_target,
        duration_seconds=intent.duration_seconds,
        deadline=intent.deadline
    )

@apply_intent.register
def _(intent: DeleteTask, state: UserProgression, now: datetime) -> Outcome:
    return engine.delete_task(state, intent.task_id, now)

@apply_intent.register
def _(intent: RecordProgress, state: UserProgression, now: datetime) -> Outcome:
    return engine.update_task_progress(state, intent.task_id, intent.progress, now)

@apply_intent.register
def _(intent: ToggleTimer, state: UserProgression, now: datetime) -> Outcome:
    return engine.toggle_task_timer(state, intent.task_id, now)

@apply_intent.register
def _(intent: CompleteTask, state: UserProgression, now: datetime) -> Outcome:
    return engine.complete_task(state, intent.task_id, now)

@apply_intent.register
def _(intent: FailTask, state: UserProgression, now: datetime) -> Outcome:
    return engine.fail_task(state, intent.task_id, now)

@apply_intent.register
def _(intent: SpendStatPoint, state: UserProgression, now: datetime) -> Outcome:
    return engine.spend_stat_point(state, intent.stat, now)

@apply_intent.register
def _(intent: ScheduleReminder, state: UserProgression, now: datetime) -> Outcome:
    return engine.schedule_reminder(state, intent.message, intent.target, now)

@apply_intent.register
def _(intent: SendNotification, state: UserProgression, now: datetime) -> Outcome:
    return engine.add_notification(state, intent.message, now, category=intent.category)

@apply_intent.register
def _(intent: MarkNotificationsRead, state: UserProgression, now: datetime) -> Outcome:
    return engine.mark_notifications_read(state)

@apply_intent.register
def _(intent: UpdateProfile, state: UserProgression, now: datetime) -> Outcome:
    return engine.update_profile(
        state, now,
        username=intent.username,
        selected_title=intent.selected_title,
        reset_time=intent.reset_time
    )

@apply_intent.register
def _(intent: ImportSnapshot, state: UserProgression, now: datetime) -> Outcome:
    return engine.import_snapshot(intent.data, now)

@apply_intent.register
def _(intent: TriggerReset, state: UserProgression, now: datetime) -> Outcome:
    return run_daily_reset(state, now, manual=True).outcome

@apply_intent.register
def _(intent: PenaltyProtocol, state: UserProgression, now: datetime) -> Outcome:
    return engine.apply_penalty_protocol(state, intent.amount, intent.reason, now)

@apply_intent.register
def _(intent: StartTermination, state: UserProgression, now: datetime) -> Outcome:
    return engine.start_termination(state, now)

@apply_intent.register
def _(intent: CancelTermination, state: UserProgression, now: datetime) -> Outcome:
    return engine.cancel_termination(state, now)
