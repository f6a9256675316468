# core/lifecycle.py

"""
Жизненный цикл квеста: создание, прогресс, таймер, редактирование, удаление.

Все функции возвращают новый объект Task. Достижение цели здесь только
сигнализируется вызывающему коду, само выполнение (с наградой) делает
движок прогрессии.
"""

import copy
import logging
from datetime import datetime, timedelta
from typing import Optional, Tuple

from config import ProgressionConfig
from core.models import (
    Task, TaskType, TaskRepeat, TaskState, TimerState, TaskCategory, TaskDifficulty,
    ValidationError, InvariantViolation,
    validate_text, validate_enum_value, validate_non_negative, new_id
)
from core.progression import lock_window
from utils.datetime_utils import parse_timestamp, maybe_parse

logger = logging.getLogger(__name__)

def _touch(task: Task, now: datetime) -> Task:
    task.last_updated = now.isoformat()
    return task

def create_task(name: str, now: datetime,
                task_type: str = TaskType.CHECKBOX.value,
                category: str = TaskCategory.PERSONAL.value,
                difficulty: str = TaskDifficulty.NORMAL.value,
                repeat: str = TaskRepeat.DAILY.value,
                reps_target: int = 0,
                duration_seconds: int = 0,
                exp_value: int = 10,
                deadline: Optional[str] = None) -> Task:
    """Создание нового квеста с нулевым прогрессом"""
    name = validate_text(name, min_length=1, max_length=200, field_name="name")
    task_type = validate_enum_value(task_type, TaskType, "task_type")
    category = validate_enum_value(category, TaskCategory, "category")
    difficulty = validate_enum_value(difficulty, TaskDifficulty, "difficulty")
    repeat = validate_enum_value(repeat, TaskRepeat, "repeat")
    validate_non_negative(reps_target, "reps_target")
    validate_non_negative(duration_seconds, "duration_seconds")
    validate_non_negative(exp_value, "exp_value")
    if deadline is not None:
        try:
            parse_timestamp(deadline)
        except ValueError:
            raise ValidationError(f"Неверный формат дедлайна: {deadline}")

    timestamp = now.isoformat()
    return Task(
        task_id=new_id(),
        name=name,
        category=category,
        difficulty=difficulty,
        task_type=task_type,
        repeat=repeat,
        reps_target=reps_target,
        reps_done=0,
        duration_seconds=duration_seconds,
        remaining_seconds=duration_seconds,
        exp_value=exp_value,
        completed=False,
        state=TaskState.NORMAL.value,
        timer_state=TimerState.IDLE.value,
        timer_anchor=None,
        created_at=timestamp,
        last_updated=timestamp,
        deadline=deadline
    )

def record_progress(task: Task, new_progress: int, now: datetime) -> Tuple[Task, bool]:
    """
    Обновить число повторений.

    Returns:
        (task, goal_reached) - при goal_reached вызывающий код должен
        выполнить квест через движок.
    """
    if task.task_type != TaskType.REPS.value:
        raise ValidationError("Прогресс повторений доступен только для квестов типа reps")
    validate_non_negative(new_progress, "progress")

    if task.completed:
        return task, False

    updated = copy.copy(task)
    updated.reps_done = min(new_progress, task.reps_target)
    _touch(updated, now)
    return updated, updated.reps_done >= updated.reps_target

def tick_timer(task: Task, now: datetime) -> Tuple[Task, bool]:
    """
    Продвинуть таймер по реально прошедшему времени.

    Учитываются только целые секунды с момента timer_anchor, поэтому
    пропущенные или запоздавшие тики не теряют времени.
    """
    if task.task_type != TaskType.DURATION.value or task.timer_state != TimerState.RUNNING.value:
        return task, False

    anchor = maybe_parse(task.timer_anchor) or now
    elapsed = int((now - anchor).total_seconds())
    if elapsed <= 0:
        return task, False

    updated = copy.copy(task)
    updated.remaining_seconds = max(0, task.remaining_seconds - elapsed)
    updated.timer_anchor = (anchor + timedelta(seconds=elapsed)).isoformat()
    _touch(updated, now)

    if updated.remaining_seconds == 0:
        updated.timer_state = TimerState.COMPLETED.value
        updated.timer_anchor = None
        return updated, True
    return updated, False

def toggle_timer(task: Task, now: datetime) -> Task:
    """running <-> idle; для выполненного квеста ничего не делает"""
    if task.task_type != TaskType.DURATION.value:
        raise ValidationError("Таймер доступен только для квестов типа duration")

    if task.completed or task.timer_state == TimerState.COMPLETED.value:
        return task

    if task.timer_state == TimerState.RUNNING.value:
        updated, finished = tick_timer(task, now)
        if finished:
            return updated
        updated = copy.copy(updated)
        updated.timer_state = TimerState.IDLE.value
        updated.timer_anchor = None
        updated.state = TaskState.NORMAL.value
        return _touch(updated, now)

    updated = copy.copy(task)
    updated.timer_state = TimerState.RUNNING.value
    updated.timer_anchor = now.isoformat()
    updated.state = TaskState.RUNNING.value
    return _touch(updated, now)

def edit_task(task: Task, now: datetime, name: Optional[str] = None,
              category: Optional[str] = None, reps_target: Optional[int] = None,
              duration_seconds: Optional[int] = None, deadline: Optional[str] = None) -> Task:
    """
    Редактирование квеста.

    Цель можно только увеличить: упростить взятый квест нельзя. Выполненный
    квест заморожен до ежедневного сброса.
    """
    if name is not None:
        name = validate_text(name, min_length=1, max_length=200, field_name="name")
    if category is not None:
        category = validate_enum_value(category, TaskCategory, "category")
    if reps_target is not None:
        validate_non_negative(reps_target, "reps_target")
    if duration_seconds is not None:
        validate_non_negative(duration_seconds, "duration_seconds")

    if task.completed:
        raise InvariantViolation("Выполненный квест нельзя изменить до сброса дня")
    if reps_target is not None and reps_target < task.reps_target:
        raise InvariantViolation("Интенсивность квеста нельзя снизить")
    if duration_seconds is not None and duration_seconds < task.duration_seconds:
        raise InvariantViolation("Длительность квеста нельзя сократить")

    updated = copy.copy(task)
    if name is not None:
        updated.name = name
    if category is not None:
        updated.category = category
    if reps_target is not None:
        updated.reps_target = reps_target
    if duration_seconds is not None:
        delta = duration_seconds - task.duration_seconds
        updated.duration_seconds = duration_seconds
        if task.timer_state == TimerState.IDLE.value:
            updated.remaining_seconds = duration_seconds
        else:
            updated.remaining_seconds = task.remaining_seconds + delta
    if deadline is not None:
        updated.deadline = deadline
    return _touch(updated, now)

def can_delete(task: Task, now: datetime, policy: Optional[ProgressionConfig] = None) -> bool:
    """Удалять можно только невыполненный квест в течение окна после создания"""
    if task.completed:
        return False
    age = (now - parse_timestamp(task.created_at)).total_seconds()
    return age < lock_window(task.difficulty, policy)

def mark_completed(task: Task, now: datetime) -> Task:
    updated = copy.copy(task)
    updated.completed = True
    updated.state = TaskState.SUCCESS.value
    if updated.task_type == TaskType.REPS.value:
        updated.reps_done = updated.reps_target
    if updated.task_type == TaskType.DURATION.value:
        updated.timer_state = TimerState.COMPLETED.value
        updated.timer_anchor = None
    return _touch(updated, now)

def mark_failed(task: Task, now: datetime) -> Task:
    updated = copy.copy(task)
    updated.completed = False
    updated.state = TaskState.FAILED.value
    if updated.timer_state == TimerState.RUNNING.value:
        updated.timer_state = TimerState.IDLE.value
        updated.timer_anchor = None
    return _touch(updated, now)

def reset_transient(task: Task, now: datetime) -> Task:
    """Сброс дневных полей квеста"""
    updated = copy.copy(task)
    updated.completed = False
    updated.reps_done = 0
    updated.remaining_seconds = task.duration_seconds
    updated.timer_state = TimerState.IDLE.value
    updated.timer_anchor = None
    updated.state = TaskState.NORMAL.value
    return _touch(updated, now)
