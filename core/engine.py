#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
SystemQuest v1.0 - Progression Engine
Награды, повышение уровня, штрафы, характеристики, напоминания

Каждая операция принимает снимок UserProgression и возвращает Outcome с
новым снимком. Исходный снимок не меняется; при ошибке вызывающий код
продолжает работать со старым снимком целиком.
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from config import ProgressionConfig, RESET_TIME_PATTERN, config
from core import lifecycle
from core.models import (
    UserProgression, Task, Notification, Reminder, AnalyticsEntry, DomainEvent, Outcome,
    NotificationCategory, TaskState, TimerState, Rank, STAT_NAMES,
    ValidationError, InvariantViolation, validate_text, validate_non_negative, new_id
)
from core.progression import (
    rank_for, rank_award_modifier, streak_multiplier, apply_level_ups,
    efficiency, failure_penalty, level_threshold, round_half_up
)
from core.titles import newly_unlocked
from utils.datetime_utils import date_key, parse_timestamp

logger = logging.getLogger(__name__)

# ===== NOTIFICATIONS =====

def push_notification(state: UserProgression, message: str, category: str, now: datetime,
                      policy: Optional[ProgressionConfig] = None) -> Notification:
    """Добавить уведомление в копию снимка (новые первыми, лимит FIFO)"""
    policy = policy or config.progression
    notification = Notification(
        notification_id=new_id(),
        message=message,
        category=NotificationCategory(category).value,
        timestamp=now.isoformat(),
        read=False
    )
    state.notifications = [notification] + state.notifications[:policy.notification_cap - 1]
    return notification

def add_notification(state: UserProgression, message: str, now: datetime,
                     category: str = NotificationCategory.INFO.value) -> Outcome:
    new_state = state.copy()
    push_notification(new_state, message, category, now)
    return Outcome(new_state, [DomainEvent("notification", "Системное уведомление", message, "notification")])

def mark_notifications_read(state: UserProgression) -> Outcome:
    if all(n.read for n in state.notifications):
        return Outcome(state)
    new_state = state.copy()
    for notification in new_state.notifications:
        notification.read = True
    return Outcome(new_state)

# ===== HELPERS =====

def _replace_task(state: UserProgression, task: Task) -> None:
    state.tasks = [task if t.task_id == task.task_id else t for t in state.tasks]

def _record_analytics(state: UserProgression, now: datetime, earned: int,
                      policy: ProgressionConfig) -> None:
    today = date_key(now)
    completed = sum(1 for t in state.tasks if t.completed)
    day_efficiency = efficiency(completed, len(state.tasks))

    history = list(state.analytics_history)
    if history and history[-1].date == today:
        entry = history[-1]
        history[-1] = AnalyticsEntry(
            date=today,
            exp_earned=entry.exp_earned + earned,
            tasks_completed=entry.tasks_completed + 1,
            efficiency=day_efficiency
        )
    else:
        history.append(AnalyticsEntry(
            date=today,
            exp_earned=earned,
            tasks_completed=1,
            efficiency=day_efficiency
        ))
    state.analytics_history = history[-policy.analytics_window:]

def unlock_titles(state: UserProgression, now: datetime, events: List[DomainEvent]) -> None:
    for title in newly_unlocked(state):
        state.titles_unlocked = state.titles_unlocked + [title.name]
        push_notification(state, f"🏅 Открыт титул: {title.name}", NotificationCategory.SUCCESS.value, now)
        events.append(DomainEvent("title_unlocked", "Новый титул", title.name, "level_up"))
        logger.info(f"🏅 {state.username}: открыт титул {title.name}")

def _rank_change(state: UserProgression, old_rank: str, now: datetime, events: List[DomainEvent]) -> None:
    if state.rank == old_rank:
        return
    if Rank(state.rank) > Rank(old_rank):
        push_notification(state, f"⚔️ RANK UP! Новый ранг: {state.rank}", NotificationCategory.RANK.value, now)
        events.append(DomainEvent("rank_up", "Новый ранг", f"Ранг {state.rank}", "rank_up"))
    else:
        push_notification(state, f"⚠️ Ранг понижен до {state.rank}", NotificationCategory.RANK.value, now)
        events.append(DomainEvent("rank_down", "Ранг понижен", f"Ранг {state.rank}", "warning"))

# ===== COMPLETION / FAILURE =====

def complete_task(state: UserProgression, task_id: str, now: datetime,
                  policy: Optional[ProgressionConfig] = None) -> Outcome:
    """
    Выполнить квест: награда с учётом ранга и streak, повышение уровня,
    рост характеристики, аналитика дня.

    Повторный вызов для уже выполненного квеста возвращает тот же снимок.
    """
    policy = policy or config.progression
    task = state.require_task(task_id)
    if task.completed:
        return Outcome(state)

    new_state = state.copy()
    events: List[DomainEvent] = []

    multiplier = streak_multiplier(new_state.streak, policy)
    earned = round_half_up(task.exp_value * rank_award_modifier(new_state.rank, policy) * multiplier)

    old_rank = new_state.rank
    new_state.cumulative_exp += earned
    new_state.rank = rank_for(new_state.cumulative_exp, policy).value

    level, current_exp, gained, points = apply_level_ups(
        new_state.level, new_state.current_exp + earned, policy
    )
    new_state.level = level
    new_state.current_exp = current_exp
    new_state.stat_points += points

    stat = task.target_stat
    new_state.stats = dict(new_state.stats)
    new_state.stats[stat] = new_state.stats.get(stat, 0) + 1

    _replace_task(new_state, lifecycle.mark_completed(task, now))
    new_state.total_tasks_completed += 1
    _record_analytics(new_state, now, earned, policy)

    push_notification(
        new_state,
        f"✅ Квест выполнен! +{earned} EXP. {stat.upper()} +1",
        NotificationCategory.SUCCESS.value, now, policy
    )
    events.append(DomainEvent("task_completed", "Квест выполнен", f"{task.name}: +{earned} EXP", "success"))

    if gained:
        push_notification(
            new_state,
            f"🆙 LEVEL UP! Уровень {level}. +{points} очков характеристик",
            NotificationCategory.LEVEL.value, now, policy
        )
        events.append(DomainEvent("level_up", "Новый уровень", f"Уровень {level}", "level_up"))
        logger.info(f"🆙 {new_state.username}: уровень {level} (+{gained})")

    _rank_change(new_state, old_rank, now, events)
    unlock_titles(new_state, now, events)

    logger.debug(f"✅ {new_state.username}: квест {task.task_id} выполнен, +{earned} EXP")
    return Outcome(new_state, events)

def fail_task(state: UserProgression, task_id: str, now: datetime,
              policy: Optional[ProgressionConfig] = None) -> Outcome:
    """Провал квеста: штраф из текущего опыта, ранг не меняется"""
    policy = policy or config.progression
    task = state.require_task(task_id)
    if task.completed:
        raise InvariantViolation("Выполненный квест нельзя провалить")
    if task.state == TaskState.FAILED.value:
        return Outcome(state)

    new_state = state.copy()
    lost = failure_penalty(task.exp_value, new_state.rank, policy)
    new_state.current_exp = max(0, new_state.current_exp - lost)
    _replace_task(new_state, lifecycle.mark_failed(task, now))

    push_notification(new_state, f"❌ Квест провален. Потеряно {lost} EXP", NotificationCategory.ERROR.value, now, policy)
    return Outcome(new_state, [DomainEvent("task_failed", "Квест провален", f"{task.name}: -{lost} EXP", "fail")])

def apply_penalty_protocol(state: UserProgression, amount: int, reason: str, now: datetime,
                           policy: Optional[ProgressionConfig] = None) -> Outcome:
    """Явное административное списание из накопленного опыта (пересчитывает ранг)"""
    policy = policy or config.progression
    validate_non_negative(amount, "amount")
    reason = validate_text(reason, min_length=1, max_length=300, field_name="reason")

    new_state = state.copy()
    events: List[DomainEvent] = []
    old_rank = new_state.rank
    new_state.cumulative_exp = max(0, new_state.cumulative_exp - amount)
    new_state.rank = rank_for(new_state.cumulative_exp, policy).value

    push_notification(
        new_state, f"☠️ Протокол наказания: -{amount} EXP. {reason}",
        NotificationCategory.WARNING.value, now, policy
    )
    events.append(DomainEvent("penalty_protocol", "Протокол наказания", reason, "warning"))
    _rank_change(new_state, old_rank, now, events)
    logger.warning(f"☠️ {new_state.username}: протокол наказания -{amount} EXP ({reason})")
    return Outcome(new_state, events)

def apply_extra_penalty(state: UserProgression, amount: int, message: str, now: datetime,
                        policy: Optional[ProgressionConfig] = None) -> Outcome:
    """Дополнительный штраф тактического анализа; ограничен max_extra_penalty"""
    policy = policy or config.progression
    amount = max(0, min(int(amount), policy.max_extra_penalty))

    new_state = state.copy()
    new_state.current_exp = max(0, new_state.current_exp - amount)
    text = f"🛰 {message}" if not amount else f"🛰 {message} (-{amount} EXP)"
    push_notification(new_state, text, NotificationCategory.WARNING.value, now, policy)
    return Outcome(new_state, [DomainEvent("tactical_analysis", "Тактический анализ", message, "warning")])

# ===== STATS =====

def spend_stat_point(state: UserProgression, stat: str, now: datetime) -> Outcome:
    """Потратить одно очко на характеристику"""
    if stat not in STAT_NAMES:
        raise ValidationError(f"Неизвестная характеристика: {stat}")
    if state.stat_points <= 0:
        raise InvariantViolation("Нет свободных очков характеристик")

    new_state = state.copy()
    new_state.stat_points -= 1
    new_state.stats = dict(new_state.stats)
    new_state.stats[stat] = new_state.stats.get(stat, 0) + 1
    return Outcome(new_state, [DomainEvent("stat_spent", "Характеристика", f"{stat.upper()} +1", "click")])

# ===== TASK LIFECYCLE =====

def add_task(state: UserProgression, task: Task, now: datetime) -> Outcome:
    if state.find_task(task.task_id) is not None:
        raise ValidationError(f"Квест {task.task_id} уже существует")

    new_state = state.copy()
    new_state.tasks = new_state.tasks + [task]
    push_notification(new_state, f"📜 Новый квест: {task.name}", NotificationCategory.INFO.value, now)
    return Outcome(new_state, [DomainEvent("task_added", "Новый квест", task.name, "click")])

def update_task_progress(state: UserProgression, task_id: str, progress: int, now: datetime,
                         policy: Optional[ProgressionConfig] = None) -> Outcome:
    """Прогресс повторений; при достижении цели квест выполняется"""
    task = state.require_task(task_id)
    updated, reached = lifecycle.record_progress(task, progress, now)
    if updated is task:
        return Outcome(state)

    new_state = state.copy()
    _replace_task(new_state, updated)
    if reached:
        return complete_task(new_state, task_id, now, policy)
    return Outcome(new_state, [DomainEvent("progress", "Прогресс", f"{updated.reps_done}/{updated.reps_target}", "click")])

def toggle_task_timer(state: UserProgression, task_id: str, now: datetime,
                      policy: Optional[ProgressionConfig] = None) -> Outcome:
    task = state.require_task(task_id)
    updated = lifecycle.toggle_timer(task, now)
    if updated is task:
        return Outcome(state)

    new_state = state.copy()
    _replace_task(new_state, updated)
    if updated.timer_state == TimerState.COMPLETED.value:
        return complete_task(new_state, task_id, now, policy)
    return Outcome(new_state, [DomainEvent("timer", "Таймер", updated.timer_state, "click")])

def tick_timers(state: UserProgression, now: datetime,
                policy: Optional[ProgressionConfig] = None) -> Outcome:
    """Продвинуть все работающие таймеры; истёкшие квесты выполняются"""
    running = [t for t in state.tasks if t.timer_state == TimerState.RUNNING.value and not t.completed]
    if not running:
        return Outcome(state)

    new_state = state.copy()
    finished = []
    for task in running:
        updated, done = lifecycle.tick_timer(task, now)
        if updated is not task:
            _replace_task(new_state, updated)
        if done:
            finished.append(task.task_id)

    outcome = Outcome(new_state)
    for task_id in finished:
        result = complete_task(outcome.state, task_id, now, policy)
        outcome = Outcome(result.state, outcome.events + result.events)
    return outcome

def edit_task(state: UserProgression, task_id: str, now: datetime, **changes: Any) -> Outcome:
    task = state.require_task(task_id)
    updated = lifecycle.edit_task(task, now, **changes)

    new_state = state.copy()
    _replace_task(new_state, updated)
    push_notification(new_state, "📜 Журнал квестов обновлён. Ставки выросли", NotificationCategory.SUCCESS.value, now)
    return Outcome(new_state)

def delete_task(state: UserProgression, task_id: str, now: datetime,
                policy: Optional[ProgressionConfig] = None) -> Outcome:
    task = state.require_task(task_id)
    if not lifecycle.can_delete(task, now, policy):
        raise InvariantViolation("Квест закреплён: удаление запрещено")

    new_state = state.copy()
    new_state.tasks = [t for t in new_state.tasks if t.task_id != task_id]
    return Outcome(new_state, [DomainEvent("task_deleted", "Квест удалён", task.name, "click")])

# ===== REMINDERS =====

def schedule_reminder(state: UserProgression, message: str, target: datetime, now: datetime) -> Outcome:
    """Точка входа для внешнего AI-коллаборатора и пользователя"""
    message = validate_text(message, min_length=1, max_length=500, field_name="message")

    new_state = state.copy()
    reminder = Reminder(
        reminder_id=new_id(),
        message=message,
        target_timestamp=target.isoformat(),
        triggered=False,
        created_at=now.isoformat()
    )
    new_state.reminders = new_state.reminders + [reminder]
    logger.info(f"⏰ {state.username}: напоминание на {reminder.target_timestamp}")
    return Outcome(new_state)

def poll_reminders(state: UserProgression, now: datetime) -> Outcome:
    """Сработать все наступившие напоминания, каждое не более одного раза"""
    due = [
        r.reminder_id for r in state.reminders
        if not r.triggered and parse_timestamp(r.target_timestamp) <= now
    ]
    if not due:
        return Outcome(state)

    new_state = state.copy()
    events = []
    for reminder in new_state.reminders:
        if reminder.reminder_id in due:
            reminder.triggered = True
            push_notification(new_state, f"🔔 {reminder.message}", NotificationCategory.REMINDER.value, now)
            events.append(DomainEvent("reminder", "Напоминание", reminder.message, "notification"))
    return Outcome(new_state, events)

# ===== PROFILE / IMPORT =====

def update_profile(state: UserProgression, now: datetime, username: Optional[str] = None,
                   selected_title: Optional[str] = None, reset_time: Optional[str] = None) -> Outcome:
    if username is not None:
        username = validate_text(username, min_length=1, max_length=64, field_name="username")
    if selected_title is not None and selected_title not in state.titles_unlocked:
        raise InvariantViolation(f"Титул {selected_title!r} ещё не открыт")
    if reset_time is not None and not RESET_TIME_PATTERN.match(reset_time):
        raise ValidationError("Время сброса должно быть в формате HH:MM")

    new_state = state.copy()
    if username is not None:
        new_state.username = username
    if selected_title is not None:
        new_state.selected_title = selected_title
    if reset_time is not None:
        new_state.reset_time = reset_time
    push_notification(new_state, "👤 Профиль синхронизирован с Системой", NotificationCategory.SUCCESS.value, now)
    return Outcome(new_state)

def import_snapshot(data: Dict[str, Any], now: datetime) -> Outcome:
    """Полная замена снимка импортированной резервной копией"""
    if not isinstance(data, dict) or ("username" not in data and "level" not in data):
        raise ValidationError("Несовместимый формат данных: нет username или level")

    new_state = UserProgression.from_dict(data)
    push_notification(new_state, "📥 Внешние данные успешно интегрированы", NotificationCategory.SUCCESS.value, now)
    return Outcome(new_state, [DomainEvent("imported", "Импорт", "Данные заменены", "success")])

# ===== ACCOUNT TERMINATION =====

def start_termination(state: UserProgression, now: datetime,
                      policy: Optional[ProgressionConfig] = None) -> Outcome:
    """
    Запустить обратный отсчёт удаления аккаунта.

    Хранится момент удаления, а не счётчик: пропущенные тики часов не
    продлевают отсчёт. Повторный запуск не сдвигает уже назначенный срок.
    """
    policy = policy or config.progression
    if state.termination_deadline is not None:
        return Outcome(state)

    new_state = state.copy()
    deadline = now + timedelta(seconds=policy.termination_seconds)
    new_state.termination_deadline = deadline.isoformat()
    push_notification(
        new_state, f"☠️ Запущен протокол удаления аккаунта: {policy.termination_seconds} с",
        NotificationCategory.WARNING.value, now, policy
    )
    logger.warning(f"☠️ {state.username}: удаление аккаунта в {new_state.termination_deadline}")
    return Outcome(new_state, [DomainEvent("termination_started", "Удаление аккаунта",
                                           f"Через {policy.termination_seconds} с", "warning")])

def cancel_termination(state: UserProgression, now: datetime) -> Outcome:
    if state.termination_deadline is None:
        return Outcome(state)

    new_state = state.copy()
    new_state.termination_deadline = None
    push_notification(new_state, "🛡 Протокол удаления отменён", NotificationCategory.INFO.value, now)
    logger.info(f"🛡 {state.username}: удаление аккаунта отменено")
    return Outcome(new_state, [DomainEvent("termination_cancelled", "Удаление отменено", "", "click")])

def termination_remaining(state: UserProgression, now: datetime) -> Optional[int]:
    """Секунд до удаления или None, если удаление не запрошено"""
    if state.termination_deadline is None:
        return None
    remaining = (parse_timestamp(state.termination_deadline) - now).total_seconds()
    return max(0, math.ceil(remaining))

def termination_due(state: UserProgression, now: datetime) -> bool:
    return termination_remaining(state, now) == 0

# ===== AI CONTEXT =====

def prompt_context(state: UserProgression) -> Dict[str, Any]:
    """Снимок только для чтения для промпта AI-коллаборатора"""
    return {
        "username": state.username,
        "level": state.level,
        "rank": state.rank,
        "current_exp": state.current_exp,
        "next_level_exp": level_threshold(state.level),
        "streak": state.streak,
        "stat_points": state.stat_points,
        "stats": dict(state.stats),
        "title": state.selected_title,
        "active_tasks": [
            {
                "name": t.name,
                "type": t.task_type,
                "category": t.category,
                "completed": t.completed,
                "state": t.state,
            }
            for t in state.tasks if not t.completed
        ],
        "completed_today": sum(1 for t in state.tasks if t.completed),
    }
