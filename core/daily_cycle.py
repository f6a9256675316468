#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
SystemQuest v1.0 - Daily Cycle
Ежедневный сброс: штрафы за пропущенные квесты, streak, очистка прогресса

Сброс применяется не более одного раза за календарный день: повторный
вызов в тот же день (last_reset_timestamp уже обновлён) ничего не делает.
Вычисление идёт на копии снимка, поэтому ошибка посередине не оставляет
частично применённого состояния.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Protocol, Tuple, Any, Dict

from config import ProgressionConfig, config
from core import lifecycle
from core.engine import push_notification, prompt_context, unlock_titles
from core.models import UserProgression, Outcome, DomainEvent, NotificationCategory
from core.progression import failure_penalty
from utils.datetime_utils import parse_timestamp, parse_clock

logger = logging.getLogger(__name__)

# ===== EXCEPTIONS =====

class ResetRetry(Exception):
    """Сброс не применён и будет повторён на следующем тике"""
    pass

# ===== DATA CLASSES =====

@dataclass
class ResetSummary:
    """Итог ежедневного сброса"""
    applied: bool
    missed: int = 0
    exp_lost: int = 0
    streak: int = 0
    perfect: bool = False
    missed_names: List[str] = field(default_factory=list)
    retry: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'applied': self.applied,
            'missed': self.missed,
            'exp_lost': self.exp_lost,
            'streak': self.streak,
            'perfect': self.perfect,
            'missed_names': list(self.missed_names)
        }

@dataclass
class ResetResult:
    outcome: Outcome
    summary: ResetSummary

class TacticalAnalyst(Protocol):
    """Внешний коллаборатор, формулирующий штрафное сообщение"""

    async def analyze(self, summary: ResetSummary, context: Dict[str, Any]) -> Tuple[str, int]:
        ...

# ===== TRIGGER =====

def should_reset(state: UserProgression, now: datetime) -> bool:
    """Наступил новый календарный день и время сброса уже прошло"""
    last_reset = parse_timestamp(state.last_reset_timestamp)
    return now.date() != last_reset.date() and now.time() >= parse_clock(state.reset_time)

def already_reset_today(state: UserProgression, now: datetime) -> bool:
    return parse_timestamp(state.last_reset_timestamp).date() == now.date()

def _noop(state: UserProgression) -> ResetResult:
    return ResetResult(Outcome(state), ResetSummary(applied=False, streak=state.streak))

# ===== RESET =====

def run_daily_reset(state: UserProgression, now: datetime, manual: bool = False,
                    policy: Optional[ProgressionConfig] = None) -> ResetResult:
    """
    Применить ежедневный сброс.

    В сбросе участвуют только квесты repeat=daily; custom-квесты сохраняют
    своё состояние. Штраф начисляется за каждый невыполненный daily-квест,
    в том числе проваленный через fail_task.

    Args:
        manual: ручной запуск не ждёт времени сброса, но не обходит
            защиту "один сброс в день"
    """
    policy = policy or config.progression

    if already_reset_today(state, now):
        return _noop(state)
    if not manual and not should_reset(state, now):
        return _noop(state)

    new_state = state.copy()
    events: List[DomainEvent] = []

    daily = new_state.daily_tasks
    incomplete = [t for t in daily if not t.completed]
    summary = ResetSummary(applied=True, missed=len(incomplete), missed_names=[t.name for t in incomplete])

    if incomplete:
        lost = sum(failure_penalty(t.exp_value, new_state.rank, policy) for t in incomplete)
        new_state.current_exp = max(0, new_state.current_exp - lost)
        new_state.streak = 0
        summary.exp_lost = lost
        push_notification(
            new_state,
            f"⚠️ Ежедневный сброс: пропущено квестов {len(incomplete)}. Потеряно {lost} EXP",
            NotificationCategory.WARNING.value, now, policy
        )
        events.append(DomainEvent(
            "daily_penalty", "Ежедневный сброс",
            f"Пропущено: {len(incomplete)}, -{lost} EXP", "warning"
        ))
    elif daily:
        new_state.streak += 1
        summary.perfect = True
        push_notification(
            new_state,
            f"🔥 Идеальный день! Streak: {new_state.streak} дн.",
            NotificationCategory.SUCCESS.value, now, policy
        )
        events.append(DomainEvent("perfect_day", "Идеальный день", f"Streak {new_state.streak}", "success"))

    new_state.tasks = [
        lifecycle.reset_transient(t, now) if t.is_daily else t
        for t in new_state.tasks
    ]
    new_state.last_reset_timestamp = now.isoformat()
    summary.streak = new_state.streak
    unlock_titles(new_state, now, events)

    logger.info(
        f"🌅 {new_state.username}: сброс дня (пропущено {summary.missed}, "
        f"-{summary.exp_lost} EXP, streak {summary.streak})"
    )
    return ResetResult(Outcome(new_state, events), summary)

def fallback_penalty_message(summary: ResetSummary) -> str:
    """Детерминированное сообщение, когда тактический анализ недоступен"""
    return (
        f"Система зафиксировала {summary.missed} невыполненных квестов. "
        f"Потеряно {summary.exp_lost} EXP. Слабость не будет прощена."
    )

# ===== CONTROLLER =====

class DailyCycleController:
    """
    Контроллер ежедневного цикла.

    check() вызывается на каждом тике часов и никогда не бросает исключений:
    сбой сброса логируется, снимок возвращается без изменений, и сброс
    повторяется на следующем тике.
    """

    def __init__(self, analyst: Optional[TacticalAnalyst] = None,
                 policy: Optional[ProgressionConfig] = None,
                 analysis_timeout: float = 10.0):
        self.analyst = analyst
        self.policy = policy
        self.analysis_timeout = analysis_timeout
        self.failed_attempts = 0
        self.resets_applied = 0

    def check(self, state: UserProgression, now: datetime, manual: bool = False) -> ResetResult:
        try:
            if not manual and not should_reset(state, now):
                return _noop(state)
            result = self._apply(state, now, manual)
        except ResetRetry as e:
            self.failed_attempts += 1
            logger.error(f"❌ Ошибка ежедневного сброса (попытка {self.failed_attempts}): {e}")
            return ResetResult(Outcome(state), ResetSummary(applied=False, streak=state.streak, retry=True))
        except Exception as e:
            logger.error(f"❌ Ошибка проверки ежедневного сброса: {e}")
            return ResetResult(Outcome(state), ResetSummary(applied=False, streak=state.streak, retry=True))

        if result.summary.applied:
            self.failed_attempts = 0
            self.resets_applied += 1
        return result

    def _apply(self, state: UserProgression, now: datetime, manual: bool) -> ResetResult:
        try:
            return run_daily_reset(state, now, manual=manual, policy=self.policy)
        except Exception as e:
            raise ResetRetry(str(e)) from e

    async def analyze_missed(self, state: UserProgression, summary: ResetSummary) -> Tuple[str, int]:
        """
        Сообщение и доп. штраф от тактического анализа.

        Любая ошибка коллаборатора заменяется детерминированным сообщением.
        """
        if self.analyst is None:
            return fallback_penalty_message(summary), 0
        try:
            return await asyncio.wait_for(
                self.analyst.analyze(summary, prompt_context(state)),
                timeout=self.analysis_timeout
            )
        except Exception as e:
            logger.warning(f"⚠️ Тактический анализ недоступен, используется стандартное сообщение: {e}")
            return fallback_penalty_message(summary), 0
