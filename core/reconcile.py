# core/reconcile.py

"""
Слияние локального и удалённого снимков одного пользователя.

Политика по полям, а не last-write-wins:
- cumulative_exp - максимум; ранг пересчитывается из результата
- (level, current_exp) - лексикографический максимум пары
- titles_unlocked - объединение, уведомления - дедупликация по id
- tasks, stats, stat_points, streak - целиком со стороны с большим
  cumulative_exp (при равенстве - локальная сторона)

Проигравшая сторона теряет незавершённые правки квестов. Это известное
ограничение эвристики.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from config import ProgressionConfig, config
from core.models import UserProgression, Notification, Reminder, AnalyticsEntry, ValidationError
from core.progression import rank_for
from utils.datetime_utils import parse_timestamp

logger = logging.getLogger(__name__)

RemoteSnapshot = Union[UserProgression, Dict[str, Any], None]

def _coerce_remote(remote: RemoteSnapshot) -> Optional[UserProgression]:
    if remote is None:
        return None
    if isinstance(remote, UserProgression):
        return remote
    if isinstance(remote, dict):
        try:
            return UserProgression.from_dict(remote)
        except ValidationError as e:
            logger.warning(f"⚠️ Удалённый снимок не распознан, используется локальный: {e}")
            return None
    logger.warning(f"⚠️ Неожиданный тип удалённого снимка: {type(remote).__name__}")
    return None

def _merge_titles(local: List[str], remote: List[str]) -> List[str]:
    merged = list(local)
    for title in remote:
        if title not in merged:
            merged.append(title)
    return merged

def _notification_time(notification: Notification):
    try:
        return parse_timestamp(notification.timestamp)
    except ValueError:
        return parse_timestamp("1970-01-01T00:00:00")

def _merge_notifications(local: List[Notification], remote: List[Notification], cap: int) -> List[Notification]:
    """
    Слияние двух журналов с сохранением порядка каждой стороны.

    На каждом шаге берётся более новая из голов списков (при равенстве -
    локальная), повторные id пропускаются с OR по read. Собственный порядок
    журнала не пересортировывается, поэтому merge(x, x) сохраняет x.
    """
    read_ids = {n.notification_id for n in local + remote if n.read}
    merged: List[Notification] = []
    seen = set()
    i = j = 0
    while i < len(local) or j < len(remote):
        if i < len(local) and local[i].notification_id in seen:
            i += 1
            continue
        if j < len(remote) and remote[j].notification_id in seen:
            j += 1
            continue
        if j >= len(remote) or (i < len(local) and _notification_time(local[i]) >= _notification_time(remote[j])):
            picked = local[i]
            i += 1
        else:
            picked = remote[j]
            j += 1
        seen.add(picked.notification_id)
        entry = Notification.from_dict(picked.to_dict())
        entry.read = picked.notification_id in read_ids
        merged.append(entry)
    return merged[:cap]

def _merge_reminders(local: List[Reminder], remote: List[Reminder]) -> List[Reminder]:
    by_id: Dict[str, Reminder] = {}
    order: List[str] = []
    for reminder in local + remote:
        existing = by_id.get(reminder.reminder_id)
        if existing is None:
            by_id[reminder.reminder_id] = Reminder.from_dict(reminder.to_dict())
            order.append(reminder.reminder_id)
        elif reminder.triggered:
            existing.triggered = True
    return [by_id[rid] for rid in order]

def _merge_analytics(local: List[AnalyticsEntry], remote: List[AnalyticsEntry], window: int) -> List[AnalyticsEntry]:
    by_date: Dict[str, AnalyticsEntry] = {}
    for entry in local + remote:
        current = by_date.get(entry.date)
        if current is None or (entry.tasks_completed, entry.exp_earned) > (current.tasks_completed, current.exp_earned):
            by_date[entry.date] = entry
    merged = [AnalyticsEntry.from_dict(by_date[d].to_dict()) for d in sorted(by_date)]
    return merged[-window:]

def merge(local: UserProgression, remote: RemoteSnapshot,
          policy: Optional[ProgressionConfig] = None) -> UserProgression:
    """
    Объединить два снимка. Никогда не бросает исключений.

    Отсутствующий или нераспознанный удалённый снимок возвращает local
    без изменений. merge(x, x) == x.
    """
    policy = policy or config.progression
    other = _coerce_remote(remote)
    if other is None:
        return local

    try:
        winner = other if other.cumulative_exp > local.cumulative_exp else local
        merged = winner.copy()

        merged.cumulative_exp = max(local.cumulative_exp, other.cumulative_exp)
        merged.rank = rank_for(merged.cumulative_exp, policy).value
        merged.level, merged.current_exp = max(
            (local.level, local.current_exp),
            (other.level, other.current_exp)
        )
        merged.total_tasks_completed = max(local.total_tasks_completed, other.total_tasks_completed)

        merged.titles_unlocked = _merge_titles(local.titles_unlocked, other.titles_unlocked)
        if merged.selected_title not in merged.titles_unlocked:
            merged.selected_title = merged.titles_unlocked[0]

        merged.notifications = _merge_notifications(
            local.notifications, other.notifications, policy.notification_cap
        )
        merged.reminders = _merge_reminders(local.reminders, other.reminders)
        merged.analytics_history = _merge_analytics(
            local.analytics_history, other.analytics_history, policy.analytics_window
        )
    except Exception as e:
        logger.error(f"❌ Ошибка слияния снимков, используется локальный: {e}")
        return local

    if winner is other:
        logger.info(f"🔄 {local.username}: удалённый снимок приоритетнее ({other.cumulative_exp} EXP)")
    return merged
