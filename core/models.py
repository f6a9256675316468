#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
SystemQuest v1.0 - Core Data Models
Модели данных прогрессии с валидацией и сериализацией

Снимок UserProgression принадлежит одной сессии. Операции ядра никогда не
меняют переданный снимок: они работают с копией и возвращают новую.
"""

import copy
import uuid
from datetime import datetime
from typing import Dict, List, Optional, Any
from dataclasses import dataclass, field, asdict
from enum import Enum
import logging

logger = logging.getLogger(__name__)

# ===== ENUMS =====

class Rank(Enum):
    """Ранги охотника, от низшего к высшему"""
    E = "E"
    D = "D"
    C = "C"
    B = "B"
    A = "A"
    S = "S"
    SS = "SS"

    @property
    def order(self) -> int:
        return RANK_ORDER.index(self.value)

    def __lt__(self, other: "Rank") -> bool:
        if not isinstance(other, Rank):
            return NotImplemented
        return self.order < other.order

    def __le__(self, other: "Rank") -> bool:
        if not isinstance(other, Rank):
            return NotImplemented
        return self.order <= other.order

    def __gt__(self, other: "Rank") -> bool:
        if not isinstance(other, Rank):
            return NotImplemented
        return self.order > other.order

    def __ge__(self, other: "Rank") -> bool:
        if not isinstance(other, Rank):
            return NotImplemented
        return self.order >= other.order

RANK_ORDER = [rank.value for rank in Rank]

class TaskType(Enum):
    """Тип условия выполнения"""
    CHECKBOX = "checkbox"
    REPS = "reps"
    DURATION = "duration"

class TaskRepeat(Enum):
    """Участие в ежедневном сбросе"""
    DAILY = "daily"
    CUSTOM = "custom"

class TaskState(Enum):
    """Отображаемое состояние квеста"""
    NORMAL = "normal"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"

class TimerState(Enum):
    """Состояние таймера квеста на время"""
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"

class TaskDifficulty(Enum):
    """Сложность квеста"""
    EASY = "easy"
    NORMAL = "normal"
    HARD = "hard"
    EXTREME = "extreme"

class TaskCategory(Enum):
    """Категории квестов"""
    PHYSICAL_HEALTH = "physical_health"
    MENTAL_HEALTH = "mental_health"
    PERSONAL = "personal"
    SKILL = "skill"
    SPIRITUAL = "spiritual"

class NotificationCategory(Enum):
    """Категории уведомлений"""
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    LEVEL = "level"
    RANK = "rank"
    REMINDER = "reminder"
    SYSTEM_ALERT = "system_alert"

STAT_NAMES = ("strength", "vitality", "agility", "intelligence", "sense")

# Категория квеста -> характеристика, растущая при выполнении
CATEGORY_STAT_MAP = {
    TaskCategory.PHYSICAL_HEALTH.value: "strength",
    TaskCategory.MENTAL_HEALTH.value: "intelligence",
    TaskCategory.PERSONAL.value: "agility",
    TaskCategory.SKILL.value: "sense",
    TaskCategory.SPIRITUAL.value: "vitality",
}

# ===== EXCEPTIONS =====

class ValidationError(ValueError):
    """Ошибка валидации входных данных"""
    pass

class InvariantViolation(Exception):
    """Попытка нарушить правило прогрессии; состояние не изменено"""
    pass

# ===== VALIDATION HELPERS =====

def validate_text(text: str, min_length: int = 1, max_length: int = 200, field_name: str = "text") -> str:
    """Валидация текстовых полей"""
    if not isinstance(text, str):
        raise ValidationError(f"{field_name} должен быть строкой")

    text = text.strip()
    if len(text) < min_length:
        raise ValidationError(f"{field_name} должен содержать минимум {min_length} символов")

    if len(text) > max_length:
        raise ValidationError(f"{field_name} должен содержать максимум {max_length} символов")

    return text

def validate_enum_value(value: str, enum_class: type, field_name: str = "value") -> str:
    """Валидация значений enum"""
    if isinstance(value, enum_class):
        return value.value
    try:
        enum_class(value)
        return value
    except ValueError:
        valid_values = [e.value for e in enum_class]
        raise ValidationError(f"{field_name} должен быть одним из: {valid_values}")

def validate_non_negative(value: Any, field_name: str = "value") -> Any:
    """Неотрицательное число (bool не считается числом)"""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{field_name} должен быть числом")
    if value < 0:
        raise ValidationError(f"{field_name} не может быть отрицательным")
    return value

def new_id() -> str:
    return str(uuid.uuid4())

# ===== CORE MODELS =====

@dataclass
class Task:
    """Квест: повторяющаяся цель с условием выполнения"""
    task_id: str
    name: str
    category: str = TaskCategory.PERSONAL.value
    difficulty: str = TaskDifficulty.NORMAL.value
    task_type: str = TaskType.CHECKBOX.value
    repeat: str = TaskRepeat.DAILY.value
    reps_target: int = 0
    reps_done: int = 0
    duration_seconds: int = 0
    remaining_seconds: int = 0
    exp_value: int = 10
    completed: bool = False
    state: str = TaskState.NORMAL.value
    timer_state: str = TimerState.IDLE.value
    timer_anchor: Optional[str] = None  # последняя учтённая секунда работающего таймера
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())
    last_updated: str = field(default_factory=lambda: datetime.now().isoformat())
    deadline: Optional[str] = None

    @property
    def is_daily(self) -> bool:
        return self.repeat == TaskRepeat.DAILY.value

    @property
    def target_stat(self) -> str:
        return CATEGORY_STAT_MAP.get(self.category, "agility")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        """Десериализация из словаря"""
        try:
            return cls(
                task_id=data["task_id"],
                name=data["name"],
                category=data.get("category", TaskCategory.PERSONAL.value),
                difficulty=data.get("difficulty", TaskDifficulty.NORMAL.value),
                task_type=data.get("task_type", TaskType.CHECKBOX.value),
                repeat=data.get("repeat", TaskRepeat.DAILY.value),
                reps_target=data.get("reps_target", 0),
                reps_done=data.get("reps_done", 0),
                duration_seconds=data.get("duration_seconds", 0),
                remaining_seconds=data.get("remaining_seconds", 0),
                exp_value=data.get("exp_value", 10),
                completed=data.get("completed", False),
                state=data.get("state", TaskState.NORMAL.value),
                timer_state=data.get("timer_state", TimerState.IDLE.value),
                timer_anchor=data.get("timer_anchor"),
                created_at=data.get("created_at", datetime.now().isoformat()),
                last_updated=data.get("last_updated", datetime.now().isoformat()),
                deadline=data.get("deadline")
            )
        except KeyError as e:
            raise ValidationError(f"Не удалось загрузить квест: нет поля {e}")

@dataclass
class AnalyticsEntry:
    """Итоги одного календарного дня"""
    date: str  # YYYY-MM-DD
    exp_earned: int = 0
    tasks_completed: int = 0
    efficiency: int = 100

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalyticsEntry":
        return cls(**data)

@dataclass
class Notification:
    """Запись журнала уведомлений"""
    notification_id: str
    message: str
    category: str = NotificationCategory.INFO.value
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())
    read: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Notification":
        return cls(**data)

@dataclass
class Reminder:
    """Отложенное напоминание; срабатывает не более одного раза"""
    reminder_id: str
    message: str
    target_timestamp: str
    triggered: bool = False
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Reminder":
        return cls(**data)

def default_stats() -> Dict[str, int]:
    return {name: 0 for name in STAT_NAMES}

@dataclass
class UserProgression:
    """Корневой агрегат прогрессии пользователя"""
    username: str
    level: int = 1
    rank: str = Rank.E.value
    current_exp: int = 0
    cumulative_exp: int = 0
    stat_points: int = 0
    stats: Dict[str, int] = field(default_factory=default_stats)
    streak: int = 0
    last_reset_timestamp: str = field(default_factory=lambda: datetime.now().isoformat())
    reset_time: str = "00:00"
    tasks: List[Task] = field(default_factory=list)
    analytics_history: List[AnalyticsEntry] = field(default_factory=list)
    notifications: List[Notification] = field(default_factory=list)
    reminders: List[Reminder] = field(default_factory=list)
    titles_unlocked: List[str] = field(default_factory=lambda: ["Unawakened"])
    selected_title: str = "Unawakened"
    total_tasks_completed: int = 0
    # ISO-метка удаления аккаунта; None - удаление не запрошено
    termination_deadline: Optional[str] = None

    # ===== LOOKUP =====

    def find_task(self, task_id: str) -> Optional[Task]:
        for task in self.tasks:
            if task.task_id == task_id:
                return task
        return None

    def require_task(self, task_id: str) -> Task:
        task = self.find_task(task_id)
        if task is None:
            raise ValidationError(f"Квест {task_id} не найден")
        return task

    @property
    def daily_tasks(self) -> List[Task]:
        return [task for task in self.tasks if task.is_daily]

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self.notifications if not n.read)

    def copy(self) -> "UserProgression":
        return copy.deepcopy(self)

    # ===== SERIALIZATION =====

    def to_dict(self) -> Dict[str, Any]:
        """Сериализация в словарь"""
        return {
            "username": self.username,
            "level": self.level,
            "rank": self.rank,
            "current_exp": self.current_exp,
            "cumulative_exp": self.cumulative_exp,
            "stat_points": self.stat_points,
            "stats": dict(self.stats),
            "streak": self.streak,
            "last_reset_timestamp": self.last_reset_timestamp,
            "reset_time": self.reset_time,
            "tasks": [t.to_dict() for t in self.tasks],
            "analytics_history": [a.to_dict() for a in self.analytics_history],
            "notifications": [n.to_dict() for n in self.notifications],
            "reminders": [r.to_dict() for r in self.reminders],
            "titles_unlocked": list(self.titles_unlocked),
            "selected_title": self.selected_title,
            "total_tasks_completed": self.total_tasks_completed,
            "termination_deadline": self.termination_deadline
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserProgression":
        """Десериализация из словаря"""
        if not isinstance(data, dict):
            raise ValidationError("Снимок прогрессии должен быть объектом")

        try:
            stats = default_stats()
            stats.update(data.get("stats") or {})
            termination_deadline = data.get("termination_deadline")
            if termination_deadline is not None:
                datetime.fromisoformat(termination_deadline)

            return cls(
                username=data.get("username", ""),
                level=data.get("level", 1),
                rank=validate_enum_value(data.get("rank", Rank.E.value), Rank, "rank"),
                current_exp=data.get("current_exp", 0),
                cumulative_exp=data.get("cumulative_exp", 0),
                stat_points=data.get("stat_points", 0),
                stats=stats,
                streak=data.get("streak", 0),
                last_reset_timestamp=data.get("last_reset_timestamp", datetime.now().isoformat()),
                reset_time=data.get("reset_time", "00:00"),
                tasks=[Task.from_dict(t) for t in data.get("tasks", [])],
                analytics_history=[AnalyticsEntry.from_dict(a) for a in data.get("analytics_history", [])],
                notifications=[Notification.from_dict(n) for n in data.get("notifications", [])],
                reminders=[Reminder.from_dict(r) for r in data.get("reminders", [])],
                titles_unlocked=list(data.get("titles_unlocked", ["Unawakened"])),
                selected_title=data.get("selected_title", "Unawakened"),
                total_tasks_completed=data.get("total_tasks_completed", 0),
                termination_deadline=termination_deadline
            )
        except ValidationError:
            raise
        except (TypeError, ValueError, AttributeError) as e:
            logger.error(f"Ошибка десериализации прогрессии: {e}")
            raise ValidationError(f"Не удалось загрузить прогрессию: {e}")

    @classmethod
    def initial(cls, username: str, now: datetime, reset_time: str = "00:00") -> "UserProgression":
        """Новый пользователь"""
        return cls(
            username=username,
            last_reset_timestamp=now.isoformat(),
            reset_time=reset_time
        )

# ===== EVENTS =====

@dataclass
class DomainEvent:
    """Событие для внешних получателей (уведомления устройства, звук)"""
    kind: str
    title: str
    body: str = ""
    sound: Optional[str] = None

@dataclass
class Outcome:
    """Результат операции ядра: новый снимок и события"""
    state: UserProgression
    events: List[DomainEvent] = field(default_factory=list)
