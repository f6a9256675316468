# core/titles.py

"""Титулы охотника: открываются по достижении условий и никогда не теряются"""

from dataclasses import dataclass
from typing import Callable, List

from core.models import UserProgression, Rank

@dataclass(frozen=True)
class TitleDefinition:
    """Определение титула"""
    title_id: str
    name: str
    description: str
    condition: Callable[[UserProgression], bool]

TITLES: List[TitleDefinition] = [
    TitleDefinition(
        "novice_hunter", "Novice Hunter", "Выполните первый квест",
        lambda s: s.total_tasks_completed >= 1
    ),
    TitleDefinition(
        "consistent_striker", "Consistent Striker", "Streak 3 дня",
        lambda s: s.streak >= 3
    ),
    TitleDefinition(
        "iron_will", "Iron Will", "Streak 7 дней",
        lambda s: s.streak >= 7
    ),
    TitleDefinition(
        "unstoppable", "Unstoppable", "Streak 30 дней",
        lambda s: s.streak >= 30
    ),
    TitleDefinition(
        "shadow_soldier", "Shadow Soldier", "Достигните 10 уровня",
        lambda s: s.level >= 10
    ),
    TitleDefinition(
        "one_man_army", "One Man Army", "Выполните 100 квестов",
        lambda s: s.total_tasks_completed >= 100
    ),
    TitleDefinition(
        "awakened", "The Awakened", "Получите ранг C",
        lambda s: Rank(s.rank) >= Rank.C
    ),
    TitleDefinition(
        "shadow_monarch", "Shadow Monarch", "Получите ранг SS",
        lambda s: Rank(s.rank) == Rank.SS
    ),
]

def newly_unlocked(state: UserProgression) -> List[TitleDefinition]:
    """Титулы, условия которых выполнены, но которые ещё не открыты"""
    return [
        title for title in TITLES
        if title.name not in state.titles_unlocked and title.condition(state)
    ]
