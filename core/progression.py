# core/progression.py

"""
Арифметика прогрессии: пороги уровней, ранги, эффективность.

Чистые функции без состояния. Конкретные кривые берутся из
ProgressionConfig и могут быть заменены целиком.
"""

from typing import Optional

from config import ProgressionConfig, config
from core.models import Rank, TaskDifficulty, InvariantViolation

def _policy(policy: Optional[ProgressionConfig]) -> ProgressionConfig:
    return policy or config.progression

def _growth_factor(step: int, policy: ProgressionConfig) -> float:
    """Множитель роста для перехода step -> step + 1"""
    factor = 1.0
    for tier_start, tier_factor in policy.level_growth_tiers:
        if step >= tier_start:
            factor = tier_factor
    return factor

def level_threshold(level: int, policy: Optional[ProgressionConfig] = None) -> int:
    """Опыт, необходимый для перехода с level на level + 1"""
    policy = _policy(policy)
    if level < 1:
        raise ValueError(f"Уровень должен быть >= 1, получено {level}")

    value = float(policy.level_base_exp)
    for step in range(1, level):
        value *= _growth_factor(step, policy)
    return int(value)

def rank_for(cumulative_exp: float, policy: Optional[ProgressionConfig] = None) -> Rank:
    """Наивысший ранг, порог которого не превышает накопленный опыт"""
    policy = _policy(policy)
    result = Rank.E
    for threshold, rank in sorted(policy.rank_thresholds):
        if cumulative_exp >= threshold:
            result = Rank(rank)
    return result

def rank_award_modifier(rank: str, policy: Optional[ProgressionConfig] = None) -> float:
    policy = _policy(policy)
    return policy.rank_modifiers.get(Rank(rank).value, 1.0)

def streak_multiplier(streak: int, policy: Optional[ProgressionConfig] = None) -> float:
    """Ступенчатый, неубывающий по streak множитель"""
    policy = _policy(policy)
    for min_streak, multiplier in sorted(policy.streak_multipliers, reverse=True):
        if streak >= min_streak:
            return multiplier
    return 1.0

def round_half_up(value: float) -> int:
    return int(value + 0.5) if value >= 0 else -int(-value + 0.5)

def efficiency(completed_count: int, total_count: int) -> int:
    """Процент выполнения дня; пустой день считается выполненным"""
    if total_count == 0:
        return 100
    return round_half_up(100 * completed_count / total_count)

def lock_window(difficulty: str, policy: Optional[ProgressionConfig] = None) -> int:
    """Окно (в секундах), в течение которого новый квест можно удалить"""
    policy = _policy(policy)
    scale = policy.difficulty_lock_scale.get(TaskDifficulty(difficulty).value, 1)
    return policy.lock_window_seconds * scale

def failure_penalty(exp_value: float, rank: str, policy: Optional[ProgressionConfig] = None) -> int:
    """Штраф за проваленный квест: половина награды с учётом ранга"""
    policy = _policy(policy)
    return round_half_up(exp_value * rank_award_modifier(rank, policy) * policy.failure_penalty_ratio)

def apply_level_ups(level: int, current_exp: int, policy: Optional[ProgressionConfig] = None):
    """
    Цикл повышения уровня.

    Returns:
        (level, current_exp, levels_gained, stat_points_awarded)
    """
    policy = _policy(policy)
    gained = 0
    threshold = level_threshold(level, policy)
    while current_exp >= threshold:
        if threshold <= 0:
            raise InvariantViolation(f"Порог уровня {level} не положителен: {threshold}")
        current_exp -= threshold
        level += 1
        gained += 1
        threshold = level_threshold(level, policy)
    return level, current_exp, gained, gained * policy.stat_points_per_level
