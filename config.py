#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
SystemQuest v1.0 - Configuration
Централизованная конфигурация с валидацией

Все балансные таблицы (кривая уровней, ранги, модификаторы наград)
вынесены сюда и считаются заменяемой политикой.
"""

import os
import re
import sys
import logging
from pathlib import Path
from typing import Optional, Dict, Any, Tuple
from dataclasses import dataclass, field
from enum import Enum

import pytz

class Environment(Enum):
    """Среды выполнения"""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"

class LogLevel(Enum):
    """Уровни логирования"""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

RESET_TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")

@dataclass
class ProgressionConfig:
    """Балансные таблицы прогрессии"""
    level_base_exp: int = 100
    # (первый уровень тира, множитель роста порога)
    level_growth_tiers: Tuple[Tuple[int, float], ...] = ((1, 1.25), (10, 1.30), (20, 1.35))
    rank_thresholds: Tuple[Tuple[int, str], ...] = (
        (0, "E"),
        (1000, "D"),
        (3000, "C"),
        (7000, "B"),
        (15000, "A"),
        (30000, "S"),
        (60000, "SS"),
    )
    rank_modifiers: Dict[str, float] = field(default_factory=lambda: {
        "E": 1.0,
        "D": 0.90,
        "C": 0.85,
        "B": 0.80,
        "A": 0.75,
        "S": 0.70,
        "SS": 0.65,
    })
    # (минимальный streak, множитель); проверяется сверху вниз
    streak_multipliers: Tuple[Tuple[int, float], ...] = ((7, 1.25), (3, 1.10))
    stat_points_per_level: int = 5
    failure_penalty_ratio: float = 0.5
    analytics_window: int = 365
    notification_cap: int = 100
    lock_window_seconds: int = 300
    difficulty_lock_scale: Dict[str, int] = field(default_factory=lambda: {
        "easy": 1,
        "normal": 1,
        "hard": 2,
        "extreme": 3,
    })
    max_extra_penalty: int = 50
    termination_seconds: int = 60

@dataclass
class StorageConfig:
    """Конфигурация хранилищ"""
    data_dir: Path
    backup_dir: Path
    export_dir: Path
    remote_url: Optional[str] = None
    remote_timeout: float = 5.0
    remote_retries: int = 2
    remote_backoff: float = 1.0
    key_suffix: str = "state_v3"

@dataclass
class AIConfig:
    """Конфигурация AI сервиса"""
    openai_api_key: Optional[str]
    openai_model: str = "gpt-4o-mini"
    openai_max_tokens: int = 400
    request_timeout: float = 10.0
    tactical_analysis_enabled: bool = True

@dataclass
class SchedulerConfig:
    """Конфигурация фоновых задач"""
    clock_tick_seconds: int = 1
    reminder_poll_seconds: int = 10
    default_reset_time: str = "00:00"
    timezone: str = "UTC"

class AppConfig:
    """Главный класс конфигурации"""

    def __init__(self):
        self.environment = Environment(os.getenv('ENVIRONMENT', 'development'))
        self._load_config()
        self._validate_config()

    def _load_config(self):
        """Загрузка конфигурации из переменных окружения"""

        # Директории
        self.data_dir = Path(os.getenv('DATA_DIR', 'data'))
        self.export_dir = Path(os.getenv('EXPORT_DIR', 'exports'))
        self.backup_dir = Path(os.getenv('BACKUP_DIR', 'backups'))
        self.log_dir = Path(os.getenv('LOG_DIR', 'logs'))

        self.progression = ProgressionConfig(
            level_base_exp=int(os.getenv('LEVEL_BASE_EXP', 100)),
            stat_points_per_level=int(os.getenv('STAT_POINTS_PER_LEVEL', 5)),
            analytics_window=int(os.getenv('ANALYTICS_WINDOW', 365)),
            notification_cap=int(os.getenv('NOTIFICATION_CAP', 100)),
            lock_window_seconds=int(os.getenv('LOCK_WINDOW_SECONDS', 300)),
            max_extra_penalty=int(os.getenv('MAX_EXTRA_PENALTY', 50)),
            termination_seconds=int(os.getenv('TERMINATION_SECONDS', 60))
        )

        self.storage = StorageConfig(
            data_dir=self.data_dir,
            backup_dir=self.backup_dir,
            export_dir=self.export_dir,
            remote_url=os.getenv('REMOTE_STORE_URL') or None,
            remote_timeout=float(os.getenv('REMOTE_TIMEOUT', 5)),
            remote_retries=int(os.getenv('REMOTE_RETRIES', 2)),
            remote_backoff=float(os.getenv('REMOTE_BACKOFF', 1.0))
        )

        self.ai = AIConfig(
            openai_api_key=os.getenv('OPENAI_API_KEY') or None,
            openai_model=os.getenv('OPENAI_MODEL', 'gpt-4o-mini'),
            openai_max_tokens=int(os.getenv('OPENAI_MAX_TOKENS', 400)),
            request_timeout=float(os.getenv('AI_TIMEOUT', 10)),
            tactical_analysis_enabled=os.getenv('TACTICAL_ANALYSIS', 'true').lower() == 'true'
        )

        self.scheduler = SchedulerConfig(
            clock_tick_seconds=int(os.getenv('CLOCK_TICK_SECONDS', 1)),
            reminder_poll_seconds=int(os.getenv('REMINDER_POLL_SECONDS', 10)),
            default_reset_time=os.getenv('RESET_TIME', '00:00'),
            timezone=os.getenv('TIMEZONE', 'UTC')
        )

        # Логирование
        self.log_level = LogLevel(os.getenv('LOG_LEVEL', 'INFO'))
        self.log_to_file = os.getenv('LOG_TO_FILE', 'false').lower() == 'true'
        self.log_format = os.getenv(
            'LOG_FORMAT',
            '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
        )

    def _validate_config(self):
        """Валидация конфигурации"""
        errors = []

        if not RESET_TIME_PATTERN.match(self.scheduler.default_reset_time):
            errors.append(f"RESET_TIME должен быть в формате HH:MM, получено {self.scheduler.default_reset_time!r}")

        if self.scheduler.timezone not in pytz.all_timezones_set:
            errors.append(f"Неизвестная временная зона: {self.scheduler.timezone}")

        if self.progression.level_base_exp <= 0:
            errors.append("LEVEL_BASE_EXP должен быть положительным числом")

        thresholds = [threshold for threshold, _ in self.progression.rank_thresholds]
        if thresholds != sorted(thresholds):
            errors.append("Пороги рангов должны идти по возрастанию")

        if self.storage.remote_retries < 0:
            errors.append("REMOTE_RETRIES не может быть отрицательным")

        if errors:
            raise ValueError("Ошибки конфигурации:\n" + "\n".join(f"• {error}" for error in errors))

    def ensure_directories(self):
        """Создание необходимых директорий"""
        directories = [
            self.data_dir,
            self.export_dir,
            self.backup_dir,
            self.log_dir
        ]

        for directory in directories:
            directory.mkdir(parents=True, exist_ok=True)

    def get_logging_config(self) -> Dict[str, Any]:
        """Получение конфигурации логирования"""
        handlers = ['console']
        if self.log_to_file:
            handlers.append('file')

        logging_config = {
            'version': 1,
            'disable_existing_loggers': False,
            'formatters': {
                'default': {
                    'format': self.log_format,
                    'datefmt': '%Y-%m-%d %H:%M:%S'
                }
            },
            'handlers': {
                'console': {
                    'class': 'logging.StreamHandler',
                    'level': self.log_level.value,
                    'formatter': 'default',
                    'stream': sys.stdout
                }
            },
            'loggers': {
                '': {
                    'level': self.log_level.value,
                    'handlers': handlers,
                    'propagate': False
                },
                'aiohttp': {
                    'level': 'WARNING',
                    'handlers': handlers,
                    'propagate': False
                },
                'apscheduler': {
                    'level': 'WARNING',
                    'handlers': handlers,
                    'propagate': False
                },
                'httpx': {
                    'level': 'WARNING',
                    'handlers': handlers,
                    'propagate': False
                },
                'openai': {
                    'level': 'WARNING',
                    'handlers': handlers,
                    'propagate': False
                }
            }
        }

        if self.log_to_file:
            logging_config['handlers']['file'] = {
                'class': 'logging.handlers.RotatingFileHandler',
                'level': self.log_level.value,
                'formatter': 'default',
                'filename': str(self.log_dir / f"systemquest_{self.environment.value}.log"),
                'maxBytes': 10485760,  # 10MB
                'backupCount': 5,
                'encoding': 'utf-8'
            }

        return logging_config

    def is_development(self) -> bool:
        """Проверка режима разработки"""
        return self.environment == Environment.DEVELOPMENT

    def to_dict(self) -> Dict[str, Any]:
        """Сериализация конфигурации в словарь"""
        return {
            'environment': self.environment.value,
            'storage': {
                'data_dir': str(self.storage.data_dir),
                'remote_enabled': bool(self.storage.remote_url),
                'remote_timeout': self.storage.remote_timeout,
                'remote_retries': self.storage.remote_retries
            },
            'scheduler': {
                'clock_tick_seconds': self.scheduler.clock_tick_seconds,
                'reminder_poll_seconds': self.scheduler.reminder_poll_seconds,
                'default_reset_time': self.scheduler.default_reset_time,
                'timezone': self.scheduler.timezone
            },
            'ai_enabled': bool(self.ai.openai_api_key),
            'log_level': self.log_level.value
        }

# Глобальный экземпляр конфигурации
config = AppConfig()

__all__ = [
    'config',
    'AppConfig',
    'Environment',
    'LogLevel',
    'ProgressionConfig',
    'StorageConfig',
    'AIConfig',
    'SchedulerConfig',
    'RESET_TIME_PATTERN'
]
