# services/__init__.py

"""
Модуль сервисов SystemQuest v1.0

Персистентность, AI-коллабораторы, уведомления, сессия и планировщик
поверх чистого ядра прогрессии.
"""

from .storage import PersistenceService, LocalMirror, RemoteBlobStore, RemoteUnavailable
from .ai_service import TacticalAnalyst, SystemAssistant, ToolCallRouter, AIServiceError
from .notifications import EventDispatcher, NotificationSink, SoundPlayer
from .session import GameSession

__all__ = [
    'PersistenceService',
    'LocalMirror',
    'RemoteBlobStore',
    'RemoteUnavailable',
    'TacticalAnalyst',
    'SystemAssistant',
    'ToolCallRouter',
    'AIServiceError',
    'EventDispatcher',
    'NotificationSink',
    'SoundPlayer',
    'GameSession',
]
