"""
Сервис уведомлений

События ядра (DomainEvent) расходятся по получателям: уведомления
устройства и звуковые эффекты. Это fire-and-forget: сбой получателя
логируется и не влияет на состояние.
"""

import logging
from collections import deque
from typing import Deque, Iterable, List, Optional, Protocol

from core.models import DomainEvent

logger = logging.getLogger(__name__)

class EventSink(Protocol):
    def handle(self, event: DomainEvent) -> None:
        ...

class NotificationSink:
    """Уведомления устройства; в консольном режиме - запись в лог"""

    def __init__(self, history_size: int = 50):
        self.delivered: Deque[DomainEvent] = deque(maxlen=history_size)

    def handle(self, event: DomainEvent) -> None:
        logger.info(f"📣 {event.title}: {event.body}")
        self.delivered.append(event)

class SoundPlayer:
    """Звуковые эффекты: только контракт "воспроизвести звук X" """

    SOUNDS = ("click", "success", "level_up", "rank_up", "warning", "fail", "notification")

    def __init__(self, enabled: bool = True, history_size: int = 50):
        self.enabled = enabled
        self.played: Deque[str] = deque(maxlen=history_size)

    def handle(self, event: DomainEvent) -> None:
        if not self.enabled or not event.sound:
            return
        if event.sound not in self.SOUNDS:
            logger.debug(f"🔇 Неизвестный звук: {event.sound}")
            return
        logger.debug(f"🔊 {event.sound}")
        self.played.append(event.sound)

class EventDispatcher:
    """Рассылка событий всем получателям"""

    def __init__(self, sinks: Optional[List[EventSink]] = None):
        self.sinks: List[EventSink] = list(sinks or [])
        self.failed_deliveries = 0

    def add_sink(self, sink: EventSink):
        self.sinks.append(sink)

    def dispatch(self, events: Iterable[DomainEvent]) -> None:
        for event in events:
            for sink in self.sinks:
                try:
                    sink.handle(event)
                except Exception as e:
                    self.failed_deliveries += 1
                    logger.warning(f"⚠️ Ошибка доставки события {event.kind} в {type(sink).__name__}: {e}")
