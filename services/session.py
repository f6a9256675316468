#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
SystemQuest v1.0 - Game Session
Единственная точка изменения состояния пользователя

Все изменения проходят через один asyncio.Lock. До завершения загрузки
(load + merge) изменения ждут на событии готовности, чтобы поздно
пришедшая загрузка не затёрла действие пользователя. После каждого
изменения сохранение запускается в фоне и не блокирует вызывающего.
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional, Set, Tuple

from core import engine
from core.daily_cycle import DailyCycleController, ResetSummary
from core.intents import apply_intent, UpdateProfile
from core.models import UserProgression, Outcome, DomainEvent
from core.reconcile import merge
from services.ai_service import SystemAssistant, AssistantReply
from services.notifications import EventDispatcher
from services.storage import PersistenceService
from utils.datetime_utils import now_local

logger = logging.getLogger(__name__)

class SessionNotReady(RuntimeError):
    """Снимок ещё не загружен"""
    pass

class GameSession:
    """Сессия одного охотника"""

    def __init__(self, username: str, persistence: PersistenceService,
                 controller: Optional[DailyCycleController] = None,
                 dispatcher: Optional[EventDispatcher] = None,
                 assistant: Optional[SystemAssistant] = None,
                 clock: Callable[[], datetime] = now_local):
        self.username = username
        self.persistence = persistence
        self.controller = controller or DailyCycleController()
        self.dispatcher = dispatcher or EventDispatcher()
        self.assistant = assistant
        self.clock = clock

        self._state: Optional[UserProgression] = None
        self._lock = asyncio.Lock()
        self._ready = asyncio.Event()
        self._background: Set[asyncio.Task] = set()
        self._pending_save: Optional[UserProgression] = None
        self._saver: Optional[asyncio.Task] = None

    @property
    def state(self) -> UserProgression:
        if self._state is None:
            raise SessionNotReady("Сессия ещё не загружена")
        return self._state

    @property
    def ready(self) -> bool:
        return self._ready.is_set()

    # ===== ЗАГРУЗКА =====

    async def start(self) -> UserProgression:
        """Загрузить и слить снимки; до этого изменения не принимаются"""
        async with self._lock:
            self._state = await self.persistence.load(self.username, self.clock())
            self._ready.set()
        logger.info(f"🎮 Сессия {self.username} готова")
        return self._state

    async def sync(self) -> UserProgression:
        """Ручная синхронизация с удалённым хранилищем"""
        await self._ready.wait()
        async with self._lock:
            remote = await self.persistence.fetch_remote(self.username)
            merged = merge(self._state, remote)
            if merged is not self._state:
                self._commit(Outcome(merged))
            else:
                self._schedule_save()
        logger.info(f"🔄 Синхронизация {self.username} завершена")
        return self._state

    # ===== ИЗМЕНЕНИЯ =====

    async def dispatch(self, intent) -> Outcome:
        """
        Применить намерение к текущему снимку.

        Исключения ядра (ValidationError, InvariantViolation) поднимаются
        вызывающему; текущий снимок при этом не меняется.
        """
        await self._ready.wait()
        async with self._lock:
            outcome = apply_intent(intent, self._state, self.clock())
            outcome, retired = self._bind_username(intent, outcome)
            self._commit(outcome)
            if retired is not None:
                await self._drain_saves()
                self.persistence.wipe_local(retired)
        return outcome

    def _bind_username(self, intent, outcome: Outcome) -> Tuple[Outcome, Optional[str]]:
        """
        Снимок хранится под именем сессии.

        Переименование через UpdateProfile переключает сессию на новое имя
        (старый локальный снимок удаляется после сохранения нового). Любая
        другая смена имени, например импорт чужой копии, привязывается
        обратно к имени сессии.
        """
        state = outcome.state
        if state is self._state or state.username == self.username:
            return outcome, None

        if isinstance(intent, UpdateProfile):
            retired = self.username
            self.username = state.username
            logger.info(f"👤 Сессия {retired} переименована в {self.username}")
            return outcome, retired

        rebound = state.copy()
        rebound.username = self.username
        logger.info(f"📥 Снимок {state.username} привязан к охотнику {self.username}")
        return Outcome(rebound, outcome.events), None

    async def clock_tick(self) -> Optional[ResetSummary]:
        """Тик часов: удаление аккаунта, таймеры квестов и ежедневный сброс"""
        if not self.ready:
            return None

        async with self._lock:
            now = self.clock()
            if engine.termination_due(self._state, now):
                await self._terminate(now)
                return ResetSummary(applied=False)

            ticked = engine.tick_timers(self._state, now)
            result = self.controller.check(ticked.state, now)
            self._commit(Outcome(result.outcome.state, ticked.events + result.outcome.events))

        if result.summary.applied and result.summary.missed:
            self._spawn(self._tactical_followup(result.summary))
        return result.summary

    async def trigger_reset(self) -> ResetSummary:
        """Ручной запуск ежедневного сброса"""
        await self._ready.wait()
        async with self._lock:
            result = self.controller.check(self._state, self.clock(), manual=True)
            self._commit(result.outcome)

        if result.summary.applied and result.summary.missed:
            await self._tactical_followup(result.summary)
        return result.summary

    async def reminder_poll(self) -> int:
        if not self.ready:
            return 0
        async with self._lock:
            outcome = engine.poll_reminders(self._state, self.clock())
            self._commit(outcome)
        return len(outcome.events)

    async def ask(self, message: str) -> AssistantReply:
        """Вопрос Системе; вызовы инструментов применяются как намерения"""
        await self._ready.wait()
        if self.assistant is None:
            self.assistant = SystemAssistant()

        reply = await self.assistant.ask(message, engine.prompt_context(self._state), self.clock())
        for intent in reply.intents:
            await self.dispatch(intent)
        return reply

    async def _tactical_followup(self, summary: ResetSummary):
        # Анализ идёт без блокировки, результат применяется к актуальному снимку
        message, extra = await self.controller.analyze_missed(self._state, summary)
        async with self._lock:
            outcome = engine.apply_extra_penalty(
                self._state, extra, message, self.clock(), self.controller.policy
            )
            self._commit(outcome)

    async def _terminate(self, now: datetime):
        """Срок удаления истёк: локальный снимок стирается, охотник начинает заново"""
        self._pending_save = None
        await self._drain_saves()
        self.persistence.wipe_local(self.username)

        self._state = UserProgression.initial(
            self.username, now, reset_time=self.persistence.default_reset_time
        )
        self.dispatcher.dispatch([DomainEvent("terminated", "Аккаунт удалён", self.username, "fail")])
        logger.warning(f"☠️ Аккаунт {self.username} удалён")
        self._schedule_save()

    # ===== СОХРАНЕНИЕ =====

    def _commit(self, outcome: Outcome):
        if outcome.events:
            self.dispatcher.dispatch(outcome.events)
        if outcome.state is self._state:
            return
        self._state = outcome.state
        self._schedule_save()

    def _schedule_save(self):
        # Сохранения идут по одному; ожидающим остаётся только последний снимок
        self._pending_save = self._state
        if self._saver is None or self._saver.done():
            self._saver = self._spawn(self._save_pending())

    async def _save_pending(self):
        while self._pending_save is not None:
            state, self._pending_save = self._pending_save, None
            await self.persistence.save(state)

    async def _drain_saves(self):
        if self._saver is not None and not self._saver.done():
            await asyncio.gather(self._saver, return_exceptions=True)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)
        return task

    def _on_background_done(self, task: asyncio.Task):
        self._background.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"❌ Ошибка фоновой задачи сессии: {error}")

    async def flush(self):
        """Дождаться всех фоновых сохранений"""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def close(self):
        await self.flush()
        await self.persistence.close()
        logger.info(f"👋 Сессия {self.username} закрыта")
