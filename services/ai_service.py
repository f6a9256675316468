"""
Сервис для работы с OpenAI API

TacticalAnalyst формулирует штрафное сообщение после ежедневного сброса,
SystemAssistant отвечает на вопросы охотника и может вызывать инструменты
(create_reminder, send_system_notification), которые ToolCallRouter
превращает в намерения ядра.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from typing import Any, Dict, List, Optional, Tuple, Union

from openai import AsyncOpenAI, OpenAIError
from pydantic import ValidationError as PydanticValidationError

from config import AIConfig, config
from core.daily_cycle import ResetSummary, fallback_penalty_message
from core.intents import ScheduleReminder, SendNotification
from core.models import NotificationCategory
from services.schemas import CreateReminderArgs, SystemNotificationArgs, TacticalReply
from utils.datetime_utils import next_occurrence

logger = logging.getLogger(__name__)

DEFAULT_REMINDER_DELAY_MINUTES = 5

EXACT_TIME_PATTERN = re.compile(r"(\d{1,2})(?::(\d{2}))?\s*(am|pm)?", re.IGNORECASE)

class AIServiceError(Exception):
    """Ошибка запроса к AI или неверный ответ"""
    pass

def _create_client(ai_config: AIConfig) -> Optional[AsyncOpenAI]:
    if not ai_config.openai_api_key:
        logger.warning("⚠️ AI сервис отключен (нет OPENAI_API_KEY)")
        return None
    client = AsyncOpenAI(api_key=ai_config.openai_api_key, timeout=ai_config.request_timeout)
    logger.info("🤖 AI сервис инициализирован")
    return client

# ===== ВРЕМЯ НАПОМИНАНИЙ =====

def parse_exact_time(text: str, now: datetime) -> Optional[datetime]:
    """
    "5am", "10:30 PM", "17:45" -> ближайший такой момент.

    Если время сегодня уже прошло, напоминание переносится на завтра.
    """
    match = EXACT_TIME_PATTERN.search(text or "")
    if not match:
        return None

    hours = int(match.group(1))
    minutes = int(match.group(2) or 0)
    meridiem = (match.group(3) or "").lower()

    if meridiem == "pm" and hours < 12:
        hours += 12
    if meridiem == "am" and hours == 12:
        hours = 0
    if hours > 23 or minutes > 59:
        return None

    return next_occurrence(time(hours, minutes), now)

def reminder_target(args: CreateReminderArgs, now: datetime) -> datetime:
    if args.exact_time_string:
        parsed = parse_exact_time(args.exact_time_string, now)
        if parsed is not None:
            return parsed
        return now + timedelta(minutes=args.time_delay_minutes or 0)
    delay = args.time_delay_minutes if args.time_delay_minutes else DEFAULT_REMINDER_DELAY_MINUTES
    return now + timedelta(minutes=delay)

# ===== МАРШРУТИЗАЦИЯ ИНСТРУМЕНТОВ =====

TOOLS = [
    {
        "type": "function",
        "function": {
            "name": "create_reminder",
            "description": "Запланировать будущее напоминание для охотника.",
            "parameters": {
                "type": "object",
                "properties": {
                    "message": {"type": "string", "description": "Текст напоминания."},
                    "time_delay_minutes": {"type": "number", "description": "Через сколько минут сработать."},
                    "exact_time_string": {"type": "string", "description": "Точное время, например \"5am\" или \"10:30 PM\"."}
                },
                "required": ["message"]
            }
        }
    },
    {
        "type": "function",
        "function": {
            "name": "send_system_notification",
            "description": "Немедленно отправить системное уведомление охотнику.",
            "parameters": {
                "type": "object",
                "properties": {
                    "message": {"type": "string", "description": "Текст уведомления."}
                },
                "required": ["message"]
            }
        }
    }
]

Intent = Union[ScheduleReminder, SendNotification]

class ToolCallRouter:
    """Вызов инструмента AI -> намерение ядра"""

    def route(self, name: str, arguments: Union[str, Dict[str, Any]], now: datetime) -> Optional[Intent]:
        try:
            if isinstance(arguments, str):
                arguments = json.loads(arguments or "{}")

            if name == "create_reminder":
                args = CreateReminderArgs.model_validate(arguments)
                return ScheduleReminder(message=args.message, target=reminder_target(args, now))

            if name == "send_system_notification":
                args = SystemNotificationArgs.model_validate(arguments)
                return SendNotification(message=args.message, category=NotificationCategory.SYSTEM_ALERT.value)

        except (ValueError, PydanticValidationError) as e:
            raise AIServiceError(f"Неверные аргументы инструмента {name}: {e}") from e

        logger.warning(f"⚠️ Неизвестный инструмент AI: {name}")
        return None

# ===== ТАКТИЧЕСКИЙ АНАЛИЗ =====

class TacticalAnalyst:
    """Штрафное сообщение и дополнительный штраф после пропущенного дня"""

    def __init__(self, ai_config: Optional[AIConfig] = None, client: Optional[AsyncOpenAI] = None):
        self.config = ai_config or config.ai
        self.client = client if client is not None else _create_client(self.config)
        self.enabled = self.config.tactical_analysis_enabled and self.client is not None

    def _build_prompt(self, summary: ResetSummary, context: Dict[str, Any]) -> str:
        missed = ", ".join(summary.missed_names) or "нет данных"
        return f"""Охотник {context.get('username')} (ранг {context.get('rank')}, уровень {context.get('level')})
провалил ежедневные квесты.

- Пропущено квестов: {summary.missed} ({missed})
- Потеряно EXP: {summary.exp_lost}
- Streak обнулён
- Характеристики: {json.dumps(context.get('stats', {}), ensure_ascii=False)}

Ответь JSON-объектом {{"message": "...", "extra_penalty": N}}, где message -
короткое холодное сообщение Системы, а extra_penalty - дополнительный
штраф EXP (целое число от 0 до {config.progression.max_extra_penalty})."""

    async def analyze(self, summary: ResetSummary, context: Dict[str, Any]) -> Tuple[str, int]:
        if not self.enabled:
            return fallback_penalty_message(summary), 0

        try:
            response = await self.client.chat.completions.create(
                model=self.config.openai_model,
                messages=[
                    {"role": "system", "content": "Ты - Система. Говори холодно и властно, по-русски."},
                    {"role": "user", "content": self._build_prompt(summary, context)}
                ],
                max_tokens=self.config.openai_max_tokens,
                temperature=0.7,
                response_format={"type": "json_object"}
            )
            content = response.choices[0].message.content or ""
            reply = TacticalReply.model_validate_json(content)
        except OpenAIError as e:
            raise AIServiceError(f"Ошибка AI запроса: {e}") from e
        except PydanticValidationError as e:
            raise AIServiceError(f"Неверный ответ тактического анализа: {e}") from e

        logger.info(f"🛰 Тактический анализ: доп. штраф {reply.extra_penalty}")
        return reply.message.strip(), reply.extra_penalty

# ===== ЧАТ С СИСТЕМОЙ =====

FALLBACK_REPLY = "[СБОЙ]: Связь с Системой прервана. Повторите запрос позже."

@dataclass
class AssistantReply:
    text: str
    intents: List[Intent] = field(default_factory=list)

class SystemAssistant:
    """Ответы Системы на вопросы охотника"""

    def __init__(self, ai_config: Optional[AIConfig] = None, client: Optional[AsyncOpenAI] = None,
                 router: Optional[ToolCallRouter] = None):
        self.config = ai_config or config.ai
        self.client = client if client is not None else _create_client(self.config)
        self.router = router or ToolCallRouter()
        self.enabled = self.client is not None

    def _get_system_prompt(self, context: Dict[str, Any], now: datetime) -> str:
        tasks = "\n".join(
            f"- {t['name']} ({t['category']}, {t['type']})" for t in context.get("active_tasks", [])
        ) or "- нет активных квестов"
        return f"""Ты - "Система", административный интерфейс, направляющий охотника.
Тон холодный и точный. Обращайся к пользователю "Охотник".
Используй инструменты create_reminder и send_system_notification, когда охотник
просит напомнить или уведомить.

[ДАННЫЕ ОХОТНИКА]
Имя: {context.get('username')}
Ранг: {context.get('rank')}, уровень {context.get('level')}
Титул: {context.get('title')}
Streak: {context.get('streak')}
Текущее время: {now.strftime('%H:%M')}

[АКТИВНЫЕ КВЕСТЫ]
{tasks}"""

    async def ask(self, message: str, context: Dict[str, Any], now: datetime) -> AssistantReply:
        if not self.enabled:
            return AssistantReply(FALLBACK_REPLY)

        try:
            response = await self.client.chat.completions.create(
                model=self.config.openai_model,
                messages=[
                    {"role": "system", "content": self._get_system_prompt(context, now)},
                    {"role": "user", "content": message}
                ],
                tools=TOOLS,
                max_tokens=self.config.openai_max_tokens,
                temperature=0.7
            )
        except OpenAIError as e:
            logger.error(f"❌ Ошибка AI запроса: {e}")
            return AssistantReply(FALLBACK_REPLY)

        choice = response.choices[0].message
        intents: List[Intent] = []
        for call in choice.tool_calls or []:
            try:
                intent = self.router.route(call.function.name, call.function.arguments, now)
            except AIServiceError as e:
                logger.warning(f"⚠️ {e}")
                continue
            if intent is not None:
                intents.append(intent)

        text = (choice.content or "").strip()
        if not text:
            text = "[УВЕДОМЛЕНИЕ]: Протокол принят." if intents else FALLBACK_REPLY
        return AssistantReply(text, intents)
