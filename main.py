#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
SystemQuest v1.0 - консольный клиент
Прогрессия охотника: квесты, уровни, ранги, ежедневный сброс

Команды:
    run         сессия с планировщиком до Ctrl+C
    status      текущий профиль и квесты
    add-task    новый квест
    complete    выполнить квест
    fail        провалить квест
    progress    записать повторения
    timer       запустить/остановить таймер квеста
    reset       ручной ежедневный сброс
    sync        синхронизация с удалённым хранилищем
    export      экспорт в JSON или CSV
    import      импорт резервной копии (нужен --yes)
    ask         вопрос Системе
    terminate   удаление аккаунта с обратным отсчётом (--cancel для отмены)
"""

import argparse
import asyncio
import logging
import logging.config
import signal
import sys
from pathlib import Path

from config import config
from core.daily_cycle import DailyCycleController
from core.intents import (
    AddTask, CompleteTask, FailTask, RecordProgress, ToggleTimer, ImportSnapshot, StartTermination, CancelTermination
)
from core.models import (
    TaskType, TaskCategory, TaskDifficulty, TaskRepeat, TaskState, ValidationError, InvariantViolation
)
from core.engine import termination_remaining
from core.progression import level_threshold
from services.ai_service import TacticalAnalyst
from services.notifications import EventDispatcher, NotificationSink, SoundPlayer
from services.scheduler import SessionScheduler
from services.session import GameSession
from services.storage import PersistenceService
from utils.datetime_utils import now_local
from utils.logger import setup_logger

logger = logging.getLogger(__name__)

def build_session(username: str) -> GameSession:
    """Собрать сессию со всеми коллабораторами"""
    config.ensure_directories()
    analyst = TacticalAnalyst() if config.ai.tactical_analysis_enabled else None
    return GameSession(
        username,
        PersistenceService(),
        controller=DailyCycleController(analyst=analyst, analysis_timeout=config.ai.request_timeout),
        dispatcher=EventDispatcher([NotificationSink(), SoundPlayer()])
    )

def print_status(state):
    print(f"👤 {state.username} [{state.selected_title}]")
    print(f"⚔️ Ранг {state.rank} | Уровень {state.level} | EXP {state.current_exp}/{level_threshold(state.level)}")
    print(f"🔥 Streak: {state.streak} | Очки характеристик: {state.stat_points}")
    print("📊 " + ", ".join(f"{name.upper()} {value}" for name, value in state.stats.items()))
    print(f"🔔 Непрочитанных уведомлений: {state.unread_count}")
    remaining = termination_remaining(state, now_local())
    if remaining is not None:
        print(f"☠️ Удаление аккаунта через {remaining} с")
    if not state.tasks:
        print("📜 Квестов нет")
    for task in state.tasks:
        mark = "✅" if task.completed else ("❌" if task.state == TaskState.FAILED.value else "⭕")
        progress = ""
        if task.task_type == TaskType.REPS.value:
            progress = f" {task.reps_done}/{task.reps_target}"
        elif task.task_type == TaskType.DURATION.value:
            progress = f" {task.remaining_seconds}с ({task.timer_state})"
        print(f"{mark} {task.task_id[:8]} {task.name}{progress} [{task.repeat}]")

def resolve_task_id(session: GameSession, prefix: str) -> str:
    matches = [t.task_id for t in session.state.tasks if t.task_id.startswith(prefix)]
    if len(matches) != 1:
        raise ValidationError(f"Квест {prefix!r} не найден или неоднозначен")
    return matches[0]

# ===== КОМАНДЫ =====

async def cmd_run(session: GameSession, args):
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, stop.set)
        except NotImplementedError:
            pass

    scheduler = SessionScheduler(session)
    scheduler.start()
    logger.info("🚀 SystemQuest запущен. Ctrl+C для выхода")
    try:
        await stop.wait()
    finally:
        scheduler.shutdown()

async def cmd_status(session: GameSession, args):
    print_status(session.state)

async def cmd_add_task(session: GameSession, args):
    outcome = await session.dispatch(AddTask(
        name=args.name,
        task_type=args.type,
        category=args.category,
        difficulty=args.difficulty,
        repeat=args.repeat,
        reps_target=args.reps,
        duration_seconds=args.duration,
        exp_value=args.exp
    ))
    task = outcome.state.tasks[-1]
    print(f"📜 Квест создан: {task.task_id[:8]} {task.name}")

async def cmd_complete(session: GameSession, args):
    await session.dispatch(CompleteTask(resolve_task_id(session, args.task_id)))
    print_status(session.state)

async def cmd_fail(session: GameSession, args):
    await session.dispatch(FailTask(resolve_task_id(session, args.task_id)))
    print_status(session.state)

async def cmd_progress(session: GameSession, args):
    await session.dispatch(RecordProgress(resolve_task_id(session, args.task_id), args.reps))
    print_status(session.state)

async def cmd_timer(session: GameSession, args):
    await session.dispatch(ToggleTimer(resolve_task_id(session, args.task_id)))
    print_status(session.state)

async def cmd_reset(session: GameSession, args):
    summary = await session.trigger_reset()
    if not summary.applied:
        print("ℹ️ Сброс сегодня уже выполнен")
        return
    print(f"🌅 Сброс: пропущено {summary.missed}, -{summary.exp_lost} EXP, streak {summary.streak}")

async def cmd_sync(session: GameSession, args):
    state = await session.sync()
    print(f"🔄 Синхронизировано: уровень {state.level}, ранг {state.rank}")

async def cmd_export(session: GameSession, args):
    path = session.persistence.export_backup(session.state, format=args.format)
    print(f"📤 {path}")

async def cmd_import(session: GameSession, args):
    if not args.yes:
        raise ValidationError("Импорт полностью заменит прогресс. Подтвердите флагом --yes")
    data = session.persistence.import_backup(Path(args.path))
    await session.dispatch(ImportSnapshot(data))
    print_status(session.state)

async def cmd_terminate(session: GameSession, args):
    if args.cancel:
        await session.dispatch(CancelTermination())
        print("🛡 Удаление аккаунта отменено")
        return
    path = session.persistence.export_backup(session.state, format="json")
    print(f"📤 Резервная копия: {path}")
    await session.dispatch(StartTermination())
    print_status(session.state)

async def cmd_ask(session: GameSession, args):
    reply = await session.ask(" ".join(args.message))
    print(f"🛰 {reply.text}")

COMMANDS = {
    "run": cmd_run,
    "status": cmd_status,
    "add-task": cmd_add_task,
    "complete": cmd_complete,
    "fail": cmd_fail,
    "progress": cmd_progress,
    "timer": cmd_timer,
    "reset": cmd_reset,
    "sync": cmd_sync,
    "export": cmd_export,
    "import": cmd_import,
    "ask": cmd_ask,
    "terminate": cmd_terminate,
}

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="systemquest", description="SystemQuest - прогрессия охотника")
    parser.add_argument('--user', default="Hunter", help='Имя охотника (по умолчанию Hunter)')
    parser.add_argument('--log-file', help='Дополнительно писать лог в файл')
    parser.add_argument('--dev', action='store_true', help='Режим отладки')

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("run", help="Запустить сессию с планировщиком")
    sub.add_parser("status", help="Профиль и квесты")

    add = sub.add_parser("add-task", help="Новый квест")
    add.add_argument("name")
    add.add_argument("--type", choices=[t.value for t in TaskType], default=TaskType.CHECKBOX.value)
    add.add_argument("--category", choices=[c.value for c in TaskCategory], default=TaskCategory.PERSONAL.value)
    add.add_argument("--difficulty", choices=[d.value for d in TaskDifficulty], default=TaskDifficulty.NORMAL.value)
    add.add_argument("--repeat", choices=[r.value for r in TaskRepeat], default=TaskRepeat.DAILY.value)
    add.add_argument("--reps", type=int, default=0)
    add.add_argument("--duration", type=int, default=0, help="Длительность в секундах")
    add.add_argument("--exp", type=int, default=10)

    for name, help_text in (("complete", "Выполнить квест"), ("fail", "Провалить квест"),
                            ("timer", "Запустить/остановить таймер")):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("task_id", help="ID квеста или его префикс")

    progress = sub.add_parser("progress", help="Записать повторения")
    progress.add_argument("task_id")
    progress.add_argument("reps", type=int)

    sub.add_parser("reset", help="Ручной ежедневный сброс")
    sub.add_parser("sync", help="Синхронизация с удалённым хранилищем")

    export = sub.add_parser("export", help="Экспорт данных")
    export.add_argument("--format", choices=["json", "csv"], default="json")

    imp = sub.add_parser("import", help="Импорт резервной копии")
    imp.add_argument("path")
    imp.add_argument("--yes", action="store_true", help="Подтвердить замену прогресса")

    terminate = sub.add_parser("terminate", help="Удалить аккаунт (обратный отсчёт идёт в режиме run)")
    terminate.add_argument("--cancel", action="store_true", help="Отменить удаление")

    ask = sub.add_parser("ask", help="Вопрос Системе")
    ask.add_argument("message", nargs="+")
    return parser

async def run_command(args) -> int:
    session = build_session(args.user)
    try:
        await session.start()
        await COMMANDS[args.command](session, args)
        return 0
    except (ValidationError, InvariantViolation) as e:
        print(f"❌ {e}")
        return 1
    finally:
        await session.close()

def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    logging.config.dictConfig(config.get_logging_config())
    if args.dev:
        logging.getLogger().setLevel(logging.DEBUG)
    if args.log_file:
        setup_logger(args.log_file, level=logging.getLogger().level)
    if config.is_development():
        logger.debug(f"⚙️ Конфигурация: {config.to_dict()}")

    try:
        return asyncio.run(run_command(args))
    except KeyboardInterrupt:
        logger.info("👋 Сессия остановлена пользователем")
        return 0

if __name__ == "__main__":
    sys.exit(main())
