# services/scheduler.py

import logging
from typing import Optional

import pytz
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from config import SchedulerConfig, config
from services.session import GameSession

logger = logging.getLogger(__name__)

class SessionScheduler:
    """Периодические задачи сессии: тик часов и опрос напоминаний"""

    def __init__(self, session: GameSession, scheduler_config: Optional[SchedulerConfig] = None,
                 scheduler: Optional[AsyncIOScheduler] = None):
        self.session = session
        self.config = scheduler_config or config.scheduler
        self.scheduler = scheduler or AsyncIOScheduler(timezone=pytz.timezone(self.config.timezone))

    def setup_jobs(self):
        # Пропущенные тики не догоняются: таймеры считают по реальному времени
        self.scheduler.add_job(
            self.session.clock_tick,
            'interval',
            seconds=self.config.clock_tick_seconds,
            id='clock_tick',
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )
        self.scheduler.add_job(
            self.session.reminder_poll,
            'interval',
            seconds=self.config.reminder_poll_seconds,
            id='reminder_poll',
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )

    def start(self):
        self.setup_jobs()
        self.scheduler.start()
        logger.info(
            f"📅 Планировщик запущен: тик {self.config.clock_tick_seconds}с, "
            f"напоминания {self.config.reminder_poll_seconds}с"
        )

    def shutdown(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("📅 Планировщик остановлен")
