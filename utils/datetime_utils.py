from datetime import datetime, time, timedelta
from typing import Optional

import pytz

from config import config

# Все метки времени хранятся как naive ISO-строки в локальном времени пользователя

def local_tz():
    return pytz.timezone(config.scheduler.timezone)

def now_local() -> datetime:
    return datetime.now(local_tz()).replace(tzinfo=None, microsecond=0)

def parse_timestamp(value: str) -> datetime:
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is not None:
        dt = dt.astimezone(local_tz()).replace(tzinfo=None)
    return dt

def date_key(dt: datetime) -> str:
    return dt.strftime("%Y-%m-%d")

def parse_clock(value: str) -> time:
    """'HH:MM' -> time"""
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))

def next_occurrence(clock: time, now: datetime) -> datetime:
    """Ближайший момент с указанным временем суток, не раньше now"""
    target = now.replace(hour=clock.hour, minute=clock.minute, second=0, microsecond=0)
    if target < now:
        target += timedelta(days=1)
    return target

def maybe_parse(value: Optional[str]) -> Optional[datetime]:
    return parse_timestamp(value) if value else None
