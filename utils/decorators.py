import functools
import logging
import asyncio
from typing import Tuple, Type

logger = logging.getLogger(__name__)

def retry_on_exception(retries: int = 2, delay: float = 1.0, backoff: float = 2.0,
                       exceptions: Tuple[Type[BaseException], ...] = (Exception,)):
    """
    Повтор async-функции с экспоненциальной задержкой.

    Всего выполняется retries + 1 попыток; после последней исключение
    пробрасывается как есть.
    """
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            wait = delay
            for attempt in range(1, retries + 2):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if attempt > retries:
                        raise
                    logger.warning(f"Попытка {attempt}: {e}. Повтор через {wait:.1f}с")
                    await asyncio.sleep(wait)
                    wait *= backoff
        return wrapper
    return decorator
