# services/storage.py

import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional, Any
from urllib.parse import quote

import aiohttp
import pandas as pd
from pydantic import ValidationError as PydanticValidationError

from config import StorageConfig, config
from core.models import UserProgression, ValidationError
from core.reconcile import merge
from services.schemas import BackupFile, BackupPayload
from utils.datetime_utils import now_local
from utils.decorators import retry_on_exception

logger = logging.getLogger(__name__)

EXPORT_VERSION = "1.0"

class RemoteUnavailable(Exception):
    """Удалённое хранилище временно недоступно"""
    pass

# ===== КОДЕК СНИМКА =====

def encode_snapshot(state: UserProgression) -> bytes:
    return json.dumps(state.to_dict(), ensure_ascii=False).encode('utf-8')

def decode_snapshot(raw: bytes) -> Optional[UserProgression]:
    """Разобрать снимок; повреждённые данные дают None, а не исключение"""
    try:
        return UserProgression.from_dict(json.loads(raw.decode('utf-8')))
    except ValueError as e:
        logger.warning(f"⚠️ Не удалось разобрать снимок: {e}")
        return None

# ===== ЛОКАЛЬНОЕ ЗЕРКАЛО =====

class LocalMirror:
    """Синхронное локальное хранилище: один JSON-файл на пользователя"""

    def __init__(self, data_dir: Path, backup_dir: Path, key_suffix: str):
        self.data_dir = Path(data_dir)
        self.backup_dir = Path(backup_dir)
        self.key_suffix = key_suffix

    def path_for(self, username: str) -> Path:
        return self.data_dir / f"{username}_{self.key_suffix}.json"

    def read(self, username: str) -> Optional[UserProgression]:
        path = self.path_for(username)
        if not path.exists():
            logger.info(f"📂 Локальный снимок {path.name} не найден")
            return None

        state = decode_snapshot(path.read_bytes())
        if state is None:
            self._quarantine(path)
        return state

    def write(self, state: UserProgression) -> Path:
        """Атомарная запись через временный файл"""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        path = self.path_for(state.username)
        temp_file = path.with_suffix('.tmp')
        temp_file.write_bytes(encode_snapshot(state))
        temp_file.replace(path)
        return path

    def delete(self, username: str) -> bool:
        path = self.path_for(username)
        if not path.exists():
            return False
        path.unlink()
        return True

    def _quarantine(self, path: Path):
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        backup_path = self.backup_dir / f"corrupted_{datetime.now().strftime('%Y%m%d_%H%M%S')}_{path.name}"
        path.replace(backup_path)
        logger.warning(f"🔄 Повреждённый файл перемещён в {backup_path}")

# ===== УДАЛЁННОЕ ХРАНИЛИЩЕ =====

class RemoteBlobStore:
    """
    Key-value хранилище поверх HTTP: GET/PUT {base_url}/{key}.

    404 означает отсутствие данных. Сетевые ошибки, таймауты и ответы 5xx
    повторяются с экспоненциальной задержкой, затем поднимается
    RemoteUnavailable.
    """

    def __init__(self, base_url: str, timeout: float = 5.0, retries: int = 2, backoff: float = 1.0,
                 session: Optional[aiohttp.ClientSession] = None):
        self.base_url = base_url.rstrip('/')
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

        retry = retry_on_exception(retries=retries, delay=backoff, exceptions=(RemoteUnavailable,))
        self._get = retry(self._get_once)
        self._put = retry(self._put_once)

    def url_for(self, key: str) -> str:
        return f"{self.base_url}/{quote(key, safe='')}"

    def _client(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def _get_once(self, key: str) -> Optional[bytes]:
        try:
            async with self._client().get(self.url_for(key), timeout=self.timeout) as response:
                if response.status == 404:
                    return None
                if response.status >= 500:
                    raise RemoteUnavailable(f"HTTP {response.status}")
                response.raise_for_status()
                return await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RemoteUnavailable(str(e) or type(e).__name__) from e

    async def _put_once(self, key: str, data: bytes) -> None:
        try:
            async with self._client().put(
                self.url_for(key), data=data, timeout=self.timeout,
                headers={'Content-Type': 'application/json'}
            ) as response:
                if response.status >= 500:
                    raise RemoteUnavailable(f"HTTP {response.status}")
                response.raise_for_status()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RemoteUnavailable(str(e) or type(e).__name__) from e

    async def get(self, key: str) -> Optional[bytes]:
        return await self._get(key)

    async def put(self, key: str, data: bytes) -> None:
        await self._put(key, data)

    async def close(self):
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()

# ===== СЕРВИС ПЕРСИСТЕНТНОСТИ =====

class PersistenceService:
    """
    Локальное зеркало + необязательное удалённое хранилище.

    Сохранение: локальная запись синхронно, удалённая - best-effort.
    Загрузка: локальный и удалённый снимки сливаются через merge().
    """

    def __init__(self, storage: Optional[StorageConfig] = None,
                 remote: Optional[RemoteBlobStore] = None,
                 default_reset_time: Optional[str] = None):
        self.storage = storage or config.storage
        self.mirror = LocalMirror(self.storage.data_dir, self.storage.backup_dir, self.storage.key_suffix)
        if remote is None and self.storage.remote_url:
            remote = RemoteBlobStore(
                self.storage.remote_url,
                timeout=self.storage.remote_timeout,
                retries=self.storage.remote_retries,
                backoff=self.storage.remote_backoff
            )
        self.remote = remote
        self.default_reset_time = default_reset_time or config.scheduler.default_reset_time

        self.total_saves = 0
        self.failed_remote_saves = 0

    def key_for(self, username: str) -> str:
        return f"{username}_{self.storage.key_suffix}"

    # ===== СОХРАНЕНИЕ =====

    def save_local(self, state: UserProgression) -> bool:
        try:
            self.mirror.write(state)
            return True
        except OSError as e:
            logger.error(f"❌ Ошибка локального сохранения: {e}")
            return False

    async def push_remote(self, state: UserProgression) -> bool:
        """Ошибка удалённой записи логируется и не поднимается"""
        if self.remote is None:
            return False
        try:
            await self.remote.put(self.key_for(state.username), encode_snapshot(state))
            logger.debug(f"☁️ Снимок {state.username} отправлен в удалённое хранилище")
            return True
        except RemoteUnavailable as e:
            self.failed_remote_saves += 1
            logger.warning(f"⚠️ Удалённое хранилище недоступно, повтор при следующем сохранении: {e}")
            return False

    async def save(self, state: UserProgression) -> bool:
        self.total_saves += 1
        saved = self.save_local(state)
        await self.push_remote(state)
        return saved

    def wipe_local(self, username: str) -> bool:
        """Удалить локальный снимок пользователя"""
        try:
            removed = self.mirror.delete(username)
        except OSError as e:
            logger.error(f"❌ Не удалось удалить локальный снимок {username}: {e}")
            return False
        if removed:
            logger.warning(f"🗑 Локальный снимок {username} удалён")
        return removed

    # ===== ЗАГРУЗКА =====

    async def fetch_remote(self, username: str) -> Optional[UserProgression]:
        if self.remote is None:
            return None
        try:
            raw = await self.remote.get(self.key_for(username))
        except RemoteUnavailable as e:
            logger.warning(f"⚠️ Удалённое хранилище недоступно, используется локальный снимок: {e}")
            return None
        if raw is None:
            logger.info(f"☁️ Удалённого снимка для {username} нет")
            return None
        return decode_snapshot(raw)

    async def load(self, username: str, now: Optional[datetime] = None) -> UserProgression:
        """Загрузить и слить локальный и удалённый снимки"""
        now = now or now_local()
        local = self.mirror.read(username)
        remote = await self.fetch_remote(username)

        if local is None and remote is None:
            logger.info(f"🆕 Новый охотник: {username}")
            state = UserProgression.initial(username, now, reset_time=self.default_reset_time)
        elif local is None:
            state = remote
        else:
            state = merge(local, remote)

        self.save_local(state)
        logger.info(f"📂 Снимок {username} загружен: уровень {state.level}, ранг {state.rank}")
        return state

    async def close(self):
        if self.remote is not None:
            await self.remote.close()

    # ===== ЭКСПОРТ / ИМПОРТ =====

    def export_backup(self, state: UserProgression, format: str = "json",
                      now: Optional[datetime] = None) -> Path:
        """Экспорт снимка в JSON или аналитики в CSV"""
        now = now or now_local()
        self.storage.export_dir.mkdir(parents=True, exist_ok=True)
        stamp = now.strftime('%Y%m%d_%H%M%S')

        if format.lower() == "json":
            export_data = {
                "export_info": {
                    "format": "json",
                    "version": EXPORT_VERSION,
                    "exported_at": now.isoformat(),
                    "username": state.username
                },
                "user_data": state.to_dict()
            }
            path = self.storage.export_dir / f"systemquest_{state.username}_{stamp}.json"
            path.write_text(json.dumps(export_data, ensure_ascii=False, indent=2), encoding='utf-8')

        elif format.lower() == "csv":
            columns = ["date", "exp_earned", "tasks_completed", "efficiency"]
            df = pd.DataFrame([entry.to_dict() for entry in state.analytics_history], columns=columns)
            path = self.storage.export_dir / f"systemquest_{state.username}_analytics_{stamp}.csv"
            df.to_csv(path, index=False)

        else:
            raise ValidationError(f"Неподдерживаемый формат экспорта: {format}")

        logger.info(f"📤 Экспорт {format} для {state.username}: {path}")
        return path

    def import_backup(self, path: Path) -> Dict[str, Any]:
        """
        Прочитать и проверить резервную копию.

        Принимает как файл экспорта (с export_info), так и голый снимок.
        Возвращает словарь снимка для ImportSnapshot.
        """
        try:
            data = json.loads(Path(path).read_text(encoding='utf-8'))
        except (OSError, ValueError) as e:
            raise ValidationError(f"Не удалось прочитать резервную копию: {e}") from e

        try:
            if isinstance(data, dict) and "user_data" in data:
                payload = BackupFile.model_validate(data).user_data
            else:
                payload = BackupPayload.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(f"Несовместимый формат данных: {e.errors()[0]['msg']}") from e

        logger.info(f"📥 Резервная копия {Path(path).name} прошла проверку")
        return payload.as_snapshot()
