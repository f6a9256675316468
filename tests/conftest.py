from datetime import datetime, timedelta

import pytest

from config import ProgressionConfig, StorageConfig
from core.models import UserProgression

NOW = datetime(2025, 6, 10, 12, 0, 0)

@pytest.fixture
def now():
    return NOW

@pytest.fixture
def policy():
    return ProgressionConfig()

@pytest.fixture
def hunter(now):
    """Свежий охотник, последний сброс был вчера"""
    return UserProgression.initial("Jinwoo", now - timedelta(days=1), reset_time="00:00")

@pytest.fixture
def storage_config(tmp_path):
    return StorageConfig(
        data_dir=tmp_path / "data",
        backup_dir=tmp_path / "backups",
        export_dir=tmp_path / "exports",
        remote_backoff=0.01
    )

