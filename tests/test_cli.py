import json

import pytest

import main
from config import config

@pytest.fixture(autouse=True)
def isolated_dirs(monkeypatch, tmp_path):
    monkeypatch.setattr(config, "data_dir", tmp_path / "data")
    monkeypatch.setattr(config, "export_dir", tmp_path / "exports")
    monkeypatch.setattr(config, "backup_dir", tmp_path / "backups")
    monkeypatch.setattr(config, "log_dir", tmp_path / "logs")
    monkeypatch.setattr(config.storage, "data_dir", tmp_path / "data")
    monkeypatch.setattr(config.storage, "export_dir", tmp_path / "exports")
    monkeypatch.setattr(config.storage, "backup_dir", tmp_path / "backups")
    monkeypatch.setattr(config.storage, "remote_url", None)
    monkeypatch.setattr(config.ai, "openai_api_key", None)
    return tmp_path

def test_add_and_complete(capsys):
    assert main.main(["--user", "Jinwoo", "add-task", "Отжимания", "--exp", "20"]) == 0
    created = capsys.readouterr().out
    task_prefix = created.split("Квест создан: ")[1].split()[0]

    assert main.main(["--user", "Jinwoo", "complete", task_prefix]) == 0
    out = capsys.readouterr().out
    assert "✅" in out
    assert "EXP 20/100" in out

def test_unknown_task(capsys):
    assert main.main(["--user", "Jinwoo", "complete", "zzz"]) == 1
    assert "не найден" in capsys.readouterr().out

def test_import_requires_confirmation(capsys, tmp_path):
    path = tmp_path / "backup.json"
    path.write_text(json.dumps({"username": "Jinwoo", "level": 7}), encoding="utf-8")

    assert main.main(["--user", "Jinwoo", "import", str(path)]) == 1
    assert main.main(["--user", "Jinwoo", "import", str(path), "--yes"]) == 0
    assert "Уровень 7" in capsys.readouterr().out

def test_export(isolated_dirs, capsys):
    assert main.main(["--user", "Jinwoo", "export", "--format", "csv"]) == 0
    assert list((isolated_dirs / "exports").glob("*.csv"))
