"""
Tests for settings loading and engine options.
"""

import json

import pytest
from pydantic import ValidationError as SettingsValidationError

from eduassess.config import CONFIG_PATH_ENV, Settings, load_settings
from eduassess.database.init_db import get_engine_kwargs


def test_defaults():
    settings = Settings()
    assert settings.DATABASE_URL.startswith("sqlite+aiosqlite")
    assert settings.SUBMISSION_GRACE_SECONDS == 60
    assert settings.API_PREFIX == "/api/v1"


def test_yaml_overlay(tmp_path, monkeypatch):
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    config_file = tmp_path / "eduassess.yaml"
    config_file.write_text("log_level: debug\nsubmission_grace_seconds: 5\n")
    settings = load_settings(str(config_file))
    assert settings.LOG_LEVEL == "DEBUG"
    assert settings.SUBMISSION_GRACE_SECONDS == 5


def test_environment_wins_over_file(tmp_path, monkeypatch):
    config_file = tmp_path / "eduassess.json"
    config_file.write_text(json.dumps({"DB_POOL_SIZE": 3, "PROJECT_NAME": "From file"}))
    monkeypatch.setenv("DB_POOL_SIZE", "12")
    monkeypatch.setenv(CONFIG_PATH_ENV, str(config_file))
    settings = load_settings()
    assert settings.DB_POOL_SIZE == 12
    assert settings.PROJECT_NAME == "From file"


def test_missing_file_is_ignored(tmp_path):
    settings = load_settings(str(tmp_path / "absent.yaml"))
    assert settings.DB_POOL_SIZE == Settings().DB_POOL_SIZE


def test_invalid_values_are_rejected():
    with pytest.raises(SettingsValidationError):
        Settings(LOG_LEVEL="LOUD")
    with pytest.raises(SettingsValidationError):
        Settings(SUBMISSION_GRACE_SECONDS=-1)


def test_engine_options_per_backend():
    sqlite = get_engine_kwargs("sqlite+aiosqlite:///./x.db", pool_timeout=7)
    assert sqlite["connect_args"] == {"timeout": 7}
    assert "pool_size" not in sqlite

    postgres = get_engine_kwargs("postgresql+asyncpg://u:p@db/edu", pool_size=8)
    assert postgres["pool_size"] == 8
    assert postgres["pool_pre_ping"] is True
