"""
Application configuration module.

Settings are read from the environment and an optional ``.env`` file.
A YAML or JSON overlay file can be named with EDUASSESS_CONFIG (or passed
to ``load_settings``); environment variables take precedence over it.
"""

import os
import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "EDUASSESS_CONFIG"


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # Database settings
    DATABASE_URL: str = "sqlite+aiosqlite:///./eduassess.db"
    SQL_ECHO: bool = False
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_AUTO_CREATE: bool = True

    # Logging settings
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False
    LOG_FILE: Optional[str] = None

    # API settings
    API_PREFIX: str = "/api/v1"
    PROJECT_NAME: str = "EduAssess Assessment Engine"
    CORS_ORIGINS: List[str] = ["*"]

    # Engine settings
    SUBMISSION_GRACE_SECONDS: int = 60
    AUDIT_ENABLED: bool = True

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()

    @field_validator("SUBMISSION_GRACE_SECONDS")
    @classmethod
    def validate_grace(cls, v: int) -> int:
        if v < 0:
            raise ValueError("SUBMISSION_GRACE_SECONDS must be non-negative")
        return v


def _load_from_file(path: str) -> Dict[str, Any]:
    """
    Load overlay values from a YAML or JSON file.

    Args:
        path: Path to the config file

    Returns:
        Loaded configuration dictionary (empty when the file is missing)
    """
    config_file = Path(path)
    if not config_file.exists():
        logger.warning(f"Config file not found: {config_file}")
        return {}

    suffix = config_file.suffix.lower()
    with open(config_file, "r") as f:
        if suffix in (".yaml", ".yml"):
            data = yaml.safe_load(f) or {}
        elif suffix == ".json":
            data = json.load(f)
        else:
            logger.warning(f"Unsupported config file format: {suffix}")
            return {}

    if not isinstance(data, dict):
        raise ValueError(f"Config file {config_file} must contain a mapping")
    return data


def load_settings(config_path: Optional[str] = None) -> Settings:
    """
    Build settings from defaults, an optional overlay file and the environment.

    Args:
        config_path: YAML/JSON overlay file; defaults to $EDUASSESS_CONFIG

    Returns:
        Loaded settings
    """
    config_path = config_path or os.environ.get(CONFIG_PATH_ENV)
    file_values: Dict[str, Any] = {}
    if config_path:
        file_values = {
            key.upper(): value
            for key, value in _load_from_file(config_path).items()
            if key.upper() not in os.environ
        }
    return Settings(**file_values)


@lru_cache()
def get_settings() -> Settings:
    """Get the process-wide settings instance."""
    return load_settings()
