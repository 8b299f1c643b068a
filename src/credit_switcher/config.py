"""Process settings for credit-switcher."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SwitcherSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    config_path: Path | None = Field(default=None, validation_alias="OPENCODE_CREDIT_SWITCHER_CONFIG")
    directory: Path | None = Field(default=None, validation_alias="CREDIT_SWITCHER_DIRECTORY")
    worktree: Path | None = Field(default=None, validation_alias="CREDIT_SWITCHER_WORKTREE")
    home: Path | None = Field(default=None, validation_alias="HOME")
    host_url: str = Field(default="http://127.0.0.1:4096", validation_alias="CREDIT_SWITCHER_HOST_URL")
    host_timeout: float = Field(default=30.0, validation_alias="CREDIT_SWITCHER_HOST_TIMEOUT")
    subscribe_events: bool = Field(default=True, validation_alias="CREDIT_SWITCHER_SUBSCRIBE_EVENTS")
    journal_path: Path | None = Field(default=None, validation_alias="CREDIT_SWITCHER_JOURNAL_PATH")
    log_level: str = Field(default="INFO", validation_alias="CREDIT_SWITCHER_LOG_LEVEL")

    @field_validator("config_path", "directory", "worktree", "home", "journal_path", mode="before")
    @classmethod
    def _blank_is_unset(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "CREDIT_SWITCHER_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("host_timeout")
    @classmethod
    def _validate_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("CREDIT_SWITCHER_HOST_TIMEOUT must be > 0")
        return value


@lru_cache(maxsize=1)
def get_settings() -> SwitcherSettings:
    """Return cached settings instance."""

    settings = SwitcherSettings()
    if settings.config_path is not None:
        settings.config_path = settings.config_path.expanduser().resolve()
    if settings.journal_path is not None:
        settings.journal_path = settings.journal_path.expanduser().resolve()
    if settings.directory is None:
        settings.directory = Path.cwd()
    return settings


__all__ = ["SwitcherSettings", "get_settings"]
