"""Configuration management for Tether MCP."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def default_state_path() -> Path:
    base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / "tether" / "state.json"


class TetherSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    state_path: Path = Field(default_factory=default_state_path, validation_alias="TETHER_STATE_PATH")
    ssh_path: str | None = Field(default=None, validation_alias="SSH_PATH")
    mutagen_path: str | None = Field(default=None, validation_alias="MUTAGEN_PATH")
    doctl_path: str | None = Field(default=None, validation_alias="DOCTL_PATH")
    rsync_path: str | None = Field(default=None, validation_alias="RSYNC_PATH")
    default_ssh_user: str = Field(default="root", validation_alias="TETHER_SSH_USER")
    default_ssh_key_path: str = Field(default="~/.ssh/id_rsa", validation_alias="TETHER_SSH_KEY_PATH")
    default_ssh_port: int = Field(default=22, validation_alias="TETHER_SSH_PORT")
    ledger_path: str = Field(default="~/.mountlist", validation_alias="TETHER_LEDGER_PATH")
    tunnel_grace_ms: int = Field(default=250, validation_alias="TETHER_TUNNEL_GRACE_MS")
    poll_interval_ms: int = Field(default=120, validation_alias="TETHER_POLL_INTERVAL_MS")
    settle_timeout_s: float = Field(default=600.0, validation_alias="TETHER_SETTLE_TIMEOUT")
    log_level: str = Field(default="INFO", validation_alias="TETHER_LOG_LEVEL")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "TETHER_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("default_ssh_port")
    @classmethod
    def _validate_port(cls, value: int) -> int:
        if not 1 <= value <= 65535:
            raise ValueError("TETHER_SSH_PORT must be between 1 and 65535")
        return value

    @field_validator("tunnel_grace_ms", "poll_interval_ms")
    @classmethod
    def _validate_interval(cls, value: int) -> int:
        if value < 1:
            raise ValueError("Intervals must be >= 1 millisecond")
        return value

    @field_validator("ledger_path")
    @classmethod
    def _validate_ledger_path(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("TETHER_LEDGER_PATH must not be empty")
        return normalized


@lru_cache(maxsize=1)
def get_settings() -> TetherSettings:
    """Return cached settings instance."""

    settings = TetherSettings()
    settings.state_path = settings.state_path.expanduser().resolve()
    return settings


__all__ = ["TetherSettings", "default_state_path", "get_settings"]
