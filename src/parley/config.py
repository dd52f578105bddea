"""Centralized configuration — Pydantic BaseSettings with TOML + dotenv sources.

Non-secret settings live in config.toml, local overrides in .env.
Environment variables override both using ``__`` as the nested delimiter
(e.g. ``SCHEDULER__ALERT_TIME``).

Priority (highest wins): init args > env vars > .env > config.toml

Usage::

    from parley.config import get_settings

    s = get_settings()
    print(s.scheduler.alert_time)
"""

from __future__ import annotations

import re
import uuid
from datetime import time
from functools import cached_property
from pathlib import Path
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

_ALERT_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")

# ---------------------------------------------------------------------------
# Sub-models (each maps to a [section] in config.toml)
# ---------------------------------------------------------------------------


class _StrictModel(BaseModel):
    """Base for all config sub-models — reject unknown keys so typos fail loudly."""

    model_config = {"extra": "forbid"}


class BotConfig(_StrictModel):
    app_id: str = ""  # empty → random id per process (emulator without auth)


class ServerConfig(_StrictModel):
    host: str = "0.0.0.0"
    port: int = 3978


class LoggingConfig(_StrictModel):
    level: str = "INFO"
    format: Literal["console", "json"] = "console"

    @field_validator("level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        return v.upper()


class StorageConfig(_StrictModel):
    backend: Literal["memory", "sqlite"] = "memory"
    path: str = "data/state.db"  # only used by the sqlite backend


class UtteranceLogConfig(_StrictModel):
    # "global" keeps one transcript for every conversation
    scope: Literal["global", "conversation", "user"] = "global"


class SchedulerConfig(_StrictModel):
    alert_time: str = "14:56"  # HH:MM[:SS], local to `timezone`
    timezone: str = "America/Los_Angeles"
    timed_message: str = "I ran!"
    greeting: str = "Hello! I'm actually coming from outer space"

    @field_validator("alert_time")
    @classmethod
    def validate_alert_time(cls, v: str) -> str:
        parse_alert_time(v)
        return v

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            msg = f"Unknown timezone: {v}"
            raise ValueError(msg) from exc
        return v


class ConnectorConfig(_StrictModel):
    timeout_seconds: float = 15.0

    @field_validator("timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeout_seconds must be positive")
        return v


def parse_alert_time(value: str) -> time:
    """Parse ``HH:MM`` or ``HH:MM:SS`` into a :class:`datetime.time`."""
    match = _ALERT_TIME_RE.match(value.strip())
    if match is None:
        msg = f"Invalid alert time (expected HH:MM[:SS]): {value}"
        raise ValueError(msg)
    hour, minute, second = (int(g) if g else 0 for g in match.groups())
    return time(hour, minute, second)


# ---------------------------------------------------------------------------
# Root Settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        toml_file="config.toml",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    bot: BotConfig = BotConfig()
    server: ServerConfig = ServerConfig()
    logging: LoggingConfig = LoggingConfig()
    storage: StorageConfig = StorageConfig()
    utterance_log: UtteranceLogConfig = UtteranceLogConfig()
    scheduler: SchedulerConfig = SchedulerConfig()
    connector: ConnectorConfig = ConnectorConfig()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Priority: init > env vars > .env > config.toml > file secrets."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    # --- Computed properties ---

    @cached_property
    def app_id(self) -> str:
        # Without auth (e.g. the emulator) there is no app id; any stable
        # per-process value will do.
        return self.bot.app_id or str(uuid.uuid4())

    @cached_property
    def alert_time(self) -> time:
        return parse_alert_time(self.scheduler.alert_time)

    @cached_property
    def project_root(self) -> Path:
        return Path.cwd()

    @cached_property
    def storage_path(self) -> Path:
        path = Path(self.storage.path)
        if not path.is_absolute():
            path = self.project_root / path
        return path.resolve()


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_settings: Settings | None = None


def get_settings() -> Settings:
    """Lazy cached singleton."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
