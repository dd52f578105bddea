"""Tests for configuration loading and validation."""

from __future__ import annotations

from datetime import time

import pytest
from conftest import make_settings
from pydantic import ValidationError

from parley.config import (
    ConnectorConfig,
    SchedulerConfig,
    Settings,
    StorageConfig,
    get_settings,
    parse_alert_time,
)


@pytest.fixture
def isolated_cwd(tmp_path, monkeypatch):
    """Run Settings() from an empty directory with no PARLEY-relevant env vars."""
    monkeypatch.chdir(tmp_path)
    for var in ("SCHEDULER__ALERT_TIME", "BOT__APP_ID", "STORAGE__BACKEND"):
        monkeypatch.delenv(var, raising=False)
    return tmp_path


class TestParseAlertTime:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [("14:56", time(14, 56)), ("9:05", time(9, 5)), ("23:59:30", time(23, 59, 30))],
    )
    def test_valid(self, raw, expected):
        assert parse_alert_time(raw) == expected

    @pytest.mark.parametrize("raw", ["", "14", "25:00", "12:60", "noon", "12:00:00:00"])
    def test_invalid(self, raw):
        with pytest.raises(ValueError):
            parse_alert_time(raw)


class TestSubModels:
    def test_scheduler_defaults(self):
        s = SchedulerConfig()
        assert s.alert_time == "14:56"
        assert s.timezone == "America/Los_Angeles"
        assert s.timed_message == "I ran!"

    def test_unknown_timezone_rejected(self):
        with pytest.raises(ValidationError):
            SchedulerConfig(timezone="Mars/Olympus_Mons")

    def test_bad_alert_time_rejected(self):
        with pytest.raises(ValidationError):
            SchedulerConfig(alert_time="half past two")

    def test_unknown_keys_rejected(self):
        with pytest.raises(ValidationError):
            StorageConfig(backend="memory", flavour="vanilla")

    def test_backend_is_restricted(self):
        with pytest.raises(ValidationError):
            StorageConfig(backend="redis")

    def test_timeout_must_be_positive(self):
        with pytest.raises(ValidationError):
            ConnectorConfig(timeout_seconds=0)


class TestSettingsSources:
    def test_defaults_without_any_config(self, isolated_cwd):
        s = Settings()
        assert s.server.port == 3978
        assert s.storage.backend == "memory"
        assert s.alert_time == time(14, 56)

    def test_toml_file_is_read(self, isolated_cwd):
        (isolated_cwd / "config.toml").write_text(
            '[scheduler]\nalert_time = "08:30"\n\n[storage]\nbackend = "sqlite"\n'
        )
        s = Settings()
        assert s.alert_time == time(8, 30)
        assert s.storage.backend == "sqlite"
        assert s.storage_path == (isolated_cwd / "data" / "state.db").resolve()

    def test_env_overrides_toml(self, isolated_cwd, monkeypatch):
        (isolated_cwd / "config.toml").write_text('[scheduler]\nalert_time = "08:30"\n')
        monkeypatch.setenv("SCHEDULER__ALERT_TIME", "07:15")
        assert Settings().alert_time == time(7, 15)

    def test_empty_app_id_falls_back_to_random_stable_id(self, isolated_cwd):
        s = Settings()
        assert s.app_id
        assert s.app_id == s.app_id
        assert Settings().app_id != s.app_id

    def test_configured_app_id_is_used(self, isolated_cwd, monkeypatch):
        monkeypatch.setenv("BOT__APP_ID", "my-bot")
        assert Settings().app_id == "my-bot"


def test_get_settings_returns_singleton():
    assert get_settings() is get_settings()


def test_make_settings_cached_overrides():
    s = make_settings(app_id="fixed")
    assert s.app_id == "fixed"
