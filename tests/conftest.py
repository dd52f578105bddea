"""Shared test fixtures for Parley."""

from __future__ import annotations

from typing import Any

import pytest

from parley.connector import TurnContext
from parley.errors import DeliveryError
from parley.types import Activity, ConversationAddress, TurnCallback

# ---------------------------------------------------------------------------
# Shared helpers (plain functions, importable by test files)
# ---------------------------------------------------------------------------

# Cached property names that must be set via __dict__ (not model_construct).
_CACHED_PROPERTY_NAMES = frozenset({"app_id", "alert_time", "project_root", "storage_path"})


def make_settings(**overrides):
    """Create a Settings object with sensible defaults for testing.

    Accepts both model fields (scheduler, storage, etc.) and cached property
    overrides (app_id, alert_time, storage_path, ...).

    Usage::

        s = make_settings(storage=StorageConfig(backend="sqlite"))
        s = make_settings(app_id="test-app")
    """
    from parley.config import (
        BotConfig,
        ConnectorConfig,
        LoggingConfig,
        SchedulerConfig,
        ServerConfig,
        Settings,
        StorageConfig,
        UtteranceLogConfig,
    )

    cached = {k: overrides.pop(k) for k in list(overrides) if k in _CACHED_PROPERTY_NAMES}

    defaults = {
        "bot": BotConfig(),
        "server": ServerConfig(),
        "logging": LoggingConfig(),
        "storage": StorageConfig(),
        "utterance_log": UtteranceLogConfig(),
        "scheduler": SchedulerConfig(),
        "connector": ConnectorConfig(),
    }
    defaults.update(overrides)
    s = Settings.model_construct(**defaults)

    for key, value in cached.items():
        s.__dict__[key] = value

    return s


def make_context(activity: Activity) -> TurnContext:
    """A TurnContext whose replies are only recorded on ``ctx.responses``."""

    async def _send(text: str) -> None:
        return None

    return TurnContext(activity, _send)


class FakeAdapter:
    """Channel adapter that records proactive deliveries instead of sending them."""

    def __init__(self, failing: set[str] | None = None) -> None:
        self.failing = failing or set()
        self.sent: list[tuple[str, str]] = []  # (conversation_id, text)
        self.app_ids: list[str] = []

    async def continue_conversation(
        self, app_id: str, address: ConversationAddress, callback: TurnCallback
    ) -> None:
        self.app_ids.append(app_id)
        if address.conversation_id in self.failing:
            raise DeliveryError(address, "unreachable")

        async def _send(text: str) -> None:
            self.sent.append((address.conversation_id, text))

        await callback(TurnContext(Activity(type="continueConversation", address=address), _send))


# ---------------------------------------------------------------------------
# Autouse fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def reset_settings(monkeypatch):
    """Ensure each test starts with a clean Settings singleton.

    Uses ``make_settings()`` to build from pure defaults — no config.toml,
    no .env, no file I/O.
    """
    monkeypatch.setattr("parley.config._settings", make_settings())


# ---------------------------------------------------------------------------
# Reusable fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def make_address():
    """Factory fixture for conversation addresses with defaults."""

    def _make(
        *,
        user_id: str = "user-1",
        conversation_id: str | None = None,
        channel_id: str = "emulator",
        service_url: str = "http://localhost:9000",
        bot_id: str = "bot",
    ) -> ConversationAddress:
        return ConversationAddress(
            channel_id=channel_id,
            service_url=service_url,
            conversation_id=conversation_id or f"conv-{user_id}",
            user_id=user_id,
            bot_id=bot_id,
        )

    return _make


@pytest.fixture
def make_activity(make_address):
    """Factory fixture for inbound activities."""

    def _make(
        text: str = "hi",
        *,
        type: str = "message",
        user_id: str = "user-1",
        conversation_id: str | None = None,
        **address: Any,
    ) -> Activity:
        return Activity(
            type=type,
            address=make_address(user_id=user_id, conversation_id=conversation_id, **address),
            text=text,
        )

    return _make


@pytest.fixture
def fake_adapter() -> FakeAdapter:
    return FakeAdapter()
