"""Tests for logging configuration and per-turn context."""

from __future__ import annotations

import logging

import pytest
import structlog

from parley.logger import SERVICE_NAME, add_service, configure, turn_context


@pytest.fixture
def restore_logging():
    yield
    configure("INFO", "console")


class TestAddService:
    def test_tags_every_event(self):
        event = add_service(None, "info", {"event": "Parley started"})
        assert event == {"event": "Parley started", "service": SERVICE_NAME}

    def test_keeps_explicit_service(self):
        event = add_service(None, "info", {"event": "x", "service": "connector"})
        assert event["service"] == "connector"


class TestConfigure:
    def test_applies_level_to_root_logger(self, restore_logging):
        configure("warning")
        assert logging.getLogger().level == logging.WARNING

    def test_unknown_level_falls_back_to_info(self, restore_logging):
        configure("chatty")
        assert logging.getLogger().level == logging.INFO

    def test_json_format_renders_json_lines(self, restore_logging):
        configure("INFO", "json")
        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.processors.JSONRenderer)
        assert add_service in processors

    def test_console_format_is_default(self, restore_logging):
        configure()
        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.dev.ConsoleRenderer)


class TestTurnContext:
    def test_binds_address_ids_for_the_block(self, make_address):
        address = make_address(user_id="u1", conversation_id="c1")

        with turn_context(address):
            assert structlog.contextvars.get_contextvars() == {
                "channel_id": "emulator",
                "conversation_id": "c1",
                "user_id": "u1",
            }
        assert structlog.contextvars.get_contextvars() == {}

    def test_unbinds_when_the_turn_raises(self, make_address):
        with pytest.raises(RuntimeError), turn_context(make_address()):
            raise RuntimeError("turn failed")
        assert structlog.contextvars.get_contextvars() == {}
