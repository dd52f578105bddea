"""Structured logging for Parley.

The logger works from import time on, configured from ``LOG_LEVEL`` and
``LOG_FORMAT``. ``ParleyApp`` calls :func:`configure` again once Settings are
loaded so ``[logging]`` in config.toml takes effect.

Every event carries ``service="parley"``. Events emitted while a turn is
being handled also carry its ``channel_id``, ``conversation_id`` and
``user_id`` (see :func:`turn_context`), so handlers don't pass them by hand.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Literal

import structlog

if TYPE_CHECKING:
    from parley.types import ConversationAddress

SERVICE_NAME = "parley"

type LogFormat = Literal["console", "json"]


def add_service(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def _processors(fmt: LogFormat) -> list[Any]:
    processors: list[Any] = [
        structlog.stdlib.filter_by_level,
        structlog.contextvars.merge_contextvars,
        add_service,
        structlog.stdlib.add_log_level,
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if fmt == "json":
        # JSON lines need tracebacks as a string field
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer(sort_keys=True))
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))
    return processors


def configure(level_name: str = "INFO", fmt: LogFormat = "console") -> None:
    """(Re)configure level and output format. Safe to call more than once."""
    level = getattr(logging, level_name.upper(), logging.INFO)
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(format="%(message)s", stream=sys.stderr)
    root.setLevel(level)

    structlog.configure(
        processors=_processors(fmt),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        # Loggers pick up a later configure() call
        cache_logger_on_first_use=False,
    )


@contextmanager
def turn_context(address: ConversationAddress) -> Iterator[None]:
    """Bind the turn's addressing ids to every event logged inside the block.

    Bindings live in contextvars, so concurrent turns (one task per request)
    never see each other's ids.
    """
    with structlog.contextvars.bound_contextvars(
        channel_id=address.channel_id,
        conversation_id=address.conversation_id,
        user_id=address.user_id,
    ):
        yield


def _env_format() -> LogFormat:
    return "json" if os.environ.get("LOG_FORMAT", "").lower() == "json" else "console"


configure(os.environ.get("LOG_LEVEL", "INFO"), _env_format())
logger: structlog.stdlib.BoundLogger = structlog.get_logger()


def _log_uncaught(
    exc_type: type[BaseException],
    exc_value: BaseException,
    exc_tb: object,
) -> None:
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_tb)  # type: ignore[arg-type]
        return
    logger.critical("Parley crashed", exc_info=(exc_type, exc_value, exc_tb))
    sys.exit(1)


sys.excepthook = _log_uncaught
