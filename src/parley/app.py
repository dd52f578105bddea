"""Application composition root — owns the store and wires every subsystem."""

from __future__ import annotations

import asyncio
import signal

from parley.bot import DialogBot
from parley.config import Settings, get_settings
from parley.connector import HttpChannelAdapter, process_activity
from parley.dialog import EchoDialog
from parley.http_server import start_http_server
from parley.logger import configure as configure_logging
from parley.logger import logger
from parley.registry import ConversationRegistry
from parley.scheduler import BroadcastReport, NotificationScheduler
from parley.state import ConversationState, MemoryStorage, SqliteStorage, Storage, UserState
from parley.types import Activity, ChannelAdapter, Dialog
from parley.utterance_log import UtteranceLog


class ParleyApp:
    """Main application class — owns all runtime state and wires subsystems."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        storage: Storage | None = None,
        adapter: ChannelAdapter | None = None,
        dialog: Dialog | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.storage: Storage | None = storage
        self.adapter = adapter or HttpChannelAdapter(
            timeout_seconds=self.settings.connector.timeout_seconds
        )
        self.dialog: Dialog = dialog or EchoDialog()
        self.registry = ConversationRegistry()
        self.bot: DialogBot | None = None
        self.scheduler: NotificationScheduler | None = None
        self._http_runner = None
        self._stopped = asyncio.Event()
        self._shutting_down = False

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    async def _open_storage(self) -> Storage:
        if self.settings.storage.backend == "sqlite":
            return await SqliteStorage.open(self.settings.storage_path)
        return MemoryStorage()

    async def start(self) -> None:
        """Open the store and build the bot and scheduler on top of it."""
        if self.storage is None:
            self.storage = await self._open_storage()
        s = self.settings
        self.bot = DialogBot(
            ConversationState(self.storage),
            UserState(self.storage),
            self.dialog,
            self.registry,
            UtteranceLog(self.storage, scope=s.utterance_log.scope),
        )
        self.scheduler = NotificationScheduler(
            self.adapter,
            self.registry,
            s.app_id,
            alert_time=s.alert_time,
            timezone=s.scheduler.timezone,
            timed_message=s.scheduler.timed_message,
            greeting=s.scheduler.greeting,
        )
        logger.info(
            "Parley started",
            storage=s.storage.backend,
            utterance_log_scope=s.utterance_log.scope,
        )

    # ------------------------------------------------------------------
    # HttpDeps
    # ------------------------------------------------------------------

    async def handle_activity(self, activity: Activity) -> list[str]:
        assert self.bot is not None, "start() must be called first"
        return await process_activity(activity, self.bot.on_turn)

    async def notify_now(self) -> BroadcastReport:
        assert self.scheduler is not None, "start() must be called first"
        return await self.scheduler.notify_now()

    def conversation_count(self) -> int:
        return len(self.registry)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _shutdown(self, sig_name: str) -> None:
        """Graceful shutdown handler. Second signal force-exits."""
        if self._shutting_down:
            logger.info("Force shutdown")
            import os

            os._exit(1)
        self._shutting_down = True
        logger.info("Shutdown signal received", signal=sig_name)
        await self.stop()

    async def stop(self) -> None:
        if self.scheduler is not None:
            await self.scheduler.shutdown()
        if self._http_runner is not None:
            await self._http_runner.cleanup()
            self._http_runner = None
        if isinstance(self.adapter, HttpChannelAdapter):
            await self.adapter.close()
        if isinstance(self.storage, SqliteStorage):
            await self.storage.close()
        self._stopped.set()

    async def run(self) -> None:
        """Main entry point — startup sequence, then serve until signalled."""
        configure_logging(self.settings.logging.level, self.settings.logging.format)
        await self.start()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(
                sig,
                lambda s=sig: asyncio.ensure_future(self._shutdown(s.name)),
            )

        self._http_runner = await start_http_server(
            self,
            host=self.settings.server.host,
            port=self.settings.server.port,
        )
        await self._stopped.wait()
