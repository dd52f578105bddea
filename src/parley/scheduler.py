"""Notification scheduler — proactive broadcasts to every known conversation.

One timer at most, armed for today's occurrence of the alert time in the
configured zone. If that time has already passed, nothing is armed: the
next manual trigger is what arms the following cycle. Arming always
replaces the pending timer.

Deliveries run concurrently, one per registered address, with failures
isolated per address. No lock is held while the adapter is working.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, time
from typing import Any
from zoneinfo import ZoneInfo

from parley.connector import TurnContext
from parley.errors import DeliveryError, SchedulingSkipped
from parley.logger import logger
from parley.registry import ConversationRegistry
from parley.types import ChannelAdapter, ConversationAddress


def target_for_today(alert_time: time, now: datetime) -> datetime:
    return now.replace(
        hour=alert_time.hour,
        minute=alert_time.minute,
        second=alert_time.second,
        microsecond=0,
    )


def seconds_until(alert_time: time, now: datetime) -> float:
    """Delay from *now* to today's *alert_time*; negative once it has passed.

    Both ends are compared in UTC: datetimes sharing a tzinfo subtract as
    naive wall times, which is off by the DST shift on change days.
    """
    target = target_for_today(alert_time, now)
    return (target.astimezone(UTC) - now.astimezone(UTC)).total_seconds()


@dataclass
class BroadcastReport:
    message: str
    delivered: list[ConversationAddress] = field(default_factory=list)
    failed: list[tuple[ConversationAddress, BaseException]] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return len(self.delivered) + len(self.failed)

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "delivered": len(self.delivered),
            "failed": [
                {"conversation_id": address.conversation_id, "error": str(exc)}
                for address, exc in self.failed
            ],
        }


class NotificationScheduler:
    def __init__(
        self,
        adapter: ChannelAdapter,
        registry: ConversationRegistry,
        app_id: str,
        *,
        alert_time: time,
        timezone: str,
        timed_message: str,
        greeting: str,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._adapter = adapter
        self._registry = registry
        self._app_id = app_id
        self._alert_time = alert_time
        self._tz = ZoneInfo(timezone)
        self._timed_message = timed_message
        self._greeting = greeting
        self._clock = clock or (lambda: datetime.now(self._tz))
        self._handle: asyncio.TimerHandle | None = None
        self._armed_for: datetime | None = None
        self._last_fired_for: datetime | None = None
        self._fire_task: asyncio.Task[BroadcastReport] | None = None
        self._last_fire: BroadcastReport | None = None

    @property
    def is_armed(self) -> bool:
        return self._handle is not None

    @property
    def last_fire(self) -> BroadcastReport | None:
        """Report from the most recent timed broadcast that completed."""
        return self._last_fire

    @property
    def armed_for(self) -> datetime | None:
        """Wall-clock time the pending timer will fire at, if any."""
        return self._armed_for

    def arm(self, alert_time: time | None = None) -> bool:
        """(Re)arm the timer for today's alert time. Returns False if it was skipped."""
        self.disarm()
        alert_time = alert_time or self._alert_time
        now = self._clock().astimezone(self._tz)
        target = target_for_today(alert_time, now)
        delay = seconds_until(alert_time, now)

        # The loop clock can run slightly ahead of the wall clock, so a
        # rearm right after firing may still see a small positive delay.
        if target == self._last_fired_for:
            delay = min(delay, -1.0)
        if delay < 0:
            logger.info(
                "Notification not scheduled",
                reason=str(SchedulingSkipped(delay)),
                alert_time=alert_time.isoformat(),
            )
            return False

        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(delay, self._on_timer)
        self._armed_for = target
        logger.info(
            "Notification scheduled",
            fire_at=target.isoformat(),
            delay_seconds=round(delay),
        )
        return True

    def disarm(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
            self._armed_for = None

    def _on_timer(self) -> None:
        self._last_fired_for = self._armed_for
        self._handle = None
        self._armed_for = None
        task = asyncio.create_task(self._fire(), name="scheduled-notification")
        task.add_done_callback(self._on_fire_done)
        self._fire_task = task

    async def _fire(self) -> BroadcastReport:
        report = await self.broadcast(self._timed_message)
        self.arm()
        return report

    def _on_fire_done(self, task: asyncio.Task[BroadcastReport]) -> None:
        # Nothing awaits a timed fire, so its outcome is recorded here
        if task.cancelled():
            logger.info("Scheduled notification cancelled")
            return
        exc = task.exception()
        if exc is not None:
            # Not inside an except block, so pass the exception to exc_info
            logger.error("Scheduled notification failed", exc_info=exc)
            return
        self._last_fire = task.result()

    async def broadcast(self, message: str) -> BroadcastReport:
        """Send *message* to every registered conversation."""
        addresses = self._registry.snapshot()
        report = BroadcastReport(message=message)
        if not addresses:
            logger.info("Broadcast skipped, no registered conversations")
            return report

        results = await asyncio.gather(
            *(self._deliver(address, message) for address in addresses),
            return_exceptions=True,
        )
        for address, result in zip(addresses, results, strict=True):
            if result is None:
                report.delivered.append(address)
                continue
            report.failed.append((address, result))
            if isinstance(result, DeliveryError):
                logger.warning(
                    "Proactive delivery failed",
                    conversation_id=address.conversation_id,
                    err=result.reason,
                )
            else:
                logger.error(
                    "Proactive delivery raised",
                    conversation_id=address.conversation_id,
                    exc_info=result,
                )

        logger.info(
            "Broadcast complete",
            delivered=len(report.delivered),
            failed=len(report.failed),
        )
        return report

    async def _deliver(self, address: ConversationAddress, message: str) -> None:
        async def _callback(ctx: TurnContext) -> None:
            await ctx.send_activity(message)

        await self._adapter.continue_conversation(self._app_id, address, _callback)

    async def notify_now(self) -> BroadcastReport:
        """Broadcast the greeting immediately, then arm the next cycle."""
        report = await self.broadcast(self._greeting)
        self.arm()
        return report

    async def shutdown(self) -> None:
        """Cancel the pending timer and let an in-flight broadcast finish."""
        self.disarm()
        if self._fire_task is not None and not self._fire_task.done():
            await asyncio.wait({self._fire_task})
