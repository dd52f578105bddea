"""Channel connector — turn contexts and the HTTP channel adapter.

Inbound turns are answered in the HTTP response: replies sent during the
turn are buffered and returned by ``process_activity()``. Proactive turns
have no request to answer, so ``continue_conversation()`` posts each reply
to the conversation's service URL instead (Bot Framework REST layout).
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any
from urllib.parse import quote

import aiohttp

from parley.errors import DeliveryError
from parley.logger import logger
from parley.types import Activity, ConversationAddress, TurnCallback

CONTINUE_CONVERSATION = "continueConversation"


class TurnContext:
    """One turn: the activity that started it, a scratch dict, and a way to reply."""

    def __init__(self, activity: Activity, send: Callable[[str], Awaitable[None]]) -> None:
        self.activity = activity
        self.turn_state: dict[str, Any] = {}
        self.responses: list[str] = []
        self._send = send

    async def send_activity(self, text: str) -> None:
        await self._send(text)
        self.responses.append(text)


async def process_activity(activity: Activity, logic: TurnCallback) -> list[str]:
    """Run *logic* for an inbound activity and return the replies it sent."""
    replies: list[str] = []

    async def _buffer(text: str) -> None:
        replies.append(text)

    await logic(TurnContext(activity, _buffer))
    return replies


class HttpChannelAdapter:
    """Channel adapter speaking the Bot Framework connector REST API over aiohttp."""

    def __init__(
        self,
        *,
        timeout_seconds: float = 15.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def continue_conversation(
        self, app_id: str, address: ConversationAddress, callback: TurnCallback
    ) -> None:
        async def _post(text: str) -> None:
            await self._post_activity(app_id, address, text)

        activity = Activity(type=CONTINUE_CONVERSATION, address=address)
        await callback(TurnContext(activity, _post))

    async def _post_activity(self, app_id: str, address: ConversationAddress, text: str) -> None:
        url = (
            f"{address.service_url.rstrip('/')}/v3/conversations/"
            f"{quote(address.conversation_id, safe='')}/activities"
        )
        payload = {
            "type": "message",
            "text": text,
            "channelId": address.channel_id,
            "conversation": {"id": address.conversation_id},
            "from": {"id": address.bot_id or app_id},
            "recipient": {"id": address.user_id},
        }
        try:
            async with self._get_session().post(url, json=payload) as resp:
                if resp.status >= 400:
                    body = await resp.text()
                    raise DeliveryError(address, f"HTTP {resp.status}: {body[:200]}")
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise DeliveryError(address, str(exc) or type(exc).__name__) from exc
        logger.debug(
            "Proactive message posted",
            conversation_id=address.conversation_id,
            user_id=address.user_id,
        )
