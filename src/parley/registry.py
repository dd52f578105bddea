"""Conversation registry — who we can reach proactively, and how.

Written on every turn (hot path), scanned in full by the notification
scheduler (cold path). The lock only covers the dict operation or the copy;
callers never await while holding it.
"""

from __future__ import annotations

import threading

from parley.logger import logger
from parley.types import Activity, ConversationAddress


class ConversationRegistry:
    """user_id → latest ConversationAddress, last write wins."""

    def __init__(self) -> None:
        self._addresses: dict[str, ConversationAddress] = {}
        self._lock = threading.Lock()

    def upsert(self, user_id: str, address: ConversationAddress) -> None:
        with self._lock:
            previous = self._addresses.get(user_id)
            self._addresses[user_id] = address
        if previous is None:
            logger.info(
                "Conversation registered",
                user_id=user_id,
                conversation_id=address.conversation_id,
            )
        elif previous != address:
            logger.debug(
                "Conversation address updated",
                user_id=user_id,
                conversation_id=address.conversation_id,
            )

    def register(self, activity: Activity) -> None:
        self.upsert(activity.address.user_id, activity.address)

    def get(self, user_id: str) -> ConversationAddress | None:
        with self._lock:
            return self._addresses.get(user_id)

    def snapshot(self) -> list[ConversationAddress]:
        """Point-in-time copy; later upserts don't affect it."""
        with self._lock:
            return list(self._addresses.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._addresses)
