"""Append-only transcript of everything users have said, with a turn counter.

Appends to one key are serialised by a per-key lock around the whole
read-modify-write, which keeps ``turn_number == len(utterances)`` under
concurrent turns. The write also carries the e_tag from the read, so a
writer outside this process shows up as a conflict instead of a lost update.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Literal

from parley.errors import StoreReadError, StoreWriteError
from parley.logger import logger
from parley.state.storage import WILDCARD_E_TAG, Storage
from parley.types import ConversationAddress, UtteranceLogEntry

GLOBAL_LOG_KEY = "UtteranceLog"

type LogScope = Literal["global", "conversation", "user"]


@dataclass
class AppendResult:
    entry: UtteranceLogEntry
    read_error: StoreReadError | None = None
    write_error: StoreWriteError | None = None

    @property
    def ok(self) -> bool:
        return self.read_error is None and self.write_error is None


@dataclass
class _KeyLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    holders: int = 0  # tasks holding or waiting on the lock


def format_entry(entry: UtteranceLogEntry) -> str:
    return f"{entry.turn_number}: The list is now: {', '.join(entry.utterances)}"


class UtteranceLog:
    def __init__(self, storage: Storage, *, scope: LogScope = "global") -> None:
        self._storage = storage
        self._scope = scope
        self._locks: dict[str, _KeyLock] = {}

    @property
    def scope(self) -> LogScope:
        return self._scope

    def key_for(self, address: ConversationAddress) -> str:
        match self._scope:
            case "global":
                return GLOBAL_LOG_KEY
            case "conversation":
                return f"{GLOBAL_LOG_KEY}/{address.conversation_id}"
            case "user":
                return f"{GLOBAL_LOG_KEY}/{address.user_id}"

    @asynccontextmanager
    async def _locked(self, key: str) -> AsyncIterator[None]:
        """Hold the lock for *key*; the entry is dropped once nobody holds or awaits it."""
        entry = self._locks.setdefault(key, _KeyLock())
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0:
                del self._locks[key]

    async def read(self, key: str = GLOBAL_LOG_KEY) -> UtteranceLogEntry | None:
        """Current entry under *key*, or None. Raises StoreReadError."""
        items = await self._storage.read([key])
        record = items.get(key)
        return UtteranceLogEntry.from_dict(record) if record is not None else None

    async def append(self, utterance: str, *, key: str = GLOBAL_LOG_KEY) -> AppendResult:
        """Add *utterance* and bump the turn counter by one.

        Store failures are returned on the result, never raised. If the
        read fails the entry is rebuilt from this utterance alone and is
        not persisted, so an unreadable transcript is never overwritten.
        """
        async with self._locked(key):
            try:
                items = await self._storage.read([key])
            except StoreReadError as exc:
                logger.warning("Utterance log read failed", key=key, err=str(exc))
                entry = UtteranceLogEntry()
                entry.append(utterance)
                return AppendResult(entry, read_error=exc)

            record = items.get(key)
            if record is None:
                entry = UtteranceLogEntry()
                e_tag = WILDCARD_E_TAG
            else:
                entry = UtteranceLogEntry.from_dict(record)
                e_tag = record.get("e_tag") or WILDCARD_E_TAG
            entry.append(utterance)

            try:
                await self._storage.write({key: {**entry.to_dict(), "e_tag": e_tag}})
            except StoreWriteError as exc:
                logger.warning("Utterance log write failed", key=key, err=str(exc))
                return AppendResult(entry, write_error=exc)

        logger.debug("Utterance logged", key=key, turn_number=entry.turn_number)
        return AppendResult(entry)
