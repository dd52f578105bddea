"""Key-value backing stores for bot state.

Records are JSON-compatible dicts. Every stored record carries an ``e_tag``
that changes on each write. Writing a record whose ``e_tag`` is ``"*"`` (or
absent) is last-write-wins; any other ``e_tag`` must match the stored one or
the write fails with ETagConflictError.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol

import aiosqlite

from parley.errors import ETagConflictError, StoreReadError, StoreWriteError
from parley.logger import logger

WILDCARD_E_TAG = "*"

type StoreRecord = dict[str, Any]


class Storage(Protocol):
    async def read(self, keys: Iterable[str]) -> dict[str, StoreRecord]:
        """Return the records found for *keys*. Missing keys are absent from the result."""
        ...

    async def write(self, changes: dict[str, StoreRecord]) -> None: ...

    async def delete(self, keys: Iterable[str]) -> None: ...


def _new_e_tag() -> str:
    return uuid.uuid4().hex


def _check_e_tag(key: str, incoming: StoreRecord, current_e_tag: str | None) -> None:
    expected = incoming.get("e_tag") or WILDCARD_E_TAG
    if expected == WILDCARD_E_TAG:
        return
    if expected != current_e_tag:
        raise ETagConflictError(key, expected, current_e_tag)


def _encode(key: str, record: StoreRecord) -> str:
    body = {k: v for k, v in record.items() if k != "e_tag"}
    try:
        return json.dumps(body)
    except (TypeError, ValueError) as exc:
        raise StoreWriteError(f"Record {key!r} is not JSON-serialisable: {exc}") from exc


class MemoryStorage:
    """In-process storage. Values are copied in and out as JSON."""

    def __init__(self) -> None:
        self._items: dict[str, tuple[str, str]] = {}  # key → (value_json, e_tag)
        self._lock = asyncio.Lock()

    async def read(self, keys: Iterable[str]) -> dict[str, StoreRecord]:
        async with self._lock:
            found: dict[str, StoreRecord] = {}
            for key in keys:
                if key in self._items:
                    value_json, e_tag = self._items[key]
                    found[key] = {**json.loads(value_json), "e_tag": e_tag}
            return found

    async def write(self, changes: dict[str, StoreRecord]) -> None:
        async with self._lock:
            # Validate every record before applying any, so a conflict
            # leaves the store untouched.
            encoded: dict[str, str] = {}
            for key, record in changes.items():
                current = self._items.get(key)
                _check_e_tag(key, record, current[1] if current else None)
                encoded[key] = _encode(key, record)
            for key, value_json in encoded.items():
                self._items[key] = (value_json, _new_e_tag())

    async def delete(self, keys: Iterable[str]) -> None:
        async with self._lock:
            for key in keys:
                self._items.pop(key, None)

    def __len__(self) -> int:
        return len(self._items)


_SCHEMA = """
CREATE TABLE IF NOT EXISTS store_items (
    key TEXT PRIMARY KEY,
    value_json TEXT NOT NULL,
    e_tag TEXT NOT NULL,
    updated_at TEXT NOT NULL
)
"""


class SqliteStorage:
    """aiosqlite-backed storage for state that should survive restarts.

    A single connection is shared by every coroutine, so all writes go
    through one lock and one transaction; see ``write()``.
    """

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db
        self._write_lock = asyncio.Lock()

    @classmethod
    async def open(cls, path: Path | str) -> SqliteStorage:
        if str(path) != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        db = await aiosqlite.connect(str(path))
        db.row_factory = aiosqlite.Row
        await db.execute(_SCHEMA)
        await db.commit()
        logger.info("State database opened", path=str(path))
        return cls(db)

    async def close(self) -> None:
        await self._db.close()

    async def read(self, keys: Iterable[str]) -> dict[str, StoreRecord]:
        keys = list(keys)
        if not keys:
            return {}
        placeholders = ", ".join("?" for _ in keys)
        try:
            cursor = await self._db.execute(
                f"SELECT key, value_json, e_tag FROM store_items WHERE key IN ({placeholders})",
                keys,
            )
            rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise StoreReadError(f"Failed to read {keys}: {exc}") from exc
        items: dict[str, StoreRecord] = {}
        for row in rows:
            try:
                value = json.loads(row["value_json"])
            except ValueError as exc:
                raise StoreReadError(f"Corrupt record under {row['key']!r}: {exc}") from exc
            items[row["key"]] = {**value, "e_tag": row["e_tag"]}
        return items

    async def write(self, changes: dict[str, StoreRecord]) -> None:
        if not changes:
            return
        now = datetime.now(UTC).isoformat()
        async with self._write_lock:
            try:
                for key, record in changes.items():
                    cursor = await self._db.execute(
                        "SELECT e_tag FROM store_items WHERE key = ?", (key,)
                    )
                    row = await cursor.fetchone()
                    _check_e_tag(key, record, row["e_tag"] if row else None)
                    await self._db.execute(
                        "INSERT INTO store_items (key, value_json, e_tag, updated_at)"
                        " VALUES (?, ?, ?, ?)"
                        " ON CONFLICT(key) DO UPDATE SET"
                        " value_json = excluded.value_json,"
                        " e_tag = excluded.e_tag,"
                        " updated_at = excluded.updated_at",
                        (key, _encode(key, record), _new_e_tag(), now),
                    )
                await self._db.commit()
            except StoreWriteError:
                await self._db.rollback()
                raise
            except aiosqlite.Error as exc:
                await self._db.rollback()
                raise StoreWriteError(f"Failed to write {list(changes)}: {exc}") from exc

    async def delete(self, keys: Iterable[str]) -> None:
        keys = list(keys)
        if not keys:
            return
        placeholders = ", ".join("?" for _ in keys)
        async with self._write_lock:
            try:
                await self._db.execute(
                    f"DELETE FROM store_items WHERE key IN ({placeholders})", keys
                )
                await self._db.commit()
            except aiosqlite.Error as exc:
                await self._db.rollback()
                raise StoreWriteError(f"Failed to delete {keys}: {exc}") from exc
