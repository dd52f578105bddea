"""Tests for the key-value backing stores and their e_tag semantics."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import aiosqlite
import pytest

from parley.errors import ETagConflictError, StoreReadError, StoreWriteError
from parley.state import MemoryStorage, SqliteStorage


@pytest.fixture(params=["memory", "sqlite"])
async def storage(request):
    if request.param == "memory":
        yield MemoryStorage()
        return
    store = await SqliteStorage.open(":memory:")
    yield store
    await store.close()


class TestReadWrite:
    async def test_missing_key_is_absent_not_defaulted(self, storage):
        assert await storage.read(["nope"]) == {}

    async def test_write_then_read(self, storage):
        await storage.write({"a": {"x": 1, "items": ["p", "q"]}})
        found = await storage.read(["a", "b"])
        assert set(found) == {"a"}
        assert found["a"]["x"] == 1
        assert found["a"]["items"] == ["p", "q"]
        assert found["a"]["e_tag"]

    async def test_every_write_changes_e_tag(self, storage):
        await storage.write({"a": {"x": 1}})
        first = (await storage.read(["a"]))["a"]["e_tag"]
        await storage.write({"a": {"x": 2}})
        second = (await storage.read(["a"]))["a"]["e_tag"]
        assert first != second

    async def test_wildcard_is_last_write_wins(self, storage):
        await storage.write({"a": {"x": 1}})
        await storage.write({"a": {"x": 2, "e_tag": "*"}})
        assert (await storage.read(["a"]))["a"]["x"] == 2

    async def test_matching_e_tag_succeeds(self, storage):
        await storage.write({"a": {"x": 1}})
        current = (await storage.read(["a"]))["a"]
        current["x"] = 5
        await storage.write({"a": current})
        assert (await storage.read(["a"]))["a"]["x"] == 5

    async def test_stale_e_tag_conflicts(self, storage):
        await storage.write({"a": {"x": 1}})
        stale = (await storage.read(["a"]))["a"]
        await storage.write({"a": {"x": 2}})

        with pytest.raises(ETagConflictError) as exc_info:
            await storage.write({"a": {**stale, "x": 3}})
        assert isinstance(exc_info.value, StoreWriteError)
        assert (await storage.read(["a"]))["a"]["x"] == 2

    async def test_conflict_leaves_other_records_unwritten(self, storage):
        await storage.write({"a": {"x": 1}})
        with pytest.raises(ETagConflictError):
            await storage.write({"b": {"y": 1}, "a": {"x": 9, "e_tag": "stale"}})
        assert await storage.read(["b"]) == {}

    async def test_delete(self, storage):
        await storage.write({"a": {"x": 1}, "b": {"x": 2}})
        await storage.delete(["a", "missing"])
        assert set(await storage.read(["a", "b"])) == {"b"}

    async def test_values_are_copied(self, storage):
        value = {"items": ["one"]}
        await storage.write({"a": value})
        value["items"].append("two")
        read = (await storage.read(["a"]))["a"]
        read["items"].append("three")
        assert (await storage.read(["a"]))["a"]["items"] == ["one"]

    async def test_unserialisable_value_is_a_write_error(self, storage):
        with pytest.raises(StoreWriteError):
            await storage.write({"a": {"when": object()}})


async def test_memory_storage_concurrent_writers_to_different_keys():
    storage = MemoryStorage()
    await asyncio.gather(*(storage.write({f"k{i}": {"i": i}}) for i in range(20)))
    assert len(storage) == 20


class TestSqliteErrors:
    async def test_read_failure_is_wrapped(self):
        db = AsyncMock()
        db.execute.side_effect = aiosqlite.OperationalError("disk I/O error")
        with pytest.raises(StoreReadError):
            await SqliteStorage(db).read(["a"])

    async def test_write_failure_is_wrapped_and_rolled_back(self):
        db = AsyncMock()
        db.execute.side_effect = aiosqlite.OperationalError("database is locked")
        with pytest.raises(StoreWriteError):
            await SqliteStorage(db).write({"a": {"x": 1}})
        db.rollback.assert_awaited_once()

    async def test_corrupt_row_is_a_read_error(self):
        store = await SqliteStorage.open(":memory:")
        try:
            await store.write({"a": {"x": 1}})
            await store._db.execute(
                "UPDATE store_items SET value_json = ? WHERE key = ?", ("{not json", "a")
            )
            await store._db.commit()

            with pytest.raises(StoreReadError, match="Corrupt record"):
                await store.read(["a"])
        finally:
            await store.close()

    async def test_survives_reopen(self, tmp_path):
        path = tmp_path / "state.db"
        store = await SqliteStorage.open(path)
        await store.write({"a": {"x": 1}})
        await store.close()

        reopened = await SqliteStorage.open(path)
        try:
            assert (await reopened.read(["a"]))["a"]["x"] == 1
        finally:
            await reopened.close()
