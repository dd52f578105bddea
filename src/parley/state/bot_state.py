"""Scoped, typed state on top of a Storage backend.

A BotState owns one storage record per scope id (one per conversation, or
one per user). The record is read at most once per turn and cached on the
turn context; typed schema instances handed out during the turn are
serialised back into it by ``save_changes()`` at the end of the turn.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar, Protocol, Self

from parley.state.storage import WILDCARD_E_TAG, Storage

if TYPE_CHECKING:
    from parley.connector import TurnContext


class StateSchema(Protocol):
    property_name: ClassVar[str]

    def to_dict(self) -> dict[str, Any]: ...

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Self: ...


@dataclass
class _CachedState:
    record: dict[str, Any]
    fingerprint: str
    instances: dict[str, StateSchema] = field(default_factory=dict)


def _fingerprint(record: dict[str, Any]) -> str:
    return json.dumps(record, sort_keys=True)


class BotState:
    """Base class for conversation- and user-scoped state."""

    scope: ClassVar[str] = ""

    def __init__(self, storage: Storage) -> None:
        self._storage = storage
        self._cache_key = f"{type(self).__name__}.cache"

    def scope_id(self, ctx: TurnContext) -> str:
        raise NotImplementedError

    def storage_key(self, ctx: TurnContext) -> str:
        return f"{ctx.activity.address.channel_id}/{self.scope}/{self.scope_id(ctx)}"

    async def load(self, ctx: TurnContext, *, force: bool = False) -> None:
        """Read the scope record into the turn cache. Raises StoreReadError."""
        if not force and self._cache_key in ctx.turn_state:
            return
        key = self.storage_key(ctx)
        items = await self._storage.read([key])
        record = {k: v for k, v in items.get(key, {}).items() if k != "e_tag"}
        ctx.turn_state[self._cache_key] = _CachedState(record, _fingerprint(record))

    async def get[T: StateSchema](self, ctx: TurnContext, schema: type[T]) -> T:
        """Load-or-default: the stored instance, or ``schema()`` if there is none."""
        await self.load(ctx)
        cached: _CachedState = ctx.turn_state[self._cache_key]
        name = schema.property_name
        if name not in cached.instances:
            raw = cached.record.get(name)
            cached.instances[name] = schema.from_dict(raw) if raw is not None else schema()
        return cached.instances[name]  # type: ignore[return-value]

    async def set(self, ctx: TurnContext, value: StateSchema) -> None:
        await self.load(ctx)
        cached: _CachedState = ctx.turn_state[self._cache_key]
        cached.instances[value.property_name] = value

    async def delete(self, ctx: TurnContext, schema: type[StateSchema]) -> None:
        await self.load(ctx)
        cached: _CachedState = ctx.turn_state[self._cache_key]
        cached.instances.pop(schema.property_name, None)
        cached.record.pop(schema.property_name, None)

    def create_property[T: StateSchema](self, schema: type[T]) -> StatePropertyAccessor[T]:
        return StatePropertyAccessor(self, schema)

    async def save_changes(self, ctx: TurnContext, *, force: bool = False) -> bool:
        """Write the scope record if anything changed this turn.

        Returns True when a write happened. Nothing is written when the
        record was never loaded this turn. Raises StoreWriteError.
        """
        cached: _CachedState | None = ctx.turn_state.get(self._cache_key)
        if cached is None:
            return False
        for name, instance in cached.instances.items():
            cached.record[name] = instance.to_dict()
        fingerprint = _fingerprint(cached.record)
        if not force and fingerprint == cached.fingerprint:
            return False
        # Scoped state is last-write-wins; only the utterance log uses
        # versioned writes.
        key = self.storage_key(ctx)
        await self._storage.write({key: {**cached.record, "e_tag": WILDCARD_E_TAG}})
        cached.fingerprint = fingerprint
        return True


class ConversationState(BotState):
    scope = "conversations"

    def scope_id(self, ctx: TurnContext) -> str:
        return ctx.activity.address.conversation_id


class UserState(BotState):
    scope = "users"

    def scope_id(self, ctx: TurnContext) -> str:
        return ctx.activity.address.user_id


class StatePropertyAccessor[T: StateSchema]:
    """Durable handle to one typed property, given to code that owns that state."""

    def __init__(self, state: BotState, schema: type[T]) -> None:
        self._state = state
        self._schema = schema

    @property
    def name(self) -> str:
        return self._schema.property_name

    async def get(self, ctx: TurnContext) -> T:
        return await self._state.get(ctx, self._schema)

    async def set(self, ctx: TurnContext, value: T) -> None:
        await self._state.set(ctx, value)

    async def delete(self, ctx: TurnContext) -> None:
        await self._state.delete(ctx, self._schema)
