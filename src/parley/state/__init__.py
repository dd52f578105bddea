"""Bot state: key-value backing stores and typed scoped state on top of them.

  storage    — Storage protocol, MemoryStorage, SqliteStorage
  bot_state  — ConversationState / UserState, typed property accessors
"""

from parley.state.bot_state import (
    BotState,
    ConversationState,
    StatePropertyAccessor,
    StateSchema,
    UserState,
)
from parley.state.storage import (
    WILDCARD_E_TAG,
    MemoryStorage,
    SqliteStorage,
    Storage,
    StoreRecord,
)

__all__ = [
    "WILDCARD_E_TAG",
    "BotState",
    "ConversationState",
    "MemoryStorage",
    "SqliteStorage",
    "StatePropertyAccessor",
    "StateSchema",
    "Storage",
    "StoreRecord",
    "UserState",
]
