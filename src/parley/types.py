"""Data models for Parley."""

from __future__ import annotations

import enum
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar, Protocol

if TYPE_CHECKING:
    from parley.connector import TurnContext
    from parley.state.bot_state import StatePropertyAccessor


class ActivityType(enum.StrEnum):
    MESSAGE = "message"
    CONVERSATION_UPDATE = "conversationUpdate"


@dataclass(frozen=True)
class ConversationAddress:
    """Everything needed to resume a conversation without a new inbound message."""

    channel_id: str
    service_url: str
    conversation_id: str
    user_id: str
    bot_id: str = ""


@dataclass
class Activity:
    """An inbound event from the channel (message, conversation update, ...)."""

    type: str
    address: ConversationAddress
    text: str = ""
    id: str = ""

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Activity:
        """Parse a Bot-Framework-style activity payload.

        Raises ValueError when a field needed to address the conversation
        is missing.
        """
        try:
            address = ConversationAddress(
                channel_id=raw["channelId"],
                service_url=raw["serviceUrl"],
                conversation_id=raw["conversation"]["id"],
                user_id=raw["from"]["id"],
                bot_id=(raw.get("recipient") or {}).get("id", ""),
            )
            activity_type = raw["type"]
        except (KeyError, TypeError) as exc:
            msg = f"Activity is missing required field: {exc}"
            raise ValueError(msg) from exc
        return cls(
            type=activity_type,
            address=address,
            text=raw.get("text") or "",
            id=raw.get("id") or "",
        )


# ---------------------------------------------------------------------------
# Scoped state schemas
#
# Each schema names the property it is stored under within its scope record
# and knows how to build itself from that record. A missing record means
# "construct the default".
# ---------------------------------------------------------------------------


@dataclass
class ConversationScopedState:
    property_name: ClassVar[str] = "ConversationData"

    prompted_for_name: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ConversationScopedState:
        return cls(prompted_for_name=bool(raw.get("prompted_for_name", False)))


@dataclass
class UserScopedState:
    property_name: ClassVar[str] = "UserProfile"

    name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> UserScopedState:
        return cls(name=raw.get("name") or None)


@dataclass
class DialogState:
    """Opaque state owned by the dialog executor."""

    property_name: ClassVar[str] = "DialogState"

    stack: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> DialogState:
        return cls(stack=list(raw.get("stack", [])))


@dataclass
class UtteranceLogEntry:
    utterances: list[str] = field(default_factory=list)
    turn_number: int = 0

    def append(self, utterance: str) -> None:
        self.utterances.append(utterance)
        self.turn_number += 1

    def to_dict(self) -> dict[str, Any]:
        return {"utterances": list(self.utterances), "turn_number": self.turn_number}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> UtteranceLogEntry:
        return cls(
            utterances=list(raw.get("utterances", [])),
            turn_number=int(raw.get("turn_number", 0)),
        )


class NameFlowState(enum.Enum):
    """Where a conversation stands in collecting the user's name."""

    NOT_PROMPTED = "not_prompted"
    PROMPTED = "prompted"
    READY = "ready"

    @classmethod
    def of(cls, user: UserScopedState, conversation: ConversationScopedState) -> NameFlowState:
        if user.name:
            return cls.READY
        if conversation.prompted_for_name:
            return cls.PROMPTED
        return cls.NOT_PROMPTED


# ---------------------------------------------------------------------------
# Collaborator seams
# ---------------------------------------------------------------------------

type TurnCallback = Callable[[TurnContext], Awaitable[None]]


class ChannelAdapter(Protocol):
    async def continue_conversation(
        self, app_id: str, address: ConversationAddress, callback: TurnCallback
    ) -> None:
        """Rebuild a sendable context for *address* and invoke *callback* with it.

        Raises DeliveryError when the conversation cannot be reached.
        """
        ...


class Dialog(Protocol):
    async def run(self, ctx: TurnContext, state: StatePropertyAccessor) -> None: ...
