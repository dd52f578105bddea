"""Turn router — decides what each inbound activity does.

Every message turn registers the conversation for proactive delivery, adds
the text to the utterance log, and then walks the name-collection state
machine:

    NOT_PROMPTED ──ask for name──▶ PROMPTED ──store name──▶ READY ⟲ dialog

Conversation and user state are saved once, when the turn ends, whatever
happened during it.
"""

from __future__ import annotations

from parley.connector import TurnContext
from parley.errors import StoreReadError, StoreWriteError
from parley.logger import logger, turn_context
from parley.registry import ConversationRegistry
from parley.state.bot_state import BotState, ConversationState, UserState
from parley.types import (
    ActivityType,
    ConversationScopedState,
    Dialog,
    DialogState,
    NameFlowState,
    UserScopedState,
)
from parley.utterance_log import UtteranceLog, format_entry

NAME_PROMPT = "Hello! What is your name?"
LOG_READ_FAILED = "Sorry, something went wrong reading your stored messages!"
LOG_WRITE_FAILED = "Sorry, something went wrong storing your message!"
STATE_READ_FAILED = "Sorry, something went wrong loading your profile!"
STATE_WRITE_FAILED = "Sorry, something went wrong saving your profile!"


class DialogBot:
    def __init__(
        self,
        conversation_state: ConversationState,
        user_state: UserState,
        dialog: Dialog,
        registry: ConversationRegistry,
        utterance_log: UtteranceLog,
    ) -> None:
        self._conversation_state = conversation_state
        self._user_state = user_state
        self._dialog = dialog
        self._registry = registry
        self._utterance_log = utterance_log
        self._dialog_state = conversation_state.create_property(DialogState)

    async def on_turn(self, ctx: TurnContext) -> None:
        with turn_context(ctx.activity.address):
            try:
                match ctx.activity.type:
                    case ActivityType.MESSAGE:
                        await self.on_message_activity(ctx)
                    case ActivityType.CONVERSATION_UPDATE:
                        await self.on_conversation_update_activity(ctx)
                    case _:
                        logger.debug("Ignoring activity", activity_type=ctx.activity.type)
            finally:
                await self._save_state(ctx)

    async def on_conversation_update_activity(self, ctx: TurnContext) -> None:
        self._registry.register(ctx.activity)

    async def on_message_activity(self, ctx: TurnContext) -> None:
        activity = ctx.activity
        logger.info("Message turn")
        self._registry.register(activity)
        await self._log_utterance(ctx)

        conversation = await self._load(ctx, self._conversation_state, ConversationScopedState)
        user = await self._load(ctx, self._user_state, UserScopedState)

        match NameFlowState.of(user, conversation):
            case NameFlowState.NOT_PROMPTED:
                await ctx.send_activity(NAME_PROMPT)
                conversation.prompted_for_name = True
            case NameFlowState.PROMPTED:
                name = activity.text.strip()
                if not name:
                    await ctx.send_activity(NAME_PROMPT)
                    return
                user.name = name
                await ctx.send_activity(f"Thanks, {name}!")
            case NameFlowState.READY:
                await self._dialog.run(ctx, self._dialog_state)

    async def _log_utterance(self, ctx: TurnContext) -> None:
        key = self._utterance_log.key_for(ctx.activity.address)
        result = await self._utterance_log.append(ctx.activity.text, key=key)
        if result.read_error is not None:
            await ctx.send_activity(LOG_READ_FAILED)
        await ctx.send_activity(format_entry(result.entry))
        if result.write_error is not None:
            await ctx.send_activity(LOG_WRITE_FAILED)

    async def _load[T: (ConversationScopedState, UserScopedState)](
        self, ctx: TurnContext, state: BotState, schema: type[T]
    ) -> T:
        """Load-or-default; an unreadable record degrades to an unsaved default."""
        try:
            return await state.get(ctx, schema)
        except StoreReadError as exc:
            logger.warning("State load failed", scope=state.scope, err=str(exc))
            await ctx.send_activity(STATE_READ_FAILED)
            return schema()

    async def _save_state(self, ctx: TurnContext) -> None:
        failed = False
        for state in (self._conversation_state, self._user_state):
            try:
                await state.save_changes(ctx)
            except StoreWriteError as exc:
                failed = True
                logger.error("State save failed", scope=state.scope, err=str(exc))
        if failed:
            await ctx.send_activity(STATE_WRITE_FAILED)
