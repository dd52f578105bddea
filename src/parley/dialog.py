"""Dialog executors — what runs once the bot knows who it is talking to.

The turn router treats a dialog as a black box: it hands over the turn and
a durable handle to the dialog's own state, and waits for it to return.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from parley.logger import logger
from parley.types import DialogState

if TYPE_CHECKING:
    from parley.connector import TurnContext
    from parley.state.bot_state import StatePropertyAccessor


class EchoDialog:
    """Echoes the user's text and counts how many turns it has handled."""

    dialog_id = "echo"

    async def run(self, ctx: TurnContext, state: StatePropertyAccessor[DialogState]) -> None:
        dialog_state = await state.get(ctx)
        if not dialog_state.stack or dialog_state.stack[-1].get("id") != self.dialog_id:
            dialog_state.stack.append({"id": self.dialog_id, "turns": 0})
        frame = dialog_state.stack[-1]
        frame["turns"] = frame.get("turns", 0) + 1
        await state.set(ctx, dialog_state)

        logger.debug("Echo dialog turn", turns=frame["turns"])
        await ctx.send_activity(f"You said: {ctx.activity.text}")
