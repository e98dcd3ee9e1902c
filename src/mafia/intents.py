"""Routing of interactive button clicks to orchestrator operations."""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from .orchestrator import (
    CANCEL_ACTION,
    JOIN_ACTION,
    KILL_ACTION_PREFIX,
    VOTE_ACTION_PREFIX,
    RoundOrchestrator,
)
from .players import PlayerId

log = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class IntentContext:
    """Who clicked a button, and in which conversation."""

    sender_id: PlayerId
    sender_name: str
    conversation_id: str
    is_direct: bool = False


async def dispatch_intent(
    orchestrator: RoundOrchestrator, action_id: str, context: IntentContext
) -> None:
    """Handle one button click.

    Join and cancel buttons work from any conversation, kill buttons only in a
    direct channel and vote buttons only in a group.
    """

    log.info(
        "intent_received",
        action_id=action_id,
        sender_id=context.sender_id,
        conversation_id=context.conversation_id,
    )
    reply_to = context.conversation_id
    if action_id == JOIN_ACTION:
        await orchestrator.join(context.sender_id, context.sender_name, reply_to)
    elif action_id == CANCEL_ACTION:
        await orchestrator.cancel(context.sender_id, reply_to)
    elif action_id.startswith(KILL_ACTION_PREFIX):
        if not context.is_direct:
            await orchestrator.reply(
                reply_to, "❌ Kill commands can only be used in private messages (DMs)."
            )
            return
        target_id = action_id[len(KILL_ACTION_PREFIX):]
        await orchestrator.attempt_kill_on(context.sender_id, target_id, reply_to)
    elif action_id.startswith(VOTE_ACTION_PREFIX):
        if context.is_direct:
            await orchestrator.reply(reply_to, "❌ Voting must be done in the game lobby group.")
            return
        target_id = action_id[len(VOTE_ACTION_PREFIX):]
        await orchestrator.cast_vote_for(context.sender_id, target_id, reply_to)
    else:
        await orchestrator.reply(reply_to, f"❌ Unknown action: {action_id}")
