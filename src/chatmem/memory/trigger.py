"""
Decides when a conversation has gathered enough new turns to summarise.

Only user/assistant messages count. The checkpoint is the end of the range
covered by the conversation's most recent memory.
"""
from typing import List, Optional, Sequence, Union
from sqlmodel import Session, select, col
from chatmem.models.core import Agent, AgentMessage, Conversation, Message, MessageRole
from chatmem.memory.settings import MemorySettings, resolve_memory_settings
from chatmem.memory.store import get_latest_memory
from chatmem.logging import logger

TURN_ROLES = (MessageRole.USER.value, MessageRole.ASSISTANT.value)

ChatRecord = Union[Message, AgentMessage]


def is_turn(role: str) -> bool:
    return role in TURN_ROLES


def count_turns(messages: Sequence) -> int:
    """Number of user/assistant entries in a list of messages (dicts or records)."""
    return sum(1 for m in messages if is_turn(_role_of(m)))


def _role_of(message) -> str:
    role = message["role"] if isinstance(message, dict) else message.role
    return role.value if isinstance(role, MessageRole) else role


def load_conversation_turns(session: Session, conversation: Conversation) -> List[ChatRecord]:
    """User/assistant history of a conversation, oldest first, from the table it lives in."""
    model = AgentMessage if conversation.agent_id else Message
    return list(session.exec(
        select(model)
        .where(model.conversation_id == conversation.id, col(model.role).in_(TURN_ROLES))
        .order_by(col(model.id))
    ).all())


def last_covered_turn(session: Session, conversation_id: str) -> int:
    """Checkpoint: the last turn already folded into a memory (0 if none)."""
    latest = get_latest_memory(session, conversation_id)
    return latest.covered_until if latest else 0


def memory_active_for(
    session: Session, agent_id: Optional[int], settings: Optional[MemorySettings] = None
) -> bool:
    """Both the owner's preference and the agent's own flag must allow memory."""
    if not agent_id:
        return False
    settings = settings or resolve_memory_settings(session, agent_id)
    if not settings.memory_enabled:
        return False
    agent = session.get(Agent, agent_id)
    return bool(agent and agent.memory_enabled)


def should_trigger_memory(session: Session, conversation_id: str, agent_id: Optional[int]) -> bool:
    """
    True when the turns added since the last checkpoint reach the configured window.

    Read-only; repeated calls without new messages give the same answer.
    """
    try:
        settings = resolve_memory_settings(session, agent_id)
        if not memory_active_for(session, agent_id, settings):
            return False

        conversation = session.get(Conversation, conversation_id)
        if not conversation:
            logger.debug(f"Conversation {conversation_id} not found; no memory trigger")
            return False

        total_turns = len(load_conversation_turns(session, conversation))
        if total_turns == 0:
            return False

        last_covered = last_covered_turn(session, conversation_id)
        new_turns = max(0, total_turns - last_covered)
        threshold = settings.trigger_turns

        logger.debug(
            f"Memory trigger check: total={total_turns} covered={last_covered} "
            f"new={new_turns} threshold={threshold}"
        )
        return new_turns >= threshold
    except Exception:
        logger.exception(f"Memory trigger check failed for conversation {conversation_id}")
        return False
