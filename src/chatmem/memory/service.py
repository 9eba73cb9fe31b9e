"""
Entry points the chat host calls.

``run_memory_check`` is the post-turn hook: call it after the turn's
messages are persisted. It never raises.
"""
import threading
from collections import OrderedDict
from typing import Optional

from sqlmodel import Session

from chatmem.memory.context import build_memory_context
from chatmem.memory.settings import resolve_memory_settings
from chatmem.memory.summarizer import MemoryContext, generate_memory
from chatmem.memory.trigger import load_conversation_turns, should_trigger_memory
from chatmem.models.core import Agent, Conversation
from chatmem.models.memory import ConversationMemory
from chatmem.logging import logger, bind_conversation

__all__ = [
    "should_trigger_memory",
    "generate_memory",
    "get_memory_context",
    "run_memory_check",
    "force_generate_memory",
]

# Per-conversation locks, least recently used first. Idle locks are evicted past the cap.
MAX_CONVERSATION_LOCKS = 1024

_locks_guard = threading.Lock()
_conversation_locks: "OrderedDict[str, threading.Lock]" = OrderedDict()


def _evict_idle_locks() -> None:
    while len(_conversation_locks) >= MAX_CONVERSATION_LOCKS:
        idle = next((key for key, lock in _conversation_locks.items() if not lock.locked()), None)
        if idle is None:
            # Every lock is held; grow past the cap rather than drop one
            break
        del _conversation_locks[idle]


def _conversation_lock(conversation_id: str) -> threading.Lock:
    with _locks_guard:
        lock = _conversation_locks.get(conversation_id)
        if lock is not None:
            _conversation_locks.move_to_end(conversation_id)
            return lock
        _evict_idle_locks()
        lock = threading.Lock()
        _conversation_locks[conversation_id] = lock
        return lock


def get_memory_context(session: Session, conversation_id: str, agent_id: Optional[int]) -> str:
    return build_memory_context(session, conversation_id, agent_id)


def _summarize(session: Session, conversation: Conversation, agent_id: Optional[int]) -> Optional[ConversationMemory]:
    messages = load_conversation_turns(session, conversation)
    if not messages:
        logger.info(f"Conversation {conversation.id} has no turns to summarise")
        return None
    context = MemoryContext(
        conversation_id=conversation.id,
        agent_id=agent_id,
        messages=messages,
        settings=resolve_memory_settings(session, agent_id),
    )
    return generate_memory(session, context)


def run_memory_check(session: Session, conversation_id: str, agent_id: Optional[int]) -> Optional[ConversationMemory]:
    """Summarise the conversation if enough new turns have accumulated."""
    with bind_conversation(conversation_id), _conversation_lock(conversation_id):
        try:
            if not should_trigger_memory(session, conversation_id, agent_id):
                return None
            conversation = session.get(Conversation, conversation_id)
            if not conversation:
                return None
            logger.info(f"Memory trigger fired for conversation {conversation_id}")
            return _summarize(session, conversation, agent_id)
        except Exception:
            logger.exception(f"Memory check failed for conversation {conversation_id}")
            return None


def force_generate_memory(session: Session, conversation_id: str, agent_id: Optional[int]) -> Optional[ConversationMemory]:
    """Summarise now, regardless of the trigger threshold."""
    with bind_conversation(conversation_id), _conversation_lock(conversation_id):
        try:
            conversation = session.get(Conversation, conversation_id)
            if not conversation:
                logger.warning(f"Conversation {conversation_id} not found")
                return None
            if not agent_id or not session.get(Agent, agent_id):
                logger.warning(f"Agent {agent_id} not found; cannot summarise {conversation_id}")
                return None
            return _summarize(session, conversation, agent_id)
        except Exception:
            logger.exception(f"Forced memory generation failed for conversation {conversation_id}")
            return None
