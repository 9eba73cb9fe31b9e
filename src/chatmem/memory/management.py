"""
User-facing memory management: inspect, edit, delete and reset.

Unlike the summarisation path these operations are interactive, so
problems are raised as typed exceptions for the caller to show.
"""
import json
from typing import Any, Dict, List, Mapping, Optional, Union

from sqlmodel import Session

from chatmem.memory import store
from chatmem.memory.settings import resolve_memory_settings
from chatmem.memory.trigger import should_trigger_memory
from chatmem.models.core import Agent, Conversation
from chatmem.models.memory import ConversationMemory, MemoryContent, MemoryType
from chatmem.logging import logger


class MemoryNotFoundError(LookupError):
    pass


class ConversationNotFoundError(LookupError):
    pass


class AgentNotFoundError(LookupError):
    pass


class InvalidMemoryError(ValueError):
    pass


def _require_memory(session: Session, memory_id: int) -> ConversationMemory:
    memory = store.get_memory(session, memory_id)
    if not memory:
        raise MemoryNotFoundError(f"Memory {memory_id} not found")
    return memory


def _require_conversation(session: Session, conversation_id: str) -> Conversation:
    conversation = session.get(Conversation, conversation_id)
    if not conversation:
        raise ConversationNotFoundError(f"Conversation {conversation_id} not found")
    return conversation


def _require_agent(session: Session, agent_id: int) -> Agent:
    agent = session.get(Agent, agent_id)
    if not agent:
        raise AgentNotFoundError(f"Agent {agent_id} not found")
    return agent


def memory_to_dict(memory: ConversationMemory) -> Dict[str, Any]:
    # Attribute access, not model_dump: rows expired by a commit must reload first
    return {
        "id": memory.id,
        "conversation_id": memory.conversation_id,
        "agent_id": memory.agent_id,
        "memory_type": MemoryType(memory.memory_type).value,
        "content": memory.content,
        "source_message_range": memory.source_message_range,
        "importance_score": memory.importance_score,
        "tokens_saved": memory.tokens_saved,
        "created_at": memory.created_at,
        "expires_at": memory.expires_at,
    }


def _with_parsed_content(memory: ConversationMemory) -> Dict[str, Any]:
    parsed = memory.parsed_content() or MemoryContent.from_raw_text(memory.content)
    data = memory_to_dict(memory)
    data["parsed_content"] = parsed.to_dict()
    return data


def get_memory_detail(session: Session, memory_id: int) -> Dict[str, Any]:
    memory = _require_memory(session, memory_id)
    parsed = memory.parsed_content()
    data = memory_to_dict(memory)
    data["parsed_content"] = parsed.to_dict() if parsed else {"summary": memory.content}
    return data


def update_memory_entry(
    session: Session,
    memory_id: int,
    content: Union[str, Mapping[str, Any], None],
    importance_score: Optional[float] = None,
    memory_type: Union[MemoryType, str, None] = None,
) -> Dict[str, Any]:
    """
    Replace a memory's content; importance and type keep their stored values when omitted.

    Mapping content is stored as JSON.
    """
    memory = _require_memory(session, memory_id)

    if not content:
        raise InvalidMemoryError("content must not be empty")
    if isinstance(content, str):
        if not content.strip():
            raise InvalidMemoryError("content must not be empty")
        serialized = content
    else:
        serialized = json.dumps(dict(content), ensure_ascii=False)

    if importance_score is None:
        importance_score = memory.importance_score
    elif not 0.0 <= importance_score <= 1.0:
        raise InvalidMemoryError("importance_score must be between 0 and 1")

    if memory_type is None:
        memory_type = MemoryType(memory.memory_type)
    else:
        try:
            memory_type = MemoryType(memory_type)
        except ValueError:
            allowed = ", ".join(t.value for t in MemoryType)
            raise InvalidMemoryError(f"memory_type must be one of {allowed}")

    if not store.update_memory(session, memory_id, serialized, importance_score, memory_type):
        raise InvalidMemoryError(f"Failed to update memory {memory_id}")
    logger.info(f"Memory {memory_id} updated")
    return get_memory_detail(session, memory_id)


def delete_memory_entry(session: Session, memory_id: int) -> None:
    _require_memory(session, memory_id)
    if not store.delete_memory(session, memory_id):
        raise InvalidMemoryError(f"Failed to delete memory {memory_id}")
    logger.info(f"Memory {memory_id} deleted")


def list_conversation_memories(session: Session, conversation_id: str) -> Dict[str, Any]:
    """
    Memories visible from a conversation.

    Agent conversations see everything their agent remembers, across
    conversations; each entry says which conversation it came from.
    """
    conversation = _require_conversation(session, conversation_id)
    agent_id = conversation.agent_id

    if agent_id:
        memories = store.get_memories_by_agent(session, agent_id)
        stats = store.get_agent_memory_stats(session, agent_id)
    else:
        memories = store.get_memories_by_conversation(session, conversation_id)
        stats = store.get_conversation_memory_stats(session, conversation_id)

    entries = []
    for memory in memories:
        entry = _with_parsed_content(memory)
        if memory.conversation_id == conversation_id:
            entry["source"] = "current conversation"
        else:
            entry["source"] = f"from conversation {memory.conversation_id}"
        entries.append(entry)

    return {
        "memories": entries,
        "stats": stats,
        "agent_id": agent_id,
        "memory_scope": "agent" if agent_id else "conversation",
    }


def list_agent_memories(session: Session, agent_id: int) -> Dict[str, Any]:
    _require_agent(session, agent_id)
    memories = store.get_memories_by_agent(session, agent_id)
    return {
        "memories": [_with_parsed_content(m) for m in memories],
        "stats": store.get_agent_memory_stats(session, agent_id),
        "agent_id": agent_id,
    }


def get_memory_status(session: Session, conversation_id: str, agent_id: Optional[int] = None) -> Dict[str, Any]:
    conversation = _require_conversation(session, conversation_id)
    agent_id = agent_id or conversation.agent_id

    latest = store.get_latest_memory(session, conversation_id)
    memory_count = len(store.get_memories_by_agent(session, agent_id)) if agent_id else 0
    return {
        "conversation_id": conversation_id,
        "agent_id": agent_id,
        "should_trigger": should_trigger_memory(session, conversation_id, agent_id),
        "memory_count": memory_count,
        "latest_range": latest.source_message_range if latest else None,
        "settings": resolve_memory_settings(session, agent_id).model_dump(mode="json"),
    }


def preview_memory_reset(session: Session, conversation_id: str) -> List[Dict[str, Any]]:
    _require_conversation(session, conversation_id)
    return [_with_parsed_content(m) for m in store.get_memories_by_conversation(session, conversation_id)]


def reset_conversation_memory(session: Session, conversation_id: str) -> bool:
    """Forget everything summarised from this conversation. True if anything was deleted."""
    _require_conversation(session, conversation_id)
    deleted = store.delete_memories_by_conversation(session, conversation_id)
    logger.info(f"Memory reset for conversation {conversation_id} (deleted={deleted})")
    return deleted


def cleanup_expired_memories(session: Session) -> int:
    return store.cleanup_expired_memories(session)
