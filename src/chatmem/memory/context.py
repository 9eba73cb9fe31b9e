"""
Renders an agent's recent memories into a block for the next prompt.

The block is rebuilt on every turn; memory lists are small enough that
caching it would only add invalidation problems.
"""
from typing import Dict, List, Optional
from sqlmodel import Session
from chatmem.config import settings
from chatmem.memory.store import get_recent_agent_memories
from chatmem.memory.trigger import memory_active_for
from chatmem.models.memory import ConversationMemory
from chatmem.logging import logger

CONTEXT_HEADING = "## Relevant Memories"


def render_memory_line(memory: ConversationMemory) -> str:
    parsed = memory.parsed_content()
    summary = parsed.summary if parsed else memory.content
    return f"[Memory {memory.id}] {summary}"


def build_memory_context(session: Session, conversation_id: str, agent_id: Optional[int]) -> str:
    """
    Context block of the agent's newest memories, shared across all its conversations.

    Empty when memory is off for the agent or nothing has been remembered yet.
    """
    try:
        if not memory_active_for(session, agent_id):
            return ""
        memories = get_recent_agent_memories(session, agent_id, limit=settings.MEMORY_CONTEXT_LIMIT)
        if not memories:
            return ""
        lines = [render_memory_line(m) for m in memories]
        return CONTEXT_HEADING + "\n" + "\n".join(lines)
    except Exception:
        logger.exception(f"Failed to build memory context for conversation {conversation_id}")
        return ""


def inject_memory_context(messages: List[Dict[str, str]], block: str) -> List[Dict[str, str]]:
    """Return a copy of ``messages`` carrying the memory block in the system prompt."""
    if not block:
        return list(messages)

    result = [dict(m) for m in messages]
    for message in result:
        if message.get("role") == "system":
            existing = message.get("content") or ""
            message["content"] = f"{existing}\n\n{block}" if existing else block
            return result

    return [{"role": "system", "content": block}] + result
