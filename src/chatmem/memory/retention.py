"""
Per-agent cap on stored memories.

Eviction is by creation time only: the newest ``max_entries`` memories are
kept whatever their importance.
"""
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session
from chatmem.config import settings
from chatmem.memory.store import get_recent_agent_memories
from chatmem.logging import logger

# After each summary the cap applied is max_memory_entries * this factor.
RETENTION_SLACK_FACTOR = settings.MEMORY_RETENTION_SLACK_FACTOR


def retention_cap(max_memory_entries: int, slack_factor: int = RETENTION_SLACK_FACTOR) -> int:
    return max_memory_entries * slack_factor


def enforce_retention_cap(session: Session, agent_id: int, max_entries: int) -> int:
    """Delete an agent's memories beyond the newest ``max_entries``; returns how many went."""
    if max_entries < 0:
        raise ValueError("max_entries must not be negative")

    try:
        excess = get_recent_agent_memories(session, agent_id, offset=max_entries)
        if not excess:
            return 0
        for memory in excess:
            session.delete(memory)
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Retention cleanup failed for agent {agent_id}: {e}")
        return 0

    logger.info(f"Retention: removed {len(excess)} old memories of agent {agent_id}, kept {max_entries}")
    return len(excess)
