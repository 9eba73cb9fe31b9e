"""
Persistence for ``ConversationMemory`` rows.

Listings follow the relevance order (importance desc, then newest first);
checkpoint and retention code use ``get_latest_memory`` / recency order.
Write failures are logged, rolled back and reported as None/False/0 so that
summarisation never breaks the chat turn it runs after.
"""
from datetime import datetime
from typing import Dict, List, Optional, Any
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select, func, col, or_
from chatmem.models.base import utcnow
from chatmem.models.memory import ConversationMemory, MemoryType
from chatmem.logging import logger


_RELEVANCE_ORDER = (
    col(ConversationMemory.importance_score).desc(),
    col(ConversationMemory.created_at).desc(),
    col(ConversationMemory.id).desc(),
)
_RECENCY_ORDER = (
    col(ConversationMemory.created_at).desc(),
    col(ConversationMemory.id).desc(),
)


def create_memory(
    session: Session,
    *,
    conversation_id: str,
    content: str,
    agent_id: Optional[int] = None,
    memory_type: MemoryType = MemoryType.SUMMARY,
    source_message_range: Optional[str] = None,
    importance_score: float = 1.0,
    tokens_saved: int = 0,
    expires_at: Optional[datetime] = None,
) -> Optional[int]:
    """Insert a memory and return its id, or None if the write failed."""
    memory = ConversationMemory(
        conversation_id=conversation_id,
        agent_id=agent_id,
        memory_type=memory_type,
        content=content,
        source_message_range=source_message_range,
        importance_score=importance_score,
        tokens_saved=tokens_saved,
        expires_at=expires_at,
    )
    try:
        session.add(memory)
        session.commit()
        session.refresh(memory)
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Failed to store memory for conversation {conversation_id}: {e}")
        return None
    return memory.id


def get_memory(session: Session, memory_id: int) -> Optional[ConversationMemory]:
    return session.get(ConversationMemory, memory_id)


def get_memories_by_conversation(session: Session, conversation_id: str) -> List[ConversationMemory]:
    return list(session.exec(
        select(ConversationMemory)
        .where(ConversationMemory.conversation_id == conversation_id)
        .order_by(*_RELEVANCE_ORDER)
    ).all())


def get_memories_by_agent(session: Session, agent_id: int) -> List[ConversationMemory]:
    return list(session.exec(
        select(ConversationMemory)
        .where(ConversationMemory.agent_id == agent_id)
        .order_by(*_RELEVANCE_ORDER)
    ).all())


def get_active_memories(session: Session, conversation_id: str) -> List[ConversationMemory]:
    """Conversation memories that have not expired."""
    return list(session.exec(
        select(ConversationMemory)
        .where(
            ConversationMemory.conversation_id == conversation_id,
            or_(
                col(ConversationMemory.expires_at).is_(None),
                col(ConversationMemory.expires_at) > utcnow(),
            ),
        )
        .order_by(*_RELEVANCE_ORDER)
    ).all())


def get_latest_memory(session: Session, conversation_id: str) -> Optional[ConversationMemory]:
    """Most recently created memory of a conversation (the checkpoint holder)."""
    return session.exec(
        select(ConversationMemory)
        .where(ConversationMemory.conversation_id == conversation_id)
        .order_by(*_RECENCY_ORDER)
    ).first()


def get_recent_agent_memories(
    session: Session, agent_id: int, limit: Optional[int] = None, offset: int = 0
) -> List[ConversationMemory]:
    """An agent's memories, newest first."""
    stmt = (
        select(ConversationMemory)
        .where(ConversationMemory.agent_id == agent_id)
        .order_by(*_RECENCY_ORDER)
        .offset(offset)
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    return list(session.exec(stmt).all())


def update_memory(
    session: Session,
    memory_id: int,
    content: str,
    importance_score: float,
    memory_type: MemoryType,
) -> bool:
    memory = session.get(ConversationMemory, memory_id)
    if not memory:
        return False
    memory.content = content
    memory.importance_score = importance_score
    memory.memory_type = memory_type
    try:
        session.add(memory)
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Failed to update memory {memory_id}: {e}")
        return False
    return True


def delete_memory(session: Session, memory_id: int) -> bool:
    memory = session.get(ConversationMemory, memory_id)
    if not memory:
        return False
    try:
        session.delete(memory)
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Failed to delete memory {memory_id}: {e}")
        return False
    return True


def _delete_all(session: Session, memories: List[ConversationMemory]) -> int:
    for memory in memories:
        session.delete(memory)
    session.commit()
    return len(memories)


def delete_memories_by_conversation(session: Session, conversation_id: str) -> bool:
    """Delete every memory of a conversation. True if anything was removed."""
    memories = session.exec(
        select(ConversationMemory).where(ConversationMemory.conversation_id == conversation_id)
    ).all()
    try:
        deleted = _delete_all(session, list(memories))
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Failed to delete memories of conversation {conversation_id}: {e}")
        return False
    return deleted > 0


def cleanup_expired_memories(session: Session) -> int:
    """Delete memories whose expiry has passed; returns the number removed."""
    expired = session.exec(
        select(ConversationMemory).where(
            col(ConversationMemory.expires_at).is_not(None),
            col(ConversationMemory.expires_at) <= utcnow(),
        )
    ).all()
    try:
        deleted = _delete_all(session, list(expired))
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Failed to clean up expired memories: {e}")
        return 0
    if deleted:
        logger.info(f"Removed {deleted} expired memories")
    return deleted


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------
def get_conversation_memory_stats(session: Session, conversation_id: str) -> Dict[str, Any]:
    total, tokens, avg = session.exec(
        select(
            func.count(ConversationMemory.id),
            func.coalesce(func.sum(ConversationMemory.tokens_saved), 0),
            func.coalesce(func.avg(ConversationMemory.importance_score), 0.0),
        ).where(ConversationMemory.conversation_id == conversation_id)
    ).one()
    by_type = session.exec(
        select(ConversationMemory.memory_type, func.count(ConversationMemory.id))
        .where(ConversationMemory.conversation_id == conversation_id)
        .group_by(ConversationMemory.memory_type)
    ).all()
    return {
        "total_memories": total,
        "total_tokens_saved": int(tokens),
        "avg_importance": float(avg),
        "by_type": {MemoryType(t).value: n for t, n in by_type},
    }


def get_agent_memory_stats(session: Session, agent_id: int) -> Dict[str, Any]:
    total, tokens, avg, conversations = session.exec(
        select(
            func.count(ConversationMemory.id),
            func.coalesce(func.sum(ConversationMemory.tokens_saved), 0),
            func.coalesce(func.avg(ConversationMemory.importance_score), 0.0),
            func.count(func.distinct(ConversationMemory.conversation_id)),
        ).where(ConversationMemory.agent_id == agent_id)
    ).one()
    return {
        "total_memories": total,
        "total_tokens_saved": int(tokens),
        "avg_importance": float(avg),
        "conversation_count": conversations,
    }
