import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

# Conversation currently being processed, so memory passes can be traced per chat
conversation_id_ctx: ContextVar[Optional[str]] = ContextVar("conversation_id", default=None)

def get_conversation_id() -> str:
    """Return the bound conversation id, or '-' outside of a conversation."""
    return conversation_id_ctx.get() or "-"

@contextmanager
def bind_conversation(conversation_id: str) -> Iterator[None]:
    """Tag every log record emitted inside the block with ``conversation_id``."""
    token = conversation_id_ctx.set(conversation_id)
    try:
        yield
    finally:
        conversation_id_ctx.reset(token)

class ConversationIDFilter(logging.Filter):
    """Injects conversation_id into log records."""
    def filter(self, record):
        record.conversation_id = get_conversation_id()
        return True

def configure_logging(level: str = "INFO"):
    """Configures the root logger with a standard format including conversation_id."""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers to avoid duplication
    if logger.handlers:
        logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)-8s | [%(conversation_id)s] | %(name)s:%(funcName)s:%(lineno)d - %(message)s"
    )
    handler.setFormatter(formatter)

    handler.addFilter(ConversationIDFilter())

    logger.addHandler(handler)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)

# Initialize logging on import with default settings
configure_logging()
logger = logging.getLogger("chatmem")
