from chatmem.models.core import User, Agent, Conversation, Message, AgentMessage, MessageRole, UserSetting
from chatmem.models.memory import ConversationMemory, MemoryType, MemoryContent, MessageRange

__all__ = [
    "User", "Agent", "Conversation",
    "Message", "AgentMessage", "MessageRole",
    "UserSetting",
    "ConversationMemory", "MemoryType", "MemoryContent", "MessageRange",
]
