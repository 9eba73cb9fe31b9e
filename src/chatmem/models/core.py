"""
Chat-side records the memory engine reads.

Only the columns the engine consumes are modelled; the full chat schema
(avatars, tool-call columns, generation stats...) belongs to the host app.
"""
import uuid
from enum import Enum
from typing import Optional
from sqlmodel import Field, SQLModel, UniqueConstraint
from chatmem.models.base import CreatedAtMixin, TimestampMixin


def new_uuid() -> str:
    return str(uuid.uuid4())


class User(TimestampMixin, table=True):
    id: str = Field(default_factory=new_uuid, primary_key=True)
    username: str = Field(index=True, unique=True)


class Agent(TimestampMixin, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(unique=True)
    user_id: str = Field(foreign_key="user.id", index=True, description="Creator; owns the memory settings")
    system_prompt: Optional[str] = None
    memory_enabled: bool = Field(default=False)


class Conversation(TimestampMixin, table=True):
    id: str = Field(default_factory=new_uuid, primary_key=True)
    title: str
    user_id: Optional[str] = Field(default=None, foreign_key="user.id")
    # Agent-scoped conversations keep their history in AgentMessage
    agent_id: Optional[int] = Field(default=None, foreign_key="agent.id", index=True)


class MessageRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class MessageBase(CreatedAtMixin):
    conversation_id: str = Field(foreign_key="conversation.id", index=True)
    role: str = Field(index=True)  # a MessageRole value
    content: str


class Message(MessageBase, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)


class AgentMessage(MessageBase, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    agent_id: int = Field(foreign_key="agent.id", index=True)


class UserSetting(TimestampMixin, table=True):
    __table_args__ = (
        UniqueConstraint("user_id", "key", name="unique_setting_per_user"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(foreign_key="user.id", index=True)
    key: str
    value: Optional[str] = None
    category: str = Field(default="general", index=True)
