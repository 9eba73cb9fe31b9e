"""
Conversation memory records and the structured summary they carry.

``ConversationMemory.content`` holds a JSON-serialised ``MemoryContent``.
``source_message_range`` is the inclusive ``"start-end"`` span of
user/assistant turns the memory covers (1-based).
"""
import json
import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional

import pydantic
from pydantic import BaseModel, ConfigDict, ValidationError
from sqlalchemy import Column, Enum as SAEnum
from sqlmodel import Field
from chatmem.models.base import CreatedAtMixin


class MemoryType(str, Enum):
    SUMMARY = "summary"
    # Reserved; only SUMMARY is produced today
    CONTEXT = "context"
    IMPORTANT = "important"


class MemoryContent(BaseModel):
    """The five-field summary document produced by the completion model."""
    model_config = ConfigDict(populate_by_name=True)

    summary: str
    important_topics: List[str] = pydantic.Field(default_factory=list, alias="importantTopics")
    key_facts: List[str] = pydantic.Field(default_factory=list, alias="keyFacts")
    preferences: List[str] = pydantic.Field(default_factory=list)
    context: str = ""

    @classmethod
    def from_raw_text(cls, text: str) -> "MemoryContent":
        """Wrap unstructured model output so it can still be stored."""
        return cls(summary=text, context=text)

    @classmethod
    def parse(cls, raw: Optional[str]) -> Optional["MemoryContent"]:
        """Decode a stored or generated JSON document; None if it is not one."""
        if not raw:
            return None
        try:
            data = json.loads(_strip_code_fence(raw))
        except json.JSONDecodeError:
            return None
        if not isinstance(data, dict):
            return None
        try:
            return cls.model_validate(data)
        except ValidationError:
            return None

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True)


_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*\n(.*?)\n?```$", re.DOTALL)


def _strip_code_fence(text: str) -> str:
    text = text.strip()
    match = _FENCE_RE.match(text)
    return match.group(1).strip() if match else text


@dataclass(frozen=True)
class MessageRange:
    """Inclusive 1-based span of user/assistant turns."""
    start: int
    end: int

    @classmethod
    def parse(cls, text: Optional[str]) -> Optional["MessageRange"]:
        if not text:
            return None
        parts = text.strip().split("-")
        if len(parts) != 2:
            return None
        try:
            start, end = int(parts[0]), int(parts[1])
        except ValueError:
            return None
        if start < 1 or end < start:
            return None
        return cls(start, end)

    @classmethod
    def after(cls, last_covered: int, total_turns: int) -> "MessageRange":
        """Range for a pass that starts right after the previous checkpoint."""
        return cls(last_covered + 1, total_turns)

    def __str__(self) -> str:
        return f"{self.start}-{self.end}"


def range_end(text: Optional[str]) -> int:
    """Checkpoint encoded in a stored range; 0 when missing or malformed."""
    parsed = MessageRange.parse(text)
    return parsed.end if parsed else 0


class ConversationMemory(CreatedAtMixin, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    conversation_id: str = Field(foreign_key="conversation.id", index=True)
    agent_id: Optional[int] = Field(default=None, foreign_key="agent.id", index=True)

    memory_type: MemoryType = Field(
        default=MemoryType.SUMMARY,
        sa_column=Column(
            SAEnum(MemoryType, values_callable=lambda e: [m.value for m in e], native_enum=False),
            nullable=False,
            index=True,
        ),
    )
    content: str  # JSON MemoryContent
    source_message_range: Optional[str] = None
    importance_score: float = Field(default=1.0)
    tokens_saved: int = Field(default=0)
    expires_at: Optional[datetime] = Field(default=None, index=True)

    def parsed_content(self) -> Optional[MemoryContent]:
        return MemoryContent.parse(self.content)

    @property
    def covered_until(self) -> int:
        return range_end(self.source_message_range)
