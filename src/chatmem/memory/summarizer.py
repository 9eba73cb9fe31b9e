"""
Summarisation pipeline.

Turns the unsummarised tail of a conversation into a ``ConversationMemory``:

1. Slice the turns after the last checkpoint (first pass: the last
   ``trigger_rounds * 2`` turns only).
2. Ask the completion service for the five-field JSON summary.
3. Parse it, falling back to wrapping the raw text.
4. Score it, store it, and trim the agent's memories.

Summaries are advisory: every failure is logged and reported as None.
"""
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from sqlmodel import Session

from chatmem.config import settings as app_settings
from chatmem.llm.openai_client import get_chat_completion
from chatmem.memory.retention import enforce_retention_cap, retention_cap
from chatmem.memory.settings import MemorySettings, SummaryStyle
from chatmem.memory.store import create_memory, get_memory
from chatmem.memory.trigger import count_turns, is_turn, last_covered_turn
from chatmem.models.memory import ConversationMemory, MemoryContent, MemoryType, MessageRange
from chatmem.logging import logger

# Rough characters-to-tokens ratio; tokens_saved is an estimate, not a billing figure.
TOKENS_PER_CHAR_ESTIMATE = 0.75

BASE_IMPORTANCE = 0.5
IMPORTANCE_STEP = 0.1
LONG_SUMMARY_CHARS = 100

ROLE_LABELS = {
    "user": "User",
    "assistant": "Assistant",
}

STYLE_INSTRUCTIONS = {
    SummaryStyle.BRIEF: "Keep it brief: one or two sentences for the summary and only the most essential items in each list.",
    SummaryStyle.DETAILED: "Be thorough: capture decisions, open questions, names, numbers and anything the user will expect you to remember.",
    SummaryStyle.STRUCTURED: "Favour the lists over prose: put every distinct topic, fact and preference in its own list entry and keep the summary short.",
}

DEFAULT_MEMORY_PROMPT = """\
You are a conversation memory assistant. Extract and organise the information \
from a conversation that is worth remembering in later conversations.

Respond with a single JSON object and nothing else, using exactly these fields:
- "summary": string, what the conversation was about and what was concluded
- "importantTopics": array of strings, the main topics discussed
- "keyFacts": array of strings, concrete facts stated by either side
- "preferences": array of strings, preferences or habits the user expressed
- "context": string, background needed to continue the conversation later

{style}
"""


@dataclass
class MemoryContext:
    """Inputs for one summarisation pass."""
    conversation_id: str
    agent_id: Optional[int]
    messages: Sequence  # dicts or message records with role/content
    settings: MemorySettings


def _as_turn(message) -> Dict[str, str]:
    if isinstance(message, dict):
        role, content = message["role"], message.get("content") or ""
    else:
        role, content = message.role, message.content or ""
    return {"role": getattr(role, "value", role), "content": content}


def conversation_turns(messages: Sequence) -> List[Dict[str, str]]:
    """User/assistant entries only, as plain role/content dicts."""
    turns = [_as_turn(m) for m in messages]
    return [t for t in turns if is_turn(t["role"])]


def select_messages_for_summary(
    turns: List[Dict[str, str]], settings: MemorySettings, last_covered: int
) -> List[Dict[str, str]]:
    """The unsummarised slice. A first pass only takes the latest window."""
    if last_covered > 0:
        return turns[last_covered:]
    return turns[-settings.trigger_turns:]


def default_memory_prompt(style: SummaryStyle) -> str:
    return DEFAULT_MEMORY_PROMPT.format(style=STYLE_INSTRUCTIONS[style])


def build_summary_prompt(turns: List[Dict[str, str]]) -> str:
    transcript = "\n".join(
        f"{ROLE_LABELS.get(t['role'], t['role'])}: {t['content']}" for t in turns
    )
    return (
        "Summarise the following conversation:\n\n"
        f"{transcript}\n\n"
        "Return a JSON object with the fields: summary, importantTopics, keyFacts, preferences, context"
    )


def build_summary_request(turns: List[Dict[str, str]], settings: MemorySettings) -> List[Dict[str, str]]:
    system_prompt = settings.memory_system_prompt or default_memory_prompt(settings.summary_style)
    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": build_summary_prompt(turns)},
    ]


def parse_summary_response(raw: str) -> MemoryContent:
    """Structured summary from the model output; raw text is wrapped when it is not valid JSON."""
    parsed = MemoryContent.parse(raw)
    if parsed is None:
        logger.warning("Summary was not valid structured JSON; storing raw text")
        return MemoryContent.from_raw_text(raw)
    return parsed


def request_summary(turns: List[Dict[str, str]], settings: MemorySettings) -> Optional[MemoryContent]:
    """Call the completion service; None if the call fails or returns nothing."""
    try:
        raw = get_chat_completion(
            model=settings.memory_model,
            messages=build_summary_request(turns, settings),
            temperature=app_settings.MEMORY_SUMMARY_TEMPERATURE,
            top_p=app_settings.MEMORY_SUMMARY_TOP_P,
        )
    except Exception as e:
        logger.error(f"Summary generation failed: {e}")
        return None
    if not raw or not raw.strip():
        logger.warning("Completion service returned an empty summary")
        return None
    return parse_summary_response(raw)


def estimate_tokens_saved(turns: List[Dict[str, str]], summary: str) -> int:
    """Approximate tokens saved: 75% of the character-length delta, never negative."""
    original_length = sum(len(t["content"]) for t in turns)
    delta = (original_length - len(summary)) * TOKENS_PER_CHAR_ESTIMATE
    return max(0, math.floor(delta + 0.5))


def calculate_importance_score(content: MemoryContent) -> float:
    score = BASE_IMPORTANCE
    if content.important_topics:
        score += IMPORTANCE_STEP
    if content.key_facts:
        score += IMPORTANCE_STEP
    if content.preferences:
        score += IMPORTANCE_STEP
    if len(content.summary) > LONG_SUMMARY_CHARS:
        score += IMPORTANCE_STEP
    return round(min(1.0, score), 2)


def generate_memory(session: Session, context: MemoryContext) -> Optional[ConversationMemory]:
    """
    Summarise the turns after the last checkpoint and store the result.

    Returns the stored memory, or None when there is nothing new to summarise
    or anything goes wrong.
    """
    conversation_id = context.conversation_id
    try:
        last_covered = last_covered_turn(session, conversation_id)
        turns = conversation_turns(context.messages)
        to_summarize = select_messages_for_summary(turns, context.settings, last_covered)
        if not to_summarize:
            logger.info(f"No new turns to summarise for conversation {conversation_id}")
            return None

        logger.info(f"Summarising {len(to_summarize)} turns of conversation {conversation_id}")
        content = request_summary(to_summarize, context.settings)
        if content is None:
            return None

        # Another pass may have stored a memory while we waited on the model
        if last_covered_turn(session, conversation_id) != last_covered:
            logger.warning(f"Checkpoint moved during summarisation of {conversation_id}; discarding stale pass")
            return None

        source_range = MessageRange.after(last_covered, count_turns(context.messages))
        tokens_saved = estimate_tokens_saved(to_summarize, content.summary)
        memory_id = create_memory(
            session,
            conversation_id=conversation_id,
            agent_id=context.agent_id,
            memory_type=MemoryType.SUMMARY,
            content=content.to_json(),
            source_message_range=str(source_range),
            importance_score=calculate_importance_score(content),
            tokens_saved=tokens_saved,
        )
        if memory_id is None:
            return None
        logger.info(f"Stored memory {memory_id} (turns {source_range}, ~{tokens_saved} tokens saved)")

        if context.agent_id:
            cap = retention_cap(context.settings.max_memory_entries)
            enforce_retention_cap(session, context.agent_id, cap)

        return get_memory(session, memory_id)
    except Exception:
        logger.exception(f"Memory generation failed for conversation {conversation_id}")
        return None
