import json
import pytest
from unittest.mock import patch
from sqlmodel import Session, SQLModel, create_engine, select
from chatmem.models.core import User, Agent, Conversation, AgentMessage
from chatmem.models.memory import ConversationMemory, MemoryContent, MemoryType
from chatmem.memory.settings import MemorySettings, SummaryStyle, save_memory_setting, resolve_memory_settings
from chatmem.memory.summarizer import (
    MemoryContext,
    build_summary_prompt,
    build_summary_request,
    calculate_importance_score,
    estimate_tokens_saved,
    generate_memory,
    parse_summary_response,
    select_messages_for_summary,
)
from chatmem.memory.trigger import load_conversation_turns, should_trigger_memory

COMPLETION = "chatmem.memory.summarizer.get_chat_completion"

STRUCTURED_REPLY = json.dumps({
    "summary": "The user is planning a trip to Lisbon in May.",
    "importantTopics": ["travel"],
    "keyFacts": ["Trip in May"],
    "preferences": ["Prefers trains"],
    "context": "Itinerary not booked yet",
})


@pytest.fixture(name="session")
def session_fixture():
    engine = create_engine("sqlite:///:memory:")
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session


@pytest.fixture
def agent(session):
    owner = User(username="owner")
    session.add(owner)
    session.commit()
    session.refresh(owner)

    a = Agent(name="Helper", user_id=owner.id, memory_enabled=True)
    session.add(a)
    session.commit()
    session.refresh(a)

    save_memory_setting(session, owner.id, "memory_enabled", "1")
    save_memory_setting(session, owner.id, "memory_trigger_rounds", "2")
    save_memory_setting(session, owner.id, "memory_model", "llama3")
    return a


@pytest.fixture
def conversation(session, agent):
    c = Conversation(title="Agent chat", agent_id=agent.id)
    session.add(c)
    session.commit()
    session.refresh(c)
    return c


def _add_pairs(session, conversation, pairs, start=0):
    for i in range(start, start + pairs):
        session.add(AgentMessage(conversation_id=conversation.id, agent_id=conversation.agent_id, role="user", content=f"question {i + 1}"))
        session.add(AgentMessage(conversation_id=conversation.id, agent_id=conversation.agent_id, role="assistant", content=f"answer {i + 1}"))
    session.commit()


def _context(session, conversation, agent):
    return MemoryContext(
        conversation_id=conversation.id,
        agent_id=agent.id,
        messages=load_conversation_turns(session, conversation),
        settings=resolve_memory_settings(session, agent.id),
    )


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------
def test_first_pass_takes_latest_window():
    turns = [{"role": "user", "content": str(i)} for i in range(10)]
    settings = MemorySettings(memory_trigger_rounds=2)
    assert [t["content"] for t in select_messages_for_summary(turns, settings, 0)] == ["6", "7", "8", "9"]


def test_later_pass_takes_everything_after_checkpoint():
    turns = [{"role": "user", "content": str(i)} for i in range(10)]
    settings = MemorySettings(memory_trigger_rounds=2)
    assert [t["content"] for t in select_messages_for_summary(turns, settings, 7)] == ["7", "8", "9"]


def test_summary_prompt_labels_roles():
    prompt = build_summary_prompt([
        {"role": "user", "content": "Hi"},
        {"role": "assistant", "content": "Hello"},
    ])
    assert "User: Hi\nAssistant: Hello" in prompt
    assert "importantTopics" in prompt


def test_custom_system_prompt_wins():
    settings = MemorySettings(memory_system_prompt="Only facts.")
    request = build_summary_request([{"role": "user", "content": "x"}], settings)
    assert request[0] == {"role": "system", "content": "Only facts."}
    assert request[1]["role"] == "user"


def test_default_system_prompt_follows_style():
    brief = build_summary_request([], MemorySettings(summary_style=SummaryStyle.BRIEF))[0]["content"]
    detailed = build_summary_request([], MemorySettings(summary_style=SummaryStyle.DETAILED))[0]["content"]
    assert brief != detailed
    assert "keyFacts" in brief


def test_parse_summary_response_wraps_raw_text():
    content = parse_summary_response("Just some prose.")
    assert content.summary == "Just some prose."
    assert content.context == "Just some prose."
    assert content.important_topics == []
    assert content.key_facts == []
    assert content.preferences == []


def test_tokens_saved_is_never_negative():
    turns = [{"role": "user", "content": "ab"}]
    assert estimate_tokens_saved(turns, "a much longer summary") == 0


def test_tokens_saved_rounds_half_up():
    # (12 - 10) * 0.75 = 1.5
    turns = [{"role": "user", "content": "x" * 12}]
    assert estimate_tokens_saved(turns, "y" * 10) == 2


def test_importance_score_bounds():
    assert calculate_importance_score(MemoryContent(summary="short")) == 0.5
    full = MemoryContent(
        summary="s" * 101,
        important_topics=["a"],
        key_facts=["b"],
        preferences=["c"],
    )
    assert calculate_importance_score(full) == 0.9
    assert calculate_importance_score(MemoryContent(summary="s", key_facts=["b"])) == 0.6


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------
def test_scenario_three_pairs_then_one_more(session, agent, conversation):
    _add_pairs(session, conversation, 3)
    assert should_trigger_memory(session, conversation.id, agent.id) is True

    with patch(COMPLETION, return_value=STRUCTURED_REPLY) as mock_completion:
        memory = generate_memory(session, _context(session, conversation, agent))

    assert memory is not None
    assert memory.source_message_range == "1-6"
    assert memory.memory_type == MemoryType.SUMMARY
    assert memory.importance_score == 0.8
    assert memory.parsed_content().key_facts == ["Trip in May"]

    kwargs = mock_completion.call_args.kwargs
    assert kwargs["model"] == "llama3"
    assert kwargs["temperature"] == 0.3
    assert kwargs["top_p"] == 0.8

    _add_pairs(session, conversation, 1, start=3)
    assert should_trigger_memory(session, conversation.id, agent.id) is False


def test_first_pass_summarises_only_latest_window(session, agent, conversation):
    _add_pairs(session, conversation, 5)
    with patch(COMPLETION, return_value=STRUCTURED_REPLY) as mock_completion:
        memory = generate_memory(session, _context(session, conversation, agent))

    transcript = mock_completion.call_args.kwargs["messages"][1]["content"]
    assert "question 4" in transcript
    assert "question 3" not in transcript
    assert memory.source_message_range == "1-10"


def test_successive_ranges_are_contiguous(session, agent, conversation):
    _add_pairs(session, conversation, 2)
    with patch(COMPLETION, return_value=STRUCTURED_REPLY):
        first = generate_memory(session, _context(session, conversation, agent))
    _add_pairs(session, conversation, 2, start=2)
    with patch(COMPLETION, return_value=STRUCTURED_REPLY) as mock_completion:
        second = generate_memory(session, _context(session, conversation, agent))

    assert first.source_message_range == "1-4"
    assert second.source_message_range == "5-8"
    transcript = mock_completion.call_args.kwargs["messages"][1]["content"]
    assert "question 3" in transcript
    assert "question 2" not in transcript


def test_malformed_output_is_stored_as_raw_text(session, agent, conversation):
    _add_pairs(session, conversation, 2)
    with patch(COMPLETION, return_value="The user likes Lisbon."):
        memory = generate_memory(session, _context(session, conversation, agent))

    content = json.loads(memory.content)
    assert content["summary"] == "The user likes Lisbon."
    assert content["importantTopics"] == []
    assert content["keyFacts"] == []
    assert content["preferences"] == []
    assert memory.importance_score == 0.5


def test_nothing_new_returns_none(session, agent, conversation):
    _add_pairs(session, conversation, 2)
    with patch(COMPLETION, return_value=STRUCTURED_REPLY):
        assert generate_memory(session, _context(session, conversation, agent)) is not None

    with patch(COMPLETION, return_value=STRUCTURED_REPLY) as mock_completion:
        assert generate_memory(session, _context(session, conversation, agent)) is None
    mock_completion.assert_not_called()
    assert len(session.exec(select(ConversationMemory)).all()) == 1


def test_completion_failure_returns_none(session, agent, conversation):
    _add_pairs(session, conversation, 2)
    with patch(COMPLETION, side_effect=RuntimeError("connection refused")):
        assert generate_memory(session, _context(session, conversation, agent)) is None
    assert session.exec(select(ConversationMemory)).all() == []


def test_empty_completion_returns_none(session, agent, conversation):
    _add_pairs(session, conversation, 2)
    with patch(COMPLETION, return_value="   "):
        assert generate_memory(session, _context(session, conversation, agent)) is None
    assert session.exec(select(ConversationMemory)).all() == []


def test_stale_pass_is_discarded(session, agent, conversation):
    _add_pairs(session, conversation, 2)
    with patch(COMPLETION, return_value=STRUCTURED_REPLY), \
         patch("chatmem.memory.summarizer.last_covered_turn", side_effect=[0, 4]):
        assert generate_memory(session, _context(session, conversation, agent)) is None
    assert session.exec(select(ConversationMemory)).all() == []


def test_generation_trims_agent_memories(session, agent, conversation):
    save_memory_setting(session, agent.user_id, "max_memory_entries", "1")
    for i in range(3):
        _add_pairs(session, conversation, 2, start=i * 2)
        with patch(COMPLETION, return_value=STRUCTURED_REPLY):
            assert generate_memory(session, _context(session, conversation, agent)) is not None

    # Cap is max_memory_entries * slack factor (2)
    remaining = session.exec(select(ConversationMemory)).all()
    assert sorted(m.source_message_range for m in remaining) == ["5-8", "9-12"]


def test_range_counts_only_turns(session, agent, conversation):
    messages = [
        {"role": "system", "content": "You are a travel agent."},
        {"role": "user", "content": "Lisbon in May?"},
        {"role": "assistant", "content": "Good choice."},
        {"role": "tool", "content": "weather: sunny"},
        {"role": "user", "content": "Trains or planes?"},
        {"role": "assistant", "content": "Trains."},
    ]
    context = MemoryContext(
        conversation_id=conversation.id,
        agent_id=agent.id,
        messages=messages,
        settings=resolve_memory_settings(session, agent.id),
    )
    with patch(COMPLETION, return_value=STRUCTURED_REPLY):
        memory = generate_memory(session, context)
    assert memory.source_message_range == "1-4"
