import json
import pytest
from unittest.mock import patch
from sqlmodel import Session, SQLModel, create_engine, select
from chatmem.models.core import User, Agent, Conversation, Message, AgentMessage
from chatmem.models.memory import ConversationMemory
from chatmem.memory import run_memory_check, force_generate_memory, get_memory_context
from chatmem.memory.settings import save_memory_setting

COMPLETION = "chatmem.memory.summarizer.get_chat_completion"
REPLY = json.dumps({"summary": "Talked about tea.", "importantTopics": ["tea"], "keyFacts": [], "preferences": [], "context": ""})


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
    save_memory_setting(session, owner.id, "memory_trigger_rounds", "1")
    return a


@pytest.fixture
def conversation(session, agent):
    c = Conversation(title="tea", agent_id=agent.id)
    session.add(c)
    session.commit()
    session.refresh(c)
    return c


def _add_pair(session, conversation):
    session.add(AgentMessage(conversation_id=conversation.id, agent_id=conversation.agent_id, role="user", content="Green or black?"))
    session.add(AgentMessage(conversation_id=conversation.id, agent_id=conversation.agent_id, role="assistant", content="Green."))
    session.commit()


def test_run_memory_check_generates_when_due(session, agent, conversation):
    _add_pair(session, conversation)
    with patch(COMPLETION, return_value=REPLY):
        memory = run_memory_check(session, conversation.id, agent.id)
    assert memory is not None
    assert memory.source_message_range == "1-2"
    assert "[Memory" in get_memory_context(session, conversation.id, agent.id)


def test_run_memory_check_skips_when_not_due(session, agent, conversation):
    with patch(COMPLETION, return_value=REPLY) as mock_completion:
        assert run_memory_check(session, conversation.id, agent.id) is None
    mock_completion.assert_not_called()


def test_run_memory_check_reads_agent_message_table(session, agent, conversation):
    # Rows in the plain table belong to agent-less chats and must not be summarised here
    session.add(Message(conversation_id=conversation.id, role="user", content="wrong table"))
    session.commit()
    _add_pair(session, conversation)
    with patch(COMPLETION, return_value=REPLY) as mock_completion:
        run_memory_check(session, conversation.id, agent.id)
    transcript = mock_completion.call_args.kwargs["messages"][1]["content"]
    assert "wrong table" not in transcript
    assert "Green or black?" in transcript


def test_run_memory_check_never_raises(session, agent, conversation):
    _add_pair(session, conversation)
    with patch("chatmem.memory.service.should_trigger_memory", side_effect=RuntimeError("boom")):
        assert run_memory_check(session, conversation.id, agent.id) is None


def test_force_generate_ignores_threshold(session, agent, conversation):
    save_memory_setting(session, agent.user_id, "memory_trigger_rounds", "50")
    _add_pair(session, conversation)
    with patch(COMPLETION, return_value=REPLY):
        memory = force_generate_memory(session, conversation.id, agent.id)
    assert memory is not None
    assert len(session.exec(select(ConversationMemory)).all()) == 1


def test_force_generate_without_turns_or_agent(session, agent, conversation):
    with patch(COMPLETION, return_value=REPLY) as mock_completion:
        assert force_generate_memory(session, conversation.id, agent.id) is None
        _add_pair(session, conversation)
        assert force_generate_memory(session, conversation.id, 9999) is None
        assert force_generate_memory(session, "missing", agent.id) is None
    mock_completion.assert_not_called()


def test_force_generate_never_raises(session, agent, conversation):
    _add_pair(session, conversation)
    with patch("chatmem.memory.service.load_conversation_turns", side_effect=RuntimeError("disk I/O error")):
        assert force_generate_memory(session, conversation.id, agent.id) is None


def test_conversation_locks_stay_bounded(session, agent):
    from chatmem.memory import service

    with patch.object(service, "MAX_CONVERSATION_LOCKS", 8), patch.dict(service._conversation_locks, clear=True):
        for i in range(50):
            run_memory_check(session, f"missing-{i}", agent.id)
        assert len(service._conversation_locks) <= 8
        assert "missing-49" in service._conversation_locks


def test_held_conversation_lock_is_not_evicted():
    from chatmem.memory import service

    with patch.object(service, "MAX_CONVERSATION_LOCKS", 4), patch.dict(service._conversation_locks, clear=True):
        held = service._conversation_lock("held")
        with held:
            for i in range(10):
                service._conversation_lock(f"other-{i}")
            assert service._conversation_locks["held"] is held
            assert len(service._conversation_locks) <= 4
        assert service._conversation_lock("held") is held
