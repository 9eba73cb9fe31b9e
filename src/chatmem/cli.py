import sys
import json
import typer
from pathlib import Path
from typing import Optional
from sqlmodel import Session
from chatmem.config import settings
from chatmem.db import engine
from chatmem.logging import logger, bind_conversation
from chatmem.validation import run_all_checks
from chatmem.memory import management, force_generate_memory
from chatmem.memory.settings import resolve_memory_settings, save_memory_setting

app = typer.Typer(no_args_is_help=True)

@app.callback()
def main():
    """
    Conversation memory CLI.
    """
    pass

def fail(message: str):
    print(f"❌ {message}")
    raise typer.Exit(code=1)

@app.command(name="doctor")
def doctor():
    """
    Check configuration and environment health.
    """
    logger.info("Running doctor check...")

    print("\n🩺 Chat Memory Doctor\n")

    print(f"Python: {sys.version.split()[0]}")
    print(f"Prefix: {sys.prefix}")

    print("\n[Configuration]")
    print(f"COMPLETION_BASE_URL:           {settings.COMPLETION_BASE_URL}")
    print(f"MEMORY_SUMMARY_TEMPERATURE:    {settings.MEMORY_SUMMARY_TEMPERATURE}")
    print(f"MEMORY_SUMMARY_TOP_P:          {settings.MEMORY_SUMMARY_TOP_P}")
    print(f"MEMORY_RETENTION_SLACK_FACTOR: {settings.MEMORY_RETENTION_SLACK_FACTOR}")
    print(f"MEMORY_CONTEXT_LIMIT:          {settings.MEMORY_CONTEXT_LIMIT}")

    # Mask API Key; local completion servers run without one
    api_key_status = "✅ Set" if settings.COMPLETION_API_KEY and settings.COMPLETION_API_KEY.get_secret_value() else "➖ Not set (local server)"
    print(f"COMPLETION_API_KEY:            {api_key_status}")

    data_dir = Path("data")
    if data_dir.exists() and data_dir.is_dir():
        print(f"\n[Data Directory]              ✅ Found: {data_dir.absolute()}")
    else:
        print(f"\n[Data Directory]              ❌ Missing: {data_dir.absolute()} (run `chatmem db init`)")

    problems = run_all_checks()
    if problems:
        print("\n[Checks]")
        for problem in problems:
            print(f"  ❌ {problem}")
    else:
        print("\n[Checks]                      ✅ All passed")

    print("\nDoctor check complete.")


db_app = typer.Typer(help="Database management commands.")
app.add_typer(db_app, name="db")

@db_app.command("init")
def init():
    """Initialize the database tables."""
    from chatmem.db import init_db
    try:
        init_db()
        logger.info("Database initialized successfully.")
        print("✅ Database initialized.")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        fail(f"Failed: {e}")


memory_app = typer.Typer(help="Inspect and manage stored memories.")
app.add_typer(memory_app, name="memory")

def _print_memory_line(memory: dict):
    summary = memory["parsed_content"].get("summary", "")
    range_text = memory.get("source_message_range") or "-"
    line = f"[{memory['id']}] ({memory['memory_type']}, importance {memory['importance_score']:.2f}, turns {range_text}) {summary}"
    if memory.get("source"):
        line += f"  <{memory['source']}>"
    print(line)

def _print_stats(stats: dict):
    print(
        f"Total: {stats['total_memories']} | tokens saved: {stats['total_tokens_saved']} | "
        f"avg importance: {stats['avg_importance']:.2f}"
    )

@memory_app.command("list")
def list_memories(
    conversation: Optional[str] = typer.Option(None, "--conversation", "-c", help="Conversation ID"),
    agent: Optional[int] = typer.Option(None, "--agent", "-a", help="Agent ID"),
):
    """List memories of a conversation (its agent's, when it has one) or of an agent."""
    if not conversation and agent is None:
        fail("Pass --conversation or --agent")
    with Session(engine) as session:
        try:
            if conversation:
                result = management.list_conversation_memories(session, conversation)
            else:
                result = management.list_agent_memories(session, agent)
        except LookupError as e:
            fail(str(e))

    if not result["memories"]:
        print("No memories found.")
        return
    for memory in result["memories"]:
        _print_memory_line(memory)
    _print_stats(result["stats"])

@memory_app.command("show")
def show(memory_id: int):
    """Show one memory with its parsed content."""
    with Session(engine) as session:
        try:
            detail = management.get_memory_detail(session, memory_id)
        except LookupError as e:
            fail(str(e))
    print(json.dumps(detail, indent=2, default=str, ensure_ascii=False))

@memory_app.command("edit")
def edit(
    memory_id: int,
    content: str = typer.Option(..., "--content", help="New content (plain text or JSON)"),
    importance: Optional[float] = typer.Option(None, "--importance", help="Importance score 0..1"),
    memory_type: Optional[str] = typer.Option(None, "--type", help="summary, context or important"),
):
    """Replace the content of a memory."""
    with Session(engine) as session:
        try:
            management.update_memory_entry(session, memory_id, content, importance, memory_type)
        except (LookupError, ValueError) as e:
            fail(str(e))
    print(f"✅ Memory {memory_id} updated.")

@memory_app.command("delete")
def delete(memory_id: int):
    """Delete one memory."""
    with Session(engine) as session:
        try:
            management.delete_memory_entry(session, memory_id)
        except (LookupError, ValueError) as e:
            fail(str(e))
    print(f"✅ Memory {memory_id} deleted.")

@memory_app.command("reset")
def reset(
    conversation_id: str,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
):
    """Delete every memory summarised from a conversation."""
    with Session(engine) as session:
        try:
            doomed = management.preview_memory_reset(session, conversation_id)
            if not doomed:
                print("Nothing to reset.")
                return
            if not yes:
                typer.confirm(f"Delete {len(doomed)} memories of conversation {conversation_id}?", abort=True)
            management.reset_conversation_memory(session, conversation_id)
        except LookupError as e:
            fail(str(e))
    print(f"✅ Deleted {len(doomed)} memories.")

@memory_app.command("status")
def status(
    conversation_id: str,
    agent: Optional[int] = typer.Option(None, "--agent", "-a", help="Agent ID (defaults to the conversation's)"),
):
    """Show whether the conversation is due for a summary."""
    with Session(engine) as session:
        try:
            info = management.get_memory_status(session, conversation_id, agent)
        except LookupError as e:
            fail(str(e))
    print(json.dumps(info, indent=2, default=str))

@memory_app.command("generate")
def generate(
    conversation_id: str,
    agent: int = typer.Option(..., "--agent", "-a", help="Agent ID"),
):
    """Summarise a conversation now, ignoring the trigger threshold."""
    with bind_conversation(conversation_id), Session(engine) as session:
        memory = force_generate_memory(session, conversation_id, agent)
        if memory is None:
            fail("No memory generated (nothing new to summarise, or the completion call failed).")
        print(f"✅ Memory {memory.id} stored (turns {memory.source_message_range}, ~{memory.tokens_saved} tokens saved).")

@memory_app.command("cleanup")
def cleanup():
    """Delete expired memories."""
    with Session(engine) as session:
        removed = management.cleanup_expired_memories(session)
    print(f"✅ Removed {removed} expired memories.")


settings_app = typer.Typer(help="Per-user memory settings.")
app.add_typer(settings_app, name="settings")

@settings_app.command("show")
def show_settings(agent_id: int):
    """Effective memory settings for an agent (taken from its creator)."""
    with Session(engine) as session:
        effective = resolve_memory_settings(session, agent_id)
    # Printed in the stored form that `settings set` accepts
    for key, value in effective.to_rows():
        print(f"{key}: {value}")

@settings_app.command("set")
def set_setting(user_id: str, key: str, value: str):
    """Store one memory setting for a user."""
    with Session(engine) as session:
        try:
            save_memory_setting(session, user_id, key, value)
        except ValueError as e:
            fail(str(e))
    print(f"✅ {key} = {value}")

if __name__ == "__main__":
    app()
