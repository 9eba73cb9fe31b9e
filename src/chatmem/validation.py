from typing import List
from sqlalchemy import inspect
from sqlmodel import Session, select
from chatmem.db import engine, DATA_DIR
from chatmem.models.core import Agent, Conversation, UserSetting
from chatmem.models.memory import ConversationMemory

def validate_schema() -> List[str]:
    """Check that the tables the memory engine reads and writes exist in the database."""
    errors = []
    required_models = [Agent, Conversation, UserSetting, ConversationMemory]
    try:
        inspector = inspect(engine)
        for model in required_models:
            if not inspector.has_table(model.__tablename__):
                errors.append(f"Table '{model.__tablename__}' is missing (run `chatmem db init`).")
    except Exception as e:
        errors.append(f"Schema inspection failed: {e}")
    return errors

def validate_data_dir() -> List[str]:
    """Data directory must exist and be writable (the SQLite file lives there)."""
    errors = []

    if not DATA_DIR.exists():
        errors.append(f"Data directory missing: {DATA_DIR}")
        return errors

    try:
        test_file = DATA_DIR / ".write_test"
        test_file.touch()
        test_file.unlink()
    except OSError as e:
        errors.append(f"Cannot write to data directory {DATA_DIR}: {e}")

    return errors

def validate_db_connection() -> List[str]:
    """Validate database connection and that the memory table is queryable."""
    errors = []
    try:
        with Session(engine) as session:
            session.exec(select(ConversationMemory).limit(1)).first()
    except Exception as e:
        errors.append(f"Database connection failed: {e}")

    return errors

def run_all_checks() -> List[str]:
    errors = []
    errors.extend(validate_schema())
    errors.extend(validate_data_dir())
    errors.extend(validate_db_connection())
    return errors
