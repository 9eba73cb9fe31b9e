"""
Memory settings resolution.

Memory behaviour belongs to the user who created the agent, not to whoever is
chatting with it. Settings are stored as loose ``UserSetting`` rows in the
``"memory"`` category and decoded into a typed ``MemorySettings`` here, and
only here.
"""
import warnings
from enum import Enum
from typing import Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field
from sqlmodel import Session, select

from chatmem.config import settings as app_settings
from chatmem.models.core import Agent, User, UserSetting
from chatmem.logging import logger

MEMORY_CATEGORY = "memory"

_TRUE_VALUES = {"1", "true", "yes", "on"}


class SummaryStyle(str, Enum):
    BRIEF = "brief"
    DETAILED = "detailed"
    STRUCTURED = "structured"


class MemorySettings(BaseModel):
    """Effective memory configuration. Field defaults are the global defaults."""
    model_config = ConfigDict(frozen=True)

    memory_enabled: bool = False
    memory_model: str = "undefined"
    memory_trigger_rounds: int = Field(default=20, ge=1)
    max_memory_entries: int = Field(default=10, ge=1)
    summary_style: SummaryStyle = SummaryStyle.DETAILED
    memory_system_prompt: str = ""

    @property
    def trigger_turns(self) -> int:
        """One round is a user turn plus an assistant turn."""
        return self.memory_trigger_rounds * 2

    @classmethod
    def from_rows(cls, rows: Iterable[Tuple[str, Optional[str]]]) -> "MemorySettings":
        """Decode stored (key, value) strings, keeping defaults for anything missing or unusable."""
        values = {key: value for key, value in rows}
        defaults = cls()
        return cls(
            memory_enabled=_decode_bool(values.get("memory_enabled")),
            memory_model=values.get("memory_model") or defaults.memory_model,
            memory_trigger_rounds=_decode_positive_int(
                values.get("memory_trigger_rounds"), defaults.memory_trigger_rounds
            ),
            max_memory_entries=_decode_positive_int(
                values.get("max_memory_entries"), defaults.max_memory_entries
            ),
            summary_style=_decode_style(values.get("summary_style"), defaults.summary_style),
            memory_system_prompt=values.get("memory_system_prompt") or defaults.memory_system_prompt,
        )

    def to_rows(self) -> List[Tuple[str, str]]:
        return [
            ("memory_enabled", "1" if self.memory_enabled else "0"),
            ("memory_model", self.memory_model),
            ("memory_trigger_rounds", str(self.memory_trigger_rounds)),
            ("max_memory_entries", str(self.max_memory_entries)),
            ("summary_style", self.summary_style.value),
            ("memory_system_prompt", self.memory_system_prompt),
        ]


MEMORY_SETTING_KEYS = frozenset(MemorySettings.model_fields)


def _decode_bool(raw: Optional[str]) -> bool:
    return raw is not None and raw.strip().lower() in _TRUE_VALUES


def _decode_positive_int(raw: Optional[str], default: int) -> int:
    if raw is None:
        return default
    try:
        value = int(raw.strip(), 10)
    except ValueError:
        return default
    return value if value >= 1 else default


def _decode_style(raw: Optional[str], default: SummaryStyle) -> SummaryStyle:
    try:
        return SummaryStyle(raw.strip().lower()) if raw else default
    except ValueError:
        return default


def _memory_rows(session: Session, user_id: str) -> List[Tuple[str, Optional[str]]]:
    rows = session.exec(
        select(UserSetting).where(
            UserSetting.user_id == user_id,
            UserSetting.category == MEMORY_CATEGORY,
        ).order_by(UserSetting.key)
    ).all()
    return [(row.key, row.value) for row in rows]


def get_user_memory_settings(session: Session, user_id: str) -> MemorySettings:
    """Decode one user's memory preferences."""
    return MemorySettings.from_rows(_memory_rows(session, user_id))


def resolve_memory_settings(session: Session, agent_id: Optional[int]) -> MemorySettings:
    """
    Effective settings for an agent: its creator's memory preferences over the defaults.

    Total: a missing agent, owner or key, or a failing store, all resolve to
    the defaults (memory disabled).
    """
    if not agent_id:
        return MemorySettings()
    try:
        agent = session.get(Agent, agent_id)
        if not agent:
            return MemorySettings()
        return get_user_memory_settings(session, agent.user_id)
    except Exception:
        logger.exception(f"Failed to resolve memory settings for agent {agent_id}; using defaults")
        return MemorySettings()


def save_memory_setting(session: Session, user_id: str, key: str, value: str) -> UserSetting:
    """Create or update a single memory setting for a user."""
    if key not in MEMORY_SETTING_KEYS:
        raise ValueError(f"Unknown memory setting '{key}'")
    _validate_value(key, value)

    row = session.exec(
        select(UserSetting).where(UserSetting.user_id == user_id, UserSetting.key == key)
    ).first()
    if row:
        row.value = value
        row.category = MEMORY_CATEGORY
    else:
        row = UserSetting(user_id=user_id, key=key, value=value, category=MEMORY_CATEGORY)
    session.add(row)
    session.commit()
    session.refresh(row)
    return row


def _validate_value(key: str, value: str) -> None:
    if key in ("memory_trigger_rounds", "max_memory_entries"):
        try:
            parsed = int(value, 10)
        except ValueError:
            raise ValueError(f"{key} must be an integer, got '{value}'")
        if parsed < 1:
            raise ValueError(f"{key} must be at least 1")
    elif key == "summary_style":
        allowed = [s.value for s in SummaryStyle]
        if value not in allowed:
            raise ValueError(f"summary_style must be one of {', '.join(allowed)}")
    elif key == "memory_enabled":
        if value.strip().lower() not in _TRUE_VALUES | {"0", "false", "no", "off"}:
            raise ValueError(f"memory_enabled must be a boolean, got '{value}'")


# ---------------------------------------------------------------------------
# Deprecated global fallback
# ---------------------------------------------------------------------------
def _fallback_user_id(session: Session) -> Optional[str]:
    if app_settings.MEMORY_FALLBACK_USER_ID:
        return app_settings.MEMORY_FALLBACK_USER_ID
    first = session.exec(select(User).order_by(User.created_at, User.id)).first()
    return first.id if first else None


def resolve_fallback_memory_settings(session: Session) -> MemorySettings:
    """
    Deprecated: settings of a single "global" user.

    Uses MEMORY_FALLBACK_USER_ID when configured, otherwise the earliest-created
    user. Kept for hosts that predate per-agent ownership; the engine itself
    always resolves through ``resolve_memory_settings``.
    """
    warnings.warn(
        "resolve_fallback_memory_settings is deprecated; use resolve_memory_settings(session, agent_id)",
        DeprecationWarning,
        stacklevel=2,
    )
    user_id = _fallback_user_id(session)
    if not user_id:
        return MemorySettings()
    return get_user_memory_settings(session, user_id)
