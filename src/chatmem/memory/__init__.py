from chatmem.memory.service import (
    should_trigger_memory,
    generate_memory,
    get_memory_context,
    run_memory_check,
    force_generate_memory,
)
from chatmem.memory.summarizer import MemoryContext
from chatmem.memory.context import inject_memory_context
from chatmem.memory.settings import MemorySettings, SummaryStyle, resolve_memory_settings

__all__ = [
    "should_trigger_memory",
    "generate_memory",
    "get_memory_context",
    "run_memory_check",
    "force_generate_memory",
    "inject_memory_context",
    "MemoryContext",
    "MemorySettings",
    "SummaryStyle",
    "resolve_memory_settings",
]
