"""Core module - shared enums and value types."""

from mailpilot.core.types import (
    AgentRole,
    ExecutionPath,
    ActionStatus,
    MemoryScope,
    TtlCategory,
    Vote,
)

__all__ = [
    "AgentRole",
    "ExecutionPath",
    "ActionStatus",
    "MemoryScope",
    "TtlCategory",
    "Vote",
]
