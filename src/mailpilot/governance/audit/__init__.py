"""Audit module - append-only record of every agent invocation.

Components:
- AgentStep: One capability call (role, tool, score, tokens, latency)
- AgentStepLog: In-memory index with optional hash-chained JSONL persistence
"""

from mailpilot.governance.audit.schemas import AgentStep
from mailpilot.governance.audit.step_log import AgentStepLog, AgentStepLogIntegrityError

__all__ = [
    "AgentStep",
    "AgentStepLog",
    "AgentStepLogIntegrityError",
]
