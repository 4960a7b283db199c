"""Governance module - policy rules and the agent step audit trail."""

from mailpilot.governance.policies import PolicyRules, load_policy_rules
from mailpilot.governance.audit import AgentStep, AgentStepLog, AgentStepLogIntegrityError

__all__ = [
    "PolicyRules",
    "load_policy_rules",
    "AgentStep",
    "AgentStepLog",
    "AgentStepLogIntegrityError",
]
