"""Policy rules for deliberation, routing, confirmation and memory."""

from mailpilot.governance.policies.rules import PolicyRules, load_policy_rules

__all__ = ["PolicyRules", "load_policy_rules"]
