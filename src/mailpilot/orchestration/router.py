"""Confidence Router - maps a Decision to an execution path.

Pure classification. Creating and dispatching the Action is the state
machine's job.
"""

from typing import Optional

from mailpilot.core.types import ExecutionPath
from mailpilot.governance.policies import PolicyRules
from mailpilot.orchestration.decision_context import Decision


class ConfidenceRouter:
    """Deterministic and side-effect free."""

    def __init__(self, routing_rules: Optional[PolicyRules.RoutingRules] = None):
        self.rules = routing_rules or PolicyRules.RoutingRules()

    def classify(self, confidence: float, needs_clarification: bool, candidate_count: int) -> ExecutionPath:
        """Classify from the three inputs alone.

        Args:
            confidence: Aggregate confidence of the chosen candidate.
            needs_clarification: Forces a user-facing path.
            candidate_count: Number of viable candidates, the chosen one included.
        """
        if not 0.0 <= confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {confidence}")

        several = candidate_count > 1

        if needs_clarification:
            return ExecutionPath.CHOOSE_ONE if several else ExecutionPath.CONFIRM_SINGLE

        if confidence >= self.rules.auto_execute_threshold:
            return ExecutionPath.AUTO_EXECUTE

        if confidence >= self.rules.confirm_threshold:
            return ExecutionPath.CONFIRM_SINGLE

        return ExecutionPath.CHOOSE_ONE if several else ExecutionPath.CONFIRM_SINGLE

    def viable_candidate_count(self, decision: Decision) -> int:
        return decision.viable_candidate_count(self.rules.viable_floor)

    def route(self, decision: Decision) -> ExecutionPath:
        return self.classify(
            decision.confidence,
            decision.needs_clarification,
            self.viable_candidate_count(decision),
        )
