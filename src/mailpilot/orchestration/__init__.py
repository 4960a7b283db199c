"""Orchestration - deliberation rounds, vote aggregation and routing."""

from mailpilot.orchestration.decision_context import (
    InboundMessage,
    Candidate,
    ScoredCandidate,
    Decision,
    candidate_id_for,
)
from mailpilot.orchestration.aggregator import AggregateScore, Ranking, VoteAggregator
from mailpilot.orchestration.deliberation import DeliberationCoordinator, shutdown_executor
from mailpilot.orchestration.router import ConfidenceRouter

__all__ = [
    "InboundMessage",
    "Candidate",
    "ScoredCandidate",
    "Decision",
    "candidate_id_for",
    "AggregateScore",
    "Ranking",
    "VoteAggregator",
    "DeliberationCoordinator",
    "shutdown_executor",
    "ConfidenceRouter",
]
