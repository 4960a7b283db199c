"""Vote Aggregator - combines role votes into per-candidate confidence.

Weighted mean of per-role mean scores. Roles that did not vote on a
candidate are left out of the denominator. Ties within epsilon of the
leader are settled by the Arbiter's own score, never by the mean.
"""

from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from mailpilot.common.constants import DeliberationConstants
from mailpilot.core.types import AgentRole, Vote
from mailpilot.governance.policies import PolicyRules

# Float noise guard for the epsilon comparison
_TIE_TOLERANCE = 1e-9


@dataclass(frozen=True)
class AggregateScore:
    """Aggregate confidence and merged rationale for one candidate."""
    candidate_id: str
    aggregate: float
    reasons: Tuple[str, ...] = field(default_factory=tuple)
    evidence_ids: Tuple[str, ...] = field(default_factory=tuple)
    arbiter_score: Optional[float] = None
    vote_count: int = 0


@dataclass(frozen=True)
class Ranking:
    """Candidates best first, plus the ids tied with the leader."""
    scores: Tuple[AggregateScore, ...]
    tied_ids: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def leader(self) -> Optional[AggregateScore]:
        return self.scores[0] if self.scores else None

    @property
    def is_tied(self) -> bool:
        return len(self.tied_ids) > 1

    def get(self, candidate_id: str) -> Optional[AggregateScore]:
        for score in self.scores:
            if score.candidate_id == candidate_id:
                return score
        return None


class VoteAggregator:
    """Deterministic: the same votes in the same order give the same output."""

    def __init__(self, vote_rules: Optional[PolicyRules.VoteRules] = None):
        self.rules = vote_rules or PolicyRules.VoteRules()
        self._weights: Dict[AgentRole, float] = {
            AgentRole.PLANNER: self.rules.planner_weight,
            AgentRole.WORKER: self.rules.worker_weight,
            AgentRole.CRITIC: self.rules.critic_weight,
            AgentRole.ARBITER: self.rules.arbiter_weight,
        }

    def weight_for(self, role: AgentRole) -> float:
        return self._weights[role]

    def aggregate(self, votes: Iterable[Vote]) -> "OrderedDict[str, AggregateScore]":
        """Score every candidate, keyed by candidate id in first-seen order."""
        grouped: "OrderedDict[str, List[Vote]]" = OrderedDict()
        for vote in votes:
            grouped.setdefault(vote.candidate_id, []).append(vote)

        return OrderedDict(
            (candidate_id, self._score_candidate(candidate_id, candidate_votes))
            for candidate_id, candidate_votes in grouped.items()
        )

    def _score_candidate(self, candidate_id: str, votes: List[Vote]) -> AggregateScore:
        by_role: "OrderedDict[AgentRole, List[float]]" = OrderedDict()
        for vote in votes:
            by_role.setdefault(vote.role, []).append(vote.score)

        numerator = 0.0
        denominator = 0.0
        for role, scores in by_role.items():
            weight = self._weights[role]
            if weight <= 0.0:
                continue
            numerator += weight * (sum(scores) / len(scores))
            denominator += weight

        aggregate = numerator / denominator if denominator > 0.0 else 0.0
        aggregate = round(min(1.0, max(0.0, aggregate)), DeliberationConstants.AGGREGATE_PRECISION)

        arbiter_scores = by_role.get(AgentRole.ARBITER)
        return AggregateScore(
            candidate_id=candidate_id,
            aggregate=aggregate,
            reasons=self.merge_reasons(votes),
            evidence_ids=_union(eid for vote in votes for eid in vote.evidence_ids),
            arbiter_score=max(arbiter_scores) if arbiter_scores else None,
            vote_count=len(votes),
        )

    def merge_reasons(self, votes: Iterable[Vote]) -> Tuple[str, ...]:
        """De-duplicated by text, first-seen order, capped at max_reasons."""
        merged = _union(reason.strip() for vote in votes for reason in vote.reasons if reason.strip())
        return merged[: self.rules.max_reasons]

    def rank(self, votes: Iterable[Vote]) -> Ranking:
        scores = list(self.aggregate(votes).values())
        if not scores:
            return Ranking(scores=())

        # Base order: aggregate, then evidence count, then id
        scores.sort(key=lambda s: (-s.aggregate, -len(s.evidence_ids), s.candidate_id))
        top = scores[0].aggregate
        tied = [
            s for s in scores
            if top - s.aggregate < self.rules.tie_epsilon - _TIE_TOLERANCE
        ]

        if len(tied) > 1:
            arbitrated = [s for s in tied if s.arbiter_score is not None]
            if arbitrated:
                # max() keeps the first in base order among equal arbiter scores
                winner = max(arbitrated, key=lambda s: s.arbiter_score)
                scores.remove(winner)
                scores.insert(0, winner)

        return Ranking(
            scores=tuple(scores),
            tied_ids=tuple(s.candidate_id for s in tied),
        )


def _union(items: Iterable[str]) -> Tuple[str, ...]:
    seen = OrderedDict()
    for item in items:
        seen.setdefault(item, None)
    return tuple(seen)
