"""Deliberation Coordinator - Planner, Worker, Critic, Arbiter rounds.

Execution model per round:
1. Planner frames the request (no vote)
2. Workers propose candidates in parallel; each self-reported confidence
   is a Worker vote
3. One Critic call per candidate, in parallel
4. Arbiter votes; the aggregator ranks

A clear, untied leader ends deliberation. Otherwise the next round starts
with critic feedback, and after the last round the leader is forced with
needs_clarification set. Roles are dispatched through a lookup table keyed
by AgentRole.
"""

import atexit
import logging
import threading
import time
import uuid
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from mailpilot.common.constants import DeliberationConstants
from mailpilot.common.exceptions import CapabilityFailure, DeliberationExhausted
from mailpilot.core.types import AgentRole, Vote
from mailpilot.governance.policies import PolicyRules
from mailpilot.orchestration.aggregator import Ranking, VoteAggregator
from mailpilot.orchestration.decision_context import (
    Candidate,
    Decision,
    InboundMessage,
    ScoredCandidate,
)
from mailpilot.providers.base import CapabilityClient

logger = logging.getLogger(__name__)


ROUND_SEQUENCE: Tuple[AgentRole, ...] = (
    AgentRole.PLANNER,
    AgentRole.WORKER,
    AgentRole.CRITIC,
    AgentRole.ARBITER,
)


class _DeadlineReached(Exception):
    pass


@dataclass
class RoundState:
    """Mutable scratch state of one round. Discarded after the Decision."""
    round_no: int
    deliberation_id: str
    message: InboundMessage
    feedback: List[Dict[str, Any]] = field(default_factory=list)
    memories: List[Dict[str, Any]] = field(default_factory=list)
    framing: Optional[Dict[str, Any]] = None
    candidates: "OrderedDict[str, Candidate]" = field(default_factory=OrderedDict)
    critic_scores: Dict[str, float] = field(default_factory=dict)
    votes: List[Vote] = field(default_factory=list)
    abstained: List[str] = field(default_factory=list)


# Module-level shared executor, reused across deliberations
_shared_executor: Optional[ThreadPoolExecutor] = None
_executor_lock = threading.Lock()


def _get_shared_executor(max_workers: int = DeliberationConstants.MAX_WORKER_THREADS) -> ThreadPoolExecutor:
    global _shared_executor
    with _executor_lock:
        if _shared_executor is None:
            _shared_executor = ThreadPoolExecutor(
                max_workers=max_workers,
                thread_name_prefix="DeliberationWorker"
            )
            atexit.register(_shutdown_shared_executor)
            logger.info(f"Created shared deliberation executor with {max_workers} workers")
    return _shared_executor


def _shutdown_shared_executor() -> None:
    global _shared_executor
    if _shared_executor is not None:
        _shared_executor.shutdown(wait=True, cancel_futures=False)
        logger.info("Shared deliberation executor shutdown complete")
        _shared_executor = None


def shutdown_executor() -> None:
    """Explicitly shutdown the shared executor during application shutdown."""
    _shutdown_shared_executor()


class DeliberationCoordinator:
    """Runs the multi-round protocol and emits one Decision.

    Stateless between deliberations; safe to share across threads.
    """

    def __init__(
        self,
        client: CapabilityClient,
        rules: Optional[PolicyRules] = None,
        aggregator: Optional[VoteAggregator] = None,
        executor: Optional[ThreadPoolExecutor] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.rules = rules or PolicyRules()
        self.aggregator = aggregator or VoteAggregator(self.rules.votes)
        self._executor = executor
        self._clock = clock

        self._handlers: Dict[AgentRole, Callable[[RoundState, float], None]] = {
            AgentRole.PLANNER: self._run_planner,
            AgentRole.WORKER: self._run_workers,
            AgentRole.CRITIC: self._run_critics,
            AgentRole.ARBITER: self._run_arbiter,
        }

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is not None:
            return self._executor
        return _get_shared_executor()

    def deliberate(
        self,
        message: InboundMessage,
        deliberation_id: Optional[str] = None,
        memories: Optional[List[Dict[str, Any]]] = None,
    ) -> Decision:
        """Run rounds until a clear winner, round exhaustion or the deadline.

        Args:
            message: The inbound email.
            deliberation_id: Correlates the AgentSteps of this run.
            memories: Retrieved memories handed to the Planner and Workers.

        Raises:
            DeliberationExhausted: No round produced a single vote.
        """
        policy = self.rules.deliberation
        deliberation_id = deliberation_id or f"dlb_{uuid.uuid4().hex[:16]}"
        deadline = self._clock() + policy.deadline_seconds

        feedback: List[Dict[str, Any]] = []
        last_voted: Optional[RoundState] = None
        rounds_used = 0
        deadline_hit = False

        for round_no in range(1, policy.max_rounds + 1):
            rounds_used = round_no
            state = RoundState(
                round_no=round_no,
                deliberation_id=deliberation_id,
                message=message,
                feedback=feedback,
                memories=list(memories or []),
            )

            for role in ROUND_SEQUENCE:
                if self._remaining(deadline) <= 0:
                    deadline_hit = True
                    break
                try:
                    self._handlers[role](state, deadline)
                except _DeadlineReached:
                    deadline_hit = True
                    break
                if role == AgentRole.WORKER and not state.candidates:
                    # Nothing to score this round
                    break

            if state.votes:
                last_voted = state
                ranking = self.aggregator.rank(state.votes)
                if self._is_clear_winner(ranking):
                    return self._build_decision(state, ranking, rounds_used, forced=False)
                feedback = self._feedback(state, ranking)

            if deadline_hit:
                logger.warning(
                    "Deliberation deadline reached",
                    extra={"deliberation_id": deliberation_id, "round_no": round_no},
                )
                break

        if last_voted is None:
            raise DeliberationExhausted(
                "Every role abstained; no usable vote",
                details={
                    "deliberation_id": deliberation_id,
                    "rounds_used": rounds_used,
                    "deadline_hit": deadline_hit,
                },
            )

        ranking = self.aggregator.rank(last_voted.votes)
        # A clear leader can only reach here via the deadline
        forced = not self._is_clear_winner(ranking)
        return self._build_decision(last_voted, ranking, rounds_used, forced=forced)

    def _is_clear_winner(self, ranking: Ranking) -> bool:
        # Ties are already settled by the Arbiter inside rank()
        leader = ranking.leader
        return leader is not None and leader.aggregate >= self.rules.deliberation.clear_winner_threshold

    # ===== ROLE HANDLERS =====

    def _invoke(self, role: AgentRole, tool: str, context: Dict[str, Any], state: RoundState):
        policy = self.rules.deliberation
        return self.client.invoke_with_retry(
            role,
            tool,
            context,
            round_no=state.round_no,
            deliberation_id=state.deliberation_id,
            retries=policy.capability_retries,
            backoff_seconds=policy.retry_backoff_seconds,
        )

    def _run_planner(self, state: RoundState, deadline: float) -> None:
        context = {
            "message": state.message.to_prompt(),
            "memories": state.memories,
            "round_no": state.round_no,
        }
        results, timed_out = self._gather(
            [(0, lambda: self._invoke(AgentRole.PLANNER, DeliberationConstants.PLANNER_TOOL, context, state))],
            deadline,
            state,
            AgentRole.PLANNER,
        )
        plan = results.get(0)
        if plan is not None:
            state.framing = plan.model_dump()
        if timed_out:
            raise _DeadlineReached()

    def _run_workers(self, state: RoundState, deadline: float) -> None:
        tasks = []
        for worker_index in range(self.rules.deliberation.workers_per_round):
            context = {
                "message": state.message.to_prompt(),
                "framing": state.framing,
                "feedback": list(state.feedback),
                "memories": state.memories,
                "worker_index": worker_index,
                "round_no": state.round_no,
            }
            tasks.append((
                worker_index,
                lambda ctx=context: self._invoke(AgentRole.WORKER, DeliberationConstants.WORKER_TOOL, ctx, state),
            ))

        results, timed_out = self._gather(tasks, deadline, state, AgentRole.WORKER)
        for worker_index in sorted(results):
            candidate = Candidate.from_interpretation(results[worker_index])
            state.candidates.setdefault(candidate.candidate_id, candidate)
            state.votes.append(Vote(
                candidate_id=candidate.candidate_id,
                score=candidate.confidence,
                role=AgentRole.WORKER,
            ))
        if timed_out:
            raise _DeadlineReached()

    def _run_critics(self, state: RoundState, deadline: float) -> None:
        tasks = []
        for position, candidate in enumerate(state.candidates.values()):
            context = {
                "message": state.message.to_prompt(),
                "framing": state.framing,
                "candidate": candidate.to_prompt(),
                "round_no": state.round_no,
            }
            tasks.append((
                position,
                lambda ctx=context: self._invoke(AgentRole.CRITIC, DeliberationConstants.CRITIC_TOOL, ctx, state),
            ))

        results, timed_out = self._gather(tasks, deadline, state, AgentRole.CRITIC)
        candidates = list(state.candidates.values())
        for position in sorted(results):
            critique = results[position]
            candidate_id = candidates[position].candidate_id
            state.critic_scores[candidate_id] = critique.score
            state.votes.append(Vote(
                candidate_id=candidate_id,
                score=critique.score,
                role=AgentRole.CRITIC,
                reasons=critique.reasons,
                evidence_ids=critique.evidence_ids,
            ))
        if timed_out:
            raise _DeadlineReached()

    def _run_arbiter(self, state: RoundState, deadline: float) -> None:
        context = {
            "message": state.message.to_prompt(),
            "framing": state.framing,
            "candidates": [
                {**candidate.to_prompt(), "critic_score": state.critic_scores.get(candidate.candidate_id)}
                for candidate in state.candidates.values()
            ],
            "round_no": state.round_no,
        }
        results, timed_out = self._gather(
            [(0, lambda: self._invoke(AgentRole.ARBITER, DeliberationConstants.ARBITER_TOOL, context, state))],
            deadline,
            state,
            AgentRole.ARBITER,
        )
        arbitration = results.get(0)
        if arbitration is None:
            if timed_out:
                raise _DeadlineReached()
            return

        for arbiter_vote in arbitration.votes:
            if arbiter_vote.candidate_id not in state.candidates:
                logger.warning(
                    "Arbiter voted on unknown candidate",
                    extra={"deliberation_id": state.deliberation_id, "candidate_id": arbiter_vote.candidate_id},
                )
                continue
            state.votes.append(Vote(
                candidate_id=arbiter_vote.candidate_id,
                score=arbiter_vote.score,
                role=AgentRole.ARBITER,
                reasons=arbiter_vote.reasons,
                evidence_ids=arbiter_vote.evidence_ids,
            ))

    def _gather(
        self,
        tasks: List[Tuple[int, Callable[[], Any]]],
        deadline: float,
        state: RoundState,
        role: AgentRole,
    ) -> Tuple[Dict[int, Any], bool]:
        """Run tasks concurrently; failed tasks abstain.

        Returns the results that finished, keyed by task key, and whether the
        deadline cut the wait short.
        """
        executor = self._get_executor()
        futures = {executor.submit(fn): key for key, fn in tasks}
        results: Dict[int, Any] = {}

        try:
            for future in as_completed(futures, timeout=max(0.0, self._remaining(deadline))):
                key = futures[future]
                try:
                    results[key] = future.result()
                except CapabilityFailure as e:
                    logger.warning(
                        f"{role.value} abstains: {e.message}",
                        extra={"deliberation_id": state.deliberation_id, "round_no": state.round_no},
                    )
                    state.abstained.append(role.value)
        except FuturesTimeout:
            for future in futures:
                future.cancel()
            return results, True

        return results, False

    def _remaining(self, deadline: float) -> float:
        return deadline - self._clock()

    # ===== TERMINAL STEP =====

    def _feedback(self, state: RoundState, ranking: Ranking) -> List[Dict[str, Any]]:
        feedback = []
        for score in ranking.scores:
            candidate = state.candidates[score.candidate_id]
            feedback.append({
                "candidate_id": score.candidate_id,
                "action_type": candidate.action_type,
                "parameters": dict(candidate.parameters),
                "aggregate": score.aggregate,
                "critic_score": state.critic_scores.get(score.candidate_id),
                "reasons": list(score.reasons),
            })
        return feedback

    def _build_decision(self, state: RoundState, ranking: Ranking, rounds_used: int, forced: bool) -> Decision:
        leader = ranking.leader
        chosen = state.candidates[leader.candidate_id]
        alternatives = tuple(
            ScoredCandidate(
                candidate=state.candidates[score.candidate_id],
                aggregate=score.aggregate,
                reasons=score.reasons,
                evidence_ids=score.evidence_ids,
            )
            for score in ranking.scores[1:]
        )

        needs_clarification = forced or chosen.needs_clarification
        clarification_prompt = chosen.clarification_prompt
        if forced and not clarification_prompt:
            clarification_prompt = self._clarification_prompt(chosen, leader.aggregate, alternatives)

        decision = Decision(
            deliberation_id=state.deliberation_id,
            candidate_id=chosen.candidate_id,
            action_type=chosen.action_type,
            parameters=dict(chosen.parameters),
            confidence=leader.aggregate,
            needs_clarification=needs_clarification,
            clarification_prompt=clarification_prompt if needs_clarification else None,
            votes=tuple(state.votes),
            alternatives=alternatives,
            rounds_used=rounds_used,
            rationale=leader.reasons,
            evidence_ids=leader.evidence_ids,
            scope_hint=chosen.scope_hint,
        )

        logger.info(
            "Deliberation finished",
            extra={
                "deliberation_id": decision.deliberation_id,
                "action_type": decision.action_type,
                "confidence": decision.confidence,
                "needs_clarification": decision.needs_clarification,
                "rounds_used": rounds_used,
                "candidates": len(ranking.scores),
                "abstained": list(state.abstained),
            },
        )
        return decision

    @staticmethod
    def _clarification_prompt(
        chosen: Candidate,
        aggregate: float,
        alternatives: Tuple[ScoredCandidate, ...],
    ) -> str:
        if not alternatives:
            return (
                f"I think you want me to {_describe(chosen)}, but I'm not sure "
                f"(confidence {aggregate:.2f}). Can you confirm?"
            )
        options = [f"1) {_describe(chosen)} ({aggregate:.2f})"]
        for number, alt in enumerate(alternatives, start=2):
            options.append(f"{number}) {_describe(alt.candidate)} ({alt.aggregate:.2f})")
        return "I found several possible interpretations: " + "; ".join(options) + ". Which one did you mean?"


def _describe(candidate: Candidate) -> str:
    if not candidate.parameters:
        return candidate.action_type
    details = ", ".join(f"{k}={v}" for k, v in sorted(candidate.parameters.items()))
    return f"{candidate.action_type} ({details})"
