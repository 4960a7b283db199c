"""Unit tests for the Deliberation Coordinator.

Covers clear winners, ties, forced clarification, retries, abstention and
deadlines. Providers are scripted; workers are keyed by worker_index so
concurrent calls stay deterministic.
"""

import pytest

from mailpilot.common.constants import DeliberationConstants
from mailpilot.common.exceptions import DeliberationExhausted
from mailpilot.core.types import AgentRole
from mailpilot.governance.policies import PolicyRules
from mailpilot.orchestration import DeliberationCoordinator
from mailpilot.providers import ProviderError

EVENT = ("create_event", {"title": "Lunch", "day": "Friday"})
REMINDER = ("create_reminder", {"title": "Lunch"})


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def rules():
    return PolicyRules(deliberation=PolicyRules.DeliberationRules(retry_backoff_seconds=0.1))


@pytest.fixture
def coordinator(client, rules, executor):
    return DeliberationCoordinator(client, rules, executor=executor)


class TestClearWinner:

    def test_agreeing_workers_merge_into_one_candidate(self, coordinator, script_round, inbound_message):
        ids = script_round(
            [(*EVENT, 0.9), (*EVENT, 0.9)],
            critic={"create_event": 0.9},
            arbiter={"create_event": 0.9},
        )

        decision = coordinator.deliberate(inbound_message, deliberation_id="dlb_1")

        assert decision.candidate_id == ids["create_event"]
        assert decision.confidence == pytest.approx(0.9)
        assert decision.needs_clarification is False
        assert decision.clarification_prompt is None
        assert decision.rounds_used == 1
        assert decision.alternatives == ()
        roles = [v.role for v in decision.votes]
        assert roles.count(AgentRole.WORKER) == 2
        assert roles.count(AgentRole.CRITIC) == 1
        assert roles.count(AgentRole.ARBITER) == 1

    def test_stronger_candidate_wins_with_alternative(self, coordinator, script_round, inbound_message):
        ids = script_round(
            [(*EVENT, 0.8), (*REMINDER, 0.3)],
            critic={"create_event": 0.8, "create_reminder": 0.3},
            arbiter={"create_event": 0.8, "create_reminder": 0.3},
        )

        decision = coordinator.deliberate(inbound_message)

        assert decision.action_type == "create_event"
        assert len(decision.alternatives) == 1
        assert decision.alternatives[0].candidate_id == ids["create_reminder"]
        assert decision.alternatives[0].aggregate == pytest.approx(0.3)
        assert decision.rationale == ("create_event fits",)
        assert decision.evidence_ids == ("msg-001",)

    def test_confidence_is_aggregate_of_chosen_votes(self, coordinator, script_round, inbound_message):
        script_round([(*EVENT, 0.6), (*EVENT, 0.6)], critic={"create_event": 0.6}, arbiter={"create_event": 0.6})

        decision = coordinator.deliberate(inbound_message)

        assert decision.confidence == pytest.approx(0.6)

    def test_memories_reach_planner_and_workers(self, coordinator, provider, script_round, inbound_message):
        script_round([(*EVENT, 0.9)], critic={"create_event": 0.9}, arbiter={"create_event": 0.9})
        memories = [{"key": "prefers_mornings", "value": True, "scope": "user", "score": 0.7}]

        coordinator.deliberate(inbound_message, memories=memories)

        for role, tool, ctx in provider.calls:
            if role in (AgentRole.PLANNER, AgentRole.WORKER):
                assert ctx["memories"] == memories


class TestTiesAndClarification:

    def test_confident_tie_ends_with_arbiter_pick(self, coordinator, provider, script_round, inbound_message):
        ids = script_round(
            [(*EVENT, 0.95), (*REMINDER, 0.95)],
            critic={"create_event": 0.97, "create_reminder": 0.93},
            arbiter={"create_event": 0.90, "create_reminder": 0.93},
        )

        decision = coordinator.deliberate(inbound_message)

        # Mean favours create_event by less than epsilon; the Arbiter prefers create_reminder
        assert decision.rounds_used == 1
        assert decision.candidate_id == ids["create_reminder"]
        assert decision.needs_clarification is False
        assert provider.call_count(AgentRole.PLANNER) == 1

    def test_unclear_tie_runs_second_round_then_forces_clarification(
        self, coordinator, provider, script_round, inbound_message
    ):
        ids = script_round(
            [(*EVENT, 0.45), (*REMINDER, 0.45)],
            critic={"create_event": 0.45, "create_reminder": 0.45},
            arbiter={"create_event": 0.45, "create_reminder": 0.5},
        )

        decision = coordinator.deliberate(inbound_message)

        assert decision.rounds_used == 2
        assert decision.candidate_id == ids["create_reminder"]
        assert decision.needs_clarification is True
        assert "several possible interpretations" in decision.clarification_prompt
        assert provider.call_count(AgentRole.PLANNER) == 2

    def test_second_round_receives_feedback(self, coordinator, provider, script_round, inbound_message):
        script_round(
            [(*EVENT, 0.45), (*REMINDER, 0.45)],
            critic={"create_event": 0.45, "create_reminder": 0.45},
            arbiter={"create_event": 0.45, "create_reminder": 0.5},
        )

        coordinator.deliberate(inbound_message)

        worker_contexts = [
            ctx for role, tool, ctx in provider.calls
            if role == AgentRole.WORKER and tool == DeliberationConstants.WORKER_TOOL
        ]
        first = [ctx for ctx in worker_contexts if ctx["round_no"] == 1]
        second = [ctx for ctx in worker_contexts if ctx["round_no"] == 2]
        assert all(ctx["feedback"] == [] for ctx in first)
        assert second and all(len(ctx["feedback"]) == 2 for ctx in second)
        assert {"candidate_id", "aggregate", "critic_score", "reasons"} <= set(second[0]["feedback"][0])

    def test_low_confidence_single_candidate_asks_for_confirmation(
        self, coordinator, script_round, inbound_message
    ):
        script_round([(*REMINDER, 0.3)], critic={"create_reminder": 0.3}, arbiter={"create_reminder": 0.3})

        decision = coordinator.deliberate(inbound_message)

        assert decision.rounds_used == 2
        assert decision.needs_clarification is True
        assert decision.clarification_prompt.startswith("I think you want me to create_reminder")

    def test_single_round_policy_forces_immediately(self, client, executor, script_round, inbound_message):
        rules = PolicyRules(deliberation=PolicyRules.DeliberationRules(max_rounds=1))
        coordinator = DeliberationCoordinator(client, rules, executor=executor)
        script_round([(*REMINDER, 0.3)], critic={"create_reminder": 0.3}, arbiter={"create_reminder": 0.3})

        decision = coordinator.deliberate(inbound_message)

        assert decision.rounds_used == 1
        assert decision.needs_clarification is True

    def test_worker_clarification_flag_is_kept(self, coordinator, provider, script_round, inbound_message):
        script_round([(*EVENT, 0.9)], critic={"create_event": 0.9}, arbiter={"create_event": 0.9})
        provider.script(AgentRole.WORKER, DeliberationConstants.WORKER_TOOL, {
            "action_type": EVENT[0],
            "parameters": EVENT[1],
            "confidence": 0.9,
            "needs_clarification": True,
            "clarification_prompt": "Which Friday?",
        })

        decision = coordinator.deliberate(inbound_message)

        assert decision.needs_clarification is True
        assert decision.clarification_prompt == "Which Friday?"


class TestFailures:

    def test_transient_failure_is_retried(self, coordinator, provider, script_round, sleeps, inbound_message):
        script_round([(*EVENT, 0.9)], critic={"create_event": 0.9}, arbiter={"create_event": 0.9})
        provider.fail(AgentRole.CRITIC, DeliberationConstants.CRITIC_TOOL, times=1)

        decision = coordinator.deliberate(inbound_message)

        assert provider.call_count(AgentRole.CRITIC) == 2
        assert sleeps == [0.1]
        assert AgentRole.CRITIC in [v.role for v in decision.votes]

    def test_critic_abstains_after_retries(self, coordinator, provider, script_round, sleeps, inbound_message):
        script_round([(*EVENT, 0.9)], critic={"create_event": 0.9}, arbiter={"create_event": 0.9})
        provider.fail(AgentRole.CRITIC, DeliberationConstants.CRITIC_TOOL, times=3)

        decision = coordinator.deliberate(inbound_message)

        assert provider.call_count(AgentRole.CRITIC) == 3
        assert sleeps == [0.1, 0.2]
        assert AgentRole.CRITIC not in [v.role for v in decision.votes]
        # Worker and Arbiter only
        assert decision.confidence == pytest.approx(0.9)

    def test_arbiter_abstention_leaves_worker_and_critic(self, coordinator, script_round, inbound_message):
        script_round([(*EVENT, 0.8)], critic={"create_event": 0.9})

        decision = coordinator.deliberate(inbound_message)

        assert AgentRole.ARBITER not in [v.role for v in decision.votes]
        # (0.2 * 0.8 + 0.45 * 0.9) / 0.65
        assert decision.confidence == pytest.approx(0.8692, abs=1e-4)

    def test_schema_invalid_worker_output_abstains(self, coordinator, provider, script_round, inbound_message):
        script_round([(*EVENT, 0.9)], critic={"create_event": 0.9}, arbiter={"create_event": 0.9})
        provider.script(
            AgentRole.WORKER,
            DeliberationConstants.WORKER_TOOL,
            [
                {"action_type": EVENT[0], "parameters": EVENT[1], "confidence": 0.9},
                {"action_type": "create_event", "confidence": 1.7},
            ],
            by_context_key="worker_index",
        )

        decision = coordinator.deliberate(inbound_message)

        worker_votes = [v for v in decision.votes if v.role == AgentRole.WORKER]
        assert len(worker_votes) == 1
        assert decision.action_type == "create_event"

    def test_bad_worker_metadata_abstains(self, coordinator, provider, script_round, inbound_message):
        script_round([(*EVENT, 0.9)], critic={"create_event": 0.9}, arbiter={"create_event": 0.9})
        provider.script(
            AgentRole.WORKER,
            DeliberationConstants.WORKER_TOOL,
            [
                {"action_type": EVENT[0], "parameters": EVENT[1], "confidence": 0.9},
                {"action_type": "create_event", "confidence": 0.9, "model": 42},
            ],
            by_context_key="worker_index",
        )

        decision = coordinator.deliberate(inbound_message)

        worker_votes = [v for v in decision.votes if v.role == AgentRole.WORKER]
        assert len(worker_votes) == 1
        assert decision.action_type == "create_event"

    def test_unknown_scope_hint_abstains(self, coordinator, provider, script_round, inbound_message):
        script_round([(*EVENT, 0.9)], critic={"create_event": 0.9}, arbiter={"create_event": 0.9})
        provider.script(
            AgentRole.WORKER,
            DeliberationConstants.WORKER_TOOL,
            [
                {"action_type": EVENT[0], "parameters": EVENT[1], "confidence": 0.9, "scope_hint": "user"},
                {"action_type": "create_reminder", "confidence": 0.9, "scope_hint": "galaxy"},
            ],
            by_context_key="worker_index",
        )

        decision = coordinator.deliberate(inbound_message)

        worker_votes = [v for v in decision.votes if v.role == AgentRole.WORKER]
        assert len(worker_votes) == 1
        assert decision.action_type == "create_event"
        assert decision.alternatives == ()

    def test_all_workers_failing_exhausts(self, coordinator, provider, script_round, inbound_message):
        script_round([(*EVENT, 0.9)], critic={"create_event": 0.9}, arbiter={"create_event": 0.9})
        provider.script(AgentRole.WORKER, DeliberationConstants.WORKER_TOOL, ProviderError("backend down"))

        with pytest.raises(DeliberationExhausted) as exc_info:
            coordinator.deliberate(inbound_message, deliberation_id="dlb_x")

        assert exc_info.value.details["deliberation_id"] == "dlb_x"
        assert exc_info.value.details["rounds_used"] == 2
        assert provider.call_count(AgentRole.CRITIC) == 0

    def test_planner_failure_does_not_stop_round(self, coordinator, provider, script_round, inbound_message):
        script_round([(*EVENT, 0.9)], critic={"create_event": 0.9}, arbiter={"create_event": 0.9})
        provider.script(AgentRole.PLANNER, DeliberationConstants.PLANNER_TOOL, {"subtasks": []})

        decision = coordinator.deliberate(inbound_message)

        assert decision.action_type == "create_event"

    def test_arbiter_vote_for_unknown_candidate_is_ignored(
        self, coordinator, provider, script_round, inbound_message
    ):
        ids = script_round([(*EVENT, 0.9)], critic={"create_event": 0.9})
        provider.script(AgentRole.ARBITER, DeliberationConstants.ARBITER_TOOL, {
            "votes": [
                {"candidate_id": "cand_made_up", "score": 1.0},
                {"candidate_id": ids["create_event"], "score": 0.9},
            ]
        })

        decision = coordinator.deliberate(inbound_message)

        assert {v.candidate_id for v in decision.votes} == {ids["create_event"]}


class TestDeadline:

    def test_deadline_before_workers_exhausts(self, client, rules, executor, provider, script_round, inbound_message):
        clock = FakeClock()
        coordinator = DeliberationCoordinator(client, rules, executor=executor, clock=clock)
        script_round([(*EVENT, 0.9)], critic={"create_event": 0.9}, arbiter={"create_event": 0.9})

        def slow_plan(ctx):
            clock.now += rules.deliberation.deadline_seconds + 1
            return {"framing": "late"}

        provider.script(AgentRole.PLANNER, DeliberationConstants.PLANNER_TOOL, slow_plan)

        with pytest.raises(DeliberationExhausted) as exc_info:
            coordinator.deliberate(inbound_message)

        assert exc_info.value.details["deadline_hit"] is True
        assert provider.call_count(AgentRole.WORKER) == 0

    def test_deadline_after_critics_uses_votes_so_far(
        self, client, rules, executor, provider, script_round, inbound_message
    ):
        clock = FakeClock()
        coordinator = DeliberationCoordinator(client, rules, executor=executor, clock=clock)
        script_round([(*EVENT, 0.9)], critic={"create_event": 0.9}, arbiter={"create_event": 0.9})

        def slow_critic(ctx):
            clock.now += rules.deliberation.deadline_seconds + 1
            return {"score": 0.9, "reasons": ["fits"]}

        provider.script(AgentRole.CRITIC, DeliberationConstants.CRITIC_TOOL, slow_critic)

        decision = coordinator.deliberate(inbound_message)

        assert provider.call_count(AgentRole.ARBITER) == 0
        assert decision.rounds_used == 1
        assert decision.confidence == pytest.approx(0.9)
        assert decision.needs_clarification is False
