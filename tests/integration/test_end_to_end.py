"""End-to-end tests: inbound email to Decision, route, Action and link visits."""

import pytest

from mailpilot.actions import ConfirmationOutcome, ExecutionReport, LinkSigner
from mailpilot.api.service import InboundProcessingService
from mailpilot.common.constants import DeliberationConstants
from mailpilot.core.types import ActionStatus, AgentRole, ExecutionPath, MemoryScope
from mailpilot.governance.policies import PolicyRules


class RecordingExecutor:
    def __init__(self):
        self.executed = []

    def execute(self, action):
        self.executed.append(action.action_id)
        return ExecutionReport(success=True)


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def send_confirmation(self, action, links):
        self.sent.append(("confirmation", action.action_id))

    def send_options(self, action, links):
        self.sent.append(("options", action.action_id))


@pytest.fixture
def action_executor():
    return RecordingExecutor()


@pytest.fixture
def notifier():
    return RecordingNotifier()


def build_service(client, action_executor, notifier, rules=None):
    return InboundProcessingService(
        client=client,
        rules=rules or PolicyRules(),
        signer=LinkSigner("integration-secret"),
        executor=action_executor,
        notifier=notifier,
        base_url="https://pilot.example.com",
    )


def token_of(url):
    return url.rsplit("/", 1)[-1]


class TestConfirmSingleFlow:

    def test_mid_confidence_waits_for_one_confirmation(
        self, client, provider, script_round, action_executor, notifier, inbound_message
    ):
        script_round(
            [("create_event", {"title": "Lunch"}, 0.6)],
            critic={"create_event": 0.6},
            arbiter={"create_event": 0.6},
        )
        provider.script(AgentRole.WORKER, DeliberationConstants.LANGUAGE_TOOL, {"language": "en", "confidence": 0.97})
        provider.script(AgentRole.WORKER, DeliberationConstants.MEMORY_TOOL, {"items": [{
            "key": "lunch_preference",
            "value": "Fridays",
            "scope": "user",
            "ttl_category": "seasonal",
            "confidence": 0.7,
        }]})
        service = build_service(client, action_executor, notifier)

        try:
            response = service.process(inbound_message)

            assert response.confidence == pytest.approx(0.6)
            assert response.needs_clarification is False
            assert response.path == ExecutionPath.CONFIRM_SINGLE
            assert response.action_status == ActionStatus.AWAITING_CONFIRMATION
            assert response.language == "en"
            assert response.memories_stored == 1
            assert service.memory_store.get(MemoryScope.USER, "alex@example.com", "lunch_preference") is not None
            assert response.notified is True
            assert notifier.sent == [("confirmation", response.action_id)]
            assert action_executor.executed == []

            token = token_of(response.links.confirm_url)
            first = service.state_machine.handle(token)
            assert first.outcome == ConfirmationOutcome.DISPATCHED
            assert action_executor.executed == [response.action_id]

            status_before = service.state_machine.get(response.action_id).status
            second = service.state_machine.handle(token)
            assert second.outcome == ConfirmationOutcome.ALREADY_PROCESSED
            assert service.state_machine.get(response.action_id).status == status_before
            assert action_executor.executed == [response.action_id]
        finally:
            service.shutdown()


class TestAutoExecuteFlow:

    def test_high_confidence_executes_without_links(
        self, client, script_round, action_executor, notifier, inbound_message
    ):
        script_round(
            [("create_event", {"title": "Lunch"}, 0.95)],
            critic={"create_event": 0.95},
            arbiter={"create_event": 0.95},
        )
        service = build_service(client, action_executor, notifier)

        try:
            response = service.process(inbound_message)
        finally:
            service.shutdown()

        assert response.path == ExecutionPath.AUTO_EXECUTE
        assert response.links is None
        assert response.notified is False
        assert response.action_status == ActionStatus.COMPLETED
        assert action_executor.executed == [response.action_id]
        assert notifier.sent == []
        # Unscripted language and memory tools do not affect the outcome
        assert response.language is None
        assert response.memories_stored == 0


class TestArbiterTieBreak:

    def test_arbiter_vote_picks_winner_among_close_candidates(
        self, client, script_round, action_executor, notifier, inbound_message
    ):
        rules = PolicyRules(deliberation=PolicyRules.DeliberationRules(workers_per_round=3))
        ids = script_round(
            [
                ("create_event", {"title": "Lunch"}, 0.4),
                ("create_reminder", {"title": "Lunch"}, 0.4),
                ("reply", {"text": "Friday works"}, 0.4),
            ],
            critic={"create_event": 0.52, "create_reminder": 0.50, "reply": 0.42},
            arbiter={"create_event": 0.35, "create_reminder": 0.36, "reply": 0.40},
        )
        service = build_service(client, action_executor, notifier, rules=rules)

        try:
            decision = service.coordinator.deliberate(inbound_message)
            # Weighted mean favours create_event; the Arbiter prefers reply
            assert decision.candidate_id == ids["reply"]
            alternatives = {alt.candidate_id: alt.aggregate for alt in decision.alternatives}
            assert alternatives[ids["create_event"]] > decision.confidence
            assert decision.needs_clarification is True

            response = service.process(inbound_message)
            assert response.path == ExecutionPath.CHOOSE_ONE
            assert response.action_type == "reply"
            assert set(response.links.option_urls) == set(ids.values())
            assert notifier.sent == [("options", response.action_id)]

            chosen = service.state_machine.handle(token_of(response.links.option_urls[ids["create_event"]]))
            assert chosen.outcome == ConfirmationOutcome.DISPATCHED
            assert service.state_machine.get(response.action_id).type == "create_event"
        finally:
            service.shutdown()

    def test_confident_arbiter_pick_executes_without_clarification(
        self, client, script_round, action_executor, notifier, inbound_message
    ):
        script_round(
            [
                ("create_event", {"title": "Lunch"}, 0.95),
                ("create_reminder", {"title": "Lunch"}, 0.95),
            ],
            critic={"create_event": 0.97, "create_reminder": 0.93},
            arbiter={"create_event": 0.90, "create_reminder": 0.93},
        )
        service = build_service(client, action_executor, notifier)

        try:
            response = service.process(inbound_message)
            assert response.path == ExecutionPath.AUTO_EXECUTE
            assert response.action_type == "create_reminder"
            assert response.needs_clarification is False
            assert response.links is None
            assert action_executor.executed == [response.action_id]
        finally:
            service.shutdown()
