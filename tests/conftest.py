"""Shared fixtures for MailPilot tests."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from mailpilot.common.config import reset_config
from mailpilot.common.constants import DeliberationConstants
from mailpilot.core.types import AgentRole
from mailpilot.governance.audit import AgentStepLog
from mailpilot.orchestration import InboundMessage, candidate_id_for
from mailpilot.providers import CapabilityClient, ScriptedProvider


@pytest.fixture(autouse=True)
def clean_config(monkeypatch):
    """Each test starts from environment defaults."""
    monkeypatch.delenv("MAILPILOT_ENVIRONMENT", raising=False)
    monkeypatch.delenv("MAILPILOT_PROVIDER", raising=False)
    monkeypatch.delenv("MAILPILOT_ACTION_STORE", raising=False)
    monkeypatch.delenv("MAILPILOT_MEMORY_STORE", raising=False)
    monkeypatch.delenv("MAILPILOT_AGENT_STEP_LOG_DIR", raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def inbound_message():
    return InboundMessage(
        message_id="msg-001",
        subject="Lunch on Friday?",
        from_email="Alex@Example.com",
        from_name="Alex",
        text_body="Could we meet for lunch on Friday at noon?",
        account_id="acct-1",
        thread_id="thread-1",
    )


@pytest.fixture
def executor():
    pool = ThreadPoolExecutor(max_workers=4, thread_name_prefix="TestDeliberation")
    yield pool
    pool.shutdown(wait=True)


@pytest.fixture
def sleeps():
    """Records backoff sleeps instead of sleeping."""
    return []


@pytest.fixture
def provider():
    return ScriptedProvider()


@pytest.fixture
def client(provider, sleeps):
    return CapabilityClient(provider, AgentStepLog(), sleep=sleeps.append)


@pytest.fixture
def script_round(provider):
    """Script one deliberation round.

    ``proposals`` is a list of (action_type, parameters, worker confidence),
    one per worker. ``critic`` and ``arbiter`` map action_type to score.
    """

    def _script(proposals, critic, arbiter=None):
        provider.script(AgentRole.PLANNER, DeliberationConstants.PLANNER_TOOL, {
            "framing": "Sender wants something scheduled",
            "subtasks": ["find action"],
        })
        provider.script(
            AgentRole.WORKER,
            DeliberationConstants.WORKER_TOOL,
            [
                {"action_type": action_type, "parameters": parameters, "confidence": confidence}
                for action_type, parameters, confidence in proposals
            ],
            by_context_key="worker_index",
        )
        provider.script(
            AgentRole.CRITIC,
            DeliberationConstants.CRITIC_TOOL,
            lambda ctx: {
                "score": critic[ctx["candidate"]["action_type"]],
                "reasons": [f"{ctx['candidate']['action_type']} fits"],
                "evidence_ids": ["msg-001"],
            },
        )
        if arbiter is not None:
            provider.script(
                AgentRole.ARBITER,
                DeliberationConstants.ARBITER_TOOL,
                lambda ctx: {
                    "votes": [
                        {"candidate_id": c["candidate_id"], "score": arbiter[c["action_type"]]}
                        for c in ctx["candidates"]
                    ]
                },
            )
        return {
            action_type: candidate_id_for(action_type, parameters)
            for action_type, parameters, _ in proposals
        }

    return _script
