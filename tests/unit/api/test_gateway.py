"""Tests for the API Gateway.

These tests verify that:
1. /inbound routes messages and returns signed links when needed
2. Link visits map domain errors to HTTP statuses
3. The activity surface is read-only and returns recorded steps
"""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from mailpilot.actions import LinkSigner
from mailpilot.api.adapters import LoggingActionExecutor, LoggingNotifier
from mailpilot.api.gateway import app, get_service
from mailpilot.api.service import InboundProcessingService
from mailpilot.common.constants import DeliberationConstants
from mailpilot.core.types import AgentRole
from mailpilot.governance.audit import AgentStepLog
from mailpilot.governance.policies import PolicyRules
from mailpilot.providers import CapabilityClient, ScriptedProvider, build_demo_provider

SECRET = "gateway-test-secret"


def make_service(provider):
    return InboundProcessingService(
        client=CapabilityClient(provider, AgentStepLog(), sleep=lambda s: None),
        rules=PolicyRules(),
        signer=LinkSigner(SECRET),
        executor=LoggingActionExecutor(),
        notifier=LoggingNotifier(),
        base_url="http://testserver",
    )


@pytest.fixture
def service():
    svc = make_service(build_demo_provider())
    yield svc
    svc.shutdown()


@pytest.fixture
def client(service):
    app.dependency_overrides[get_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


def inbound(subject, body="", **overrides):
    payload = {
        "message_id": "msg-42",
        "subject": subject,
        "from_email": "sam@example.com",
        "from_name": "Sam",
        "text_body": body,
        "account_id": "acct-1",
    }
    payload.update(overrides)
    return payload


def link_path(url):
    return url.replace("http://testserver", "")


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "service": "mailpilot-gateway"}

    def test_request_id_header(self, client):
        assert client.get("/health").headers["X-Request-ID"].startswith("req_")


class TestInbound:

    def test_confident_request_auto_executes(self, client):
        response = client.post("/inbound", json=inbound("Meet tomorrow at 10?"))

        assert response.status_code == 200
        data = response.json()
        assert data["path"] == "AutoExecute"
        assert data["action_status"] == "completed"
        assert data["links"] is None
        assert data["language"] == "en"

    def test_unsure_request_returns_links(self, client):
        response = client.post("/inbound", json=inbound("Can we meet?"))

        data = response.json()
        assert data["path"] == "ConfirmSingle"
        assert data["action_status"] == "awaiting_confirmation"
        assert data["notified"] is True
        assert data["links"]["confirm_url"].startswith("http://testserver/a/")

    def test_missing_message_id_is_rejected(self, client):
        payload = inbound("Hi")
        del payload["message_id"]
        assert client.post("/inbound", json=payload).status_code == 422

    def test_exhausted_deliberation_creates_no_action(self):
        provider = ScriptedProvider()
        provider.script(AgentRole.PLANNER, DeliberationConstants.PLANNER_TOOL, {"framing": "?"})
        svc = make_service(provider)
        app.dependency_overrides[get_service] = lambda: svc
        try:
            response = TestClient(app).post("/inbound", json=inbound("Hello"))
        finally:
            app.dependency_overrides.clear()
            svc.shutdown()

        assert response.status_code == 422
        assert response.json()["error"] == "deliberation_exhausted"
        assert svc.state_machine.store.list_actions() == []


class TestActionLinks:

    def test_confirm_then_replay(self, client):
        links = client.post("/inbound", json=inbound("Can we meet?")).json()["links"]
        path = link_path(links["confirm_url"])

        assert client.get(path).json()["outcome"] == "pending"

        first = client.post(path)
        assert first.status_code == 200
        assert first.json()["outcome"] == "dispatched"

        second = client.post(path)
        assert second.status_code == 200
        assert second.json()["outcome"] == "already_processed"

    def test_cancel(self, client):
        links = client.post("/inbound", json=inbound("Can we meet?")).json()["links"]

        response = client.post(link_path(links["cancel_url"]))

        assert response.json()["outcome"] == "cancelled"
        assert response.json()["status"] == "failed"

    def test_forged_link_is_forbidden(self, client):
        token = LinkSigner("not-the-secret").issue("act_x", "confirm", datetime.now(timezone.utc) + timedelta(hours=1))

        response = client.post(f"/a/{token}")

        assert response.status_code == 403
        assert response.json()["error"] == "confirmation_invalid"
        assert response.json()["request_id"].startswith("req_")

    def test_expired_link_is_gone(self, client):
        token = LinkSigner(SECRET).issue("act_x", "confirm", datetime.now(timezone.utc) - timedelta(minutes=1))

        response = client.post(f"/a/{token}")

        assert response.status_code == 410
        assert response.json()["details"]["action_id"] == "act_x"

    def test_unknown_action_is_not_found(self, client):
        token = LinkSigner(SECRET).issue("act_missing", "confirm", datetime.now(timezone.utc) + timedelta(hours=1))
        assert client.post(f"/a/{token}").status_code == 404


class TestActivity:

    def test_lists_recorded_steps(self, client):
        deliberation_id = client.post("/inbound", json=inbound("Can we meet?")).json()["deliberation_id"]

        response = client.get("/activity", params={"deliberation_id": deliberation_id, "role": "Critic"})

        assert response.status_code == 200
        steps = response.json()
        assert steps
        assert all(s["role"] == "Critic" and s["deliberation_id"] == deliberation_id for s in steps)

    def test_step_detail(self, client):
        client.post("/inbound", json=inbound("Can we meet?"))
        step_id = client.get("/activity", params={"limit": 1}).json()[0]["step_id"]

        assert client.get(f"/activity/{step_id}").json()["step_id"] == step_id
        assert client.get("/activity/step_missing").status_code == 404

    def test_metrics(self, client):
        client.post("/inbound", json=inbound("Can we meet?"))

        data = client.get("/activity/metrics").json()

        assert data["deliberations"] == 1
        assert data["rounds_max"] == 1
        assert data["groundedness_pct"] == 1.0
        assert "Critic" in data["roles"]

    def test_activity_is_read_only(self, client):
        assert client.post("/activity").status_code == 405
