"""Tests for InboundProcessingService wiring and maintenance jobs."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest

from mailpilot.actions.dynamodb_store import DynamoDBActionStore
from mailpilot.memory.dynamodb_store import DynamoDBMemoryStore
from mailpilot.api.service import InboundProcessingService
from mailpilot.common.config import Config
from mailpilot.core.types import ActionStatus, MemoryScope, TtlCategory
from mailpilot.memory import StoredMemory
from mailpilot.providers import HttpCapabilityProvider, ScriptedProvider


@pytest.fixture
def service():
    svc = InboundProcessingService.from_config(Config())
    yield svc
    svc.shutdown()


class TestFromConfig:

    def test_defaults_use_demo_provider_and_memory_store(self, service):
        assert isinstance(service.client.provider, ScriptedProvider)
        assert service.client.provider.model == "demo-1"
        assert service.rules.version == "1.0.0"

    def test_http_provider(self, monkeypatch):
        monkeypatch.setenv("MAILPILOT_PROVIDER", "http")
        monkeypatch.setenv("MAILPILOT_PROVIDER_URL", "http://reasoner.internal")
        monkeypatch.setenv("MAILPILOT_PROVIDER_TOKEN", "tok")

        svc = InboundProcessingService.from_config(Config())
        try:
            assert isinstance(svc.client.provider, HttpCapabilityProvider)
            assert svc.client.provider.base_url == "http://reasoner.internal"
        finally:
            svc.client.provider.close()
            svc.shutdown()

    def test_dynamodb_action_store(self, monkeypatch):
        monkeypatch.setenv("MAILPILOT_ACTION_STORE", "dynamodb")
        monkeypatch.setenv("MAILPILOT_ACTIONS_TABLE", "actions-test")

        with patch("boto3.resource") as mock_resource:
            mock_resource.return_value.Table.return_value = MagicMock()
            svc = InboundProcessingService.from_config(Config())
        try:
            assert isinstance(svc.state_machine.store, DynamoDBActionStore)
            assert svc.state_machine.store.table_name == "actions-test"
        finally:
            svc.shutdown()

    def test_dynamodb_memory_store(self, monkeypatch):
        monkeypatch.setenv("MAILPILOT_MEMORY_STORE", "dynamodb")
        monkeypatch.setenv("MAILPILOT_MEMORIES_TABLE", "memories-test")

        with patch("boto3.resource") as mock_resource:
            mock_resource.return_value.Table.return_value = MagicMock()
            svc = InboundProcessingService.from_config(Config())
        try:
            assert isinstance(svc.memory_store, DynamoDBMemoryStore)
            assert svc.memory_gate.store is svc.memory_store
            assert svc.memory_retriever.store is svc.memory_store
        finally:
            svc.shutdown()


class TestMaintenance:

    def test_prune_memories(self, service):
        service.memory_store.upsert(StoredMemory(
            scope=MemoryScope.USER,
            scope_id="sam@example.com",
            key="old_topic",
            ttl_category=TtlCategory.VOLATILE,
            confidence=0.7,
            expires_at=datetime.now(timezone.utc) - timedelta(days=1),
        ))

        assert service.prune_memories() == 1
        assert service.prune_memories() == 0

    def test_expire_actions(self, service, inbound_message):
        response = service.process(inbound_message)
        assert response.action_status == ActionStatus.AWAITING_CONFIRMATION

        later = datetime.now(timezone.utc) + timedelta(hours=73)

        assert service.expire_actions(now=later) == 1
        assert service.state_machine.get(response.action_id).status == ActionStatus.EXPIRED
        assert service.expire_actions(now=later) == 0
