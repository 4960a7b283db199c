"""Tests for configuration settings.

Tests the Config class and environment variable handling.
"""

from pathlib import Path

import pytest

from mailpilot.common.config import (
    ActionStoreType,
    Config,
    Environment,
    LogLevel,
    MemoryStoreType,
    ProviderType,
    get_config,
    reset_config,
)


class TestEnums:

    def test_environment_from_string(self):
        assert Environment("development") == Environment.DEVELOPMENT
        assert Environment("production") == Environment.PRODUCTION

    def test_log_level_values(self):
        assert LogLevel.DEBUG.value == "DEBUG"
        assert LogLevel.CRITICAL.value == "CRITICAL"

    def test_backend_values(self):
        assert ProviderType.HTTP.value == "http"
        assert ActionStoreType.DYNAMODB.value == "dynamodb"


class TestConfig:
    """Tests for Config class."""

    def test_default_config(self):
        config = Config()

        assert config.environment == Environment.DEVELOPMENT
        assert config.provider_type == ProviderType.SCRIPTED
        assert config.action_store_type == ActionStoreType.MEMORY
        assert config.memory_store_type == MemoryStoreType.MEMORY
        assert config.api_port == 8000
        assert config.policy_file == Path("./config/policy_rules.yaml")
        assert config.agent_step_log_dir is None
        assert config.is_development
        assert not config.is_production

    def test_env_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("MAILPILOT_API_PORT", "9100")
        monkeypatch.setenv("MAILPILOT_PUBLIC_BASE_URL", "https://pilot.example.com")
        monkeypatch.setenv("MAILPILOT_AGENT_STEP_LOG_DIR", str(tmp_path))
        monkeypatch.setenv("MAILPILOT_PROVIDER_TIMEOUT", "5")

        config = Config()

        assert config.api_port == 9100
        assert config.public_base_url == "https://pilot.example.com"
        assert config.agent_step_log_dir == tmp_path
        assert config.provider_timeout_seconds == 5.0

    def test_http_provider_requires_url(self, monkeypatch):
        monkeypatch.setenv("MAILPILOT_PROVIDER", "http")
        monkeypatch.delenv("MAILPILOT_PROVIDER_URL", raising=False)
        with pytest.raises(ValueError, match="MAILPILOT_PROVIDER_URL"):
            Config()

    def test_dynamodb_requires_table(self, monkeypatch):
        monkeypatch.setenv("MAILPILOT_ACTION_STORE", "dynamodb")
        monkeypatch.delenv("MAILPILOT_ACTIONS_TABLE", raising=False)
        with pytest.raises(ValueError, match="MAILPILOT_ACTIONS_TABLE"):
            Config()

    def test_dynamodb_memory_store_requires_table(self, monkeypatch):
        monkeypatch.setenv("MAILPILOT_MEMORY_STORE", "dynamodb")
        monkeypatch.delenv("MAILPILOT_MEMORIES_TABLE", raising=False)
        with pytest.raises(ValueError, match="MAILPILOT_MEMORIES_TABLE"):
            Config()

    def test_production_rejects_scripted_provider(self, monkeypatch):
        monkeypatch.setenv("MAILPILOT_ENVIRONMENT", "production")
        monkeypatch.setenv("MAILPILOT_SIGNING_SECRET", "real-secret")
        with pytest.raises(ValueError, match="scripted provider"):
            Config()

    def test_production_requires_signing_secret(self, monkeypatch):
        monkeypatch.setenv("MAILPILOT_ENVIRONMENT", "production")
        monkeypatch.setenv("MAILPILOT_PROVIDER", "http")
        monkeypatch.setenv("MAILPILOT_PROVIDER_URL", "http://reasoner.internal")
        monkeypatch.delenv("MAILPILOT_SIGNING_SECRET", raising=False)
        with pytest.raises(ValueError, match="MAILPILOT_SIGNING_SECRET"):
            Config()

    def test_production_config(self, monkeypatch):
        monkeypatch.setenv("MAILPILOT_ENVIRONMENT", "production")
        monkeypatch.setenv("MAILPILOT_PROVIDER", "http")
        monkeypatch.setenv("MAILPILOT_PROVIDER_URL", "http://reasoner.internal")
        monkeypatch.setenv("MAILPILOT_SIGNING_SECRET", "real-secret")

        assert Config().is_production


class TestSingleton:

    def test_get_config_is_cached(self):
        assert get_config() is get_config()

    def test_reset_config(self, monkeypatch):
        first = get_config()
        monkeypatch.setenv("MAILPILOT_API_PORT", "9200")
        reset_config()
        second = get_config()

        assert second is not first
        assert second.api_port == 9200
