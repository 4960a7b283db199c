"""Tests for policy rule loading and validation."""

from pathlib import Path

import pytest

from mailpilot.common.exceptions import ConfigurationError
from mailpilot.governance.policies import PolicyRules, load_policy_rules

POLICY_FILE = Path(__file__).parents[3] / "config" / "policy_rules.yaml"


class TestLoadPolicyRules:

    def test_shipped_policy_matches_defaults(self):
        rules = load_policy_rules(POLICY_FILE)

        assert rules.version == "1.0.0"
        assert rules.deliberation.max_rounds == 2
        assert rules.votes.tie_epsilon == 0.05
        assert rules.routing.auto_execute_threshold == 0.85
        assert rules.memory.ttl_days["legal"] is None
        assert rules.memory.scope_boosts["conversation"] == 1.4
        assert rules.model_dump() == PolicyRules().model_dump()

    def test_missing_file_uses_defaults(self, tmp_path):
        assert load_policy_rules(tmp_path / "absent.yaml") == PolicyRules()

    def test_none_uses_defaults(self):
        assert load_policy_rules(None).routing.confirm_threshold == 0.50

    def test_partial_file_keeps_other_defaults(self, tmp_path):
        path = tmp_path / "policy.yaml"
        path.write_text("routing:\n  auto_execute_threshold: 0.9\n")

        rules = load_policy_rules(path)

        assert rules.routing.auto_execute_threshold == 0.9
        assert rules.routing.confirm_threshold == 0.50
        assert rules.deliberation.workers_per_round == 2

    def test_invalid_values_raise_configuration_error(self, tmp_path):
        path = tmp_path / "policy.yaml"
        path.write_text("votes:\n  planner_weight: 0.3\n")

        with pytest.raises(ConfigurationError) as exc_info:
            load_policy_rules(path)

        assert exc_info.value.code == "CONFIG_ERROR"

    def test_malformed_yaml_raises_configuration_error(self, tmp_path):
        path = tmp_path / "policy.yaml"
        path.write_text("routing: [unclosed\n")

        with pytest.raises(ConfigurationError):
            load_policy_rules(path)
