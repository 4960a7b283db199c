"""Policy rules - thresholds, weights and limits that shape deliberation and routing.

Loaded from config/policy_rules.yaml. Every field carries a default so a
missing file or a partial file still yields a complete rule set.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field, model_validator

from mailpilot.common.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


DEFAULT_PII_RULES: List[Dict[str, object]] = [
    {"type": "email", "pattern": r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}"},
    {"type": "phone", "pattern": r"(\+\d{1,3}[\s.-]?)?\(?\d{3}\)?[\s.-]?\d{3}[\s.-]?\d{4}"},
    {"type": "credit_card", "pattern": r"\b(?:\d[ -]*?){13,16}\b"},
    {"type": "ssn", "pattern": r"\b\d{3}[-.]?\d{2}[-.]?\d{4}\b"},
    {"type": "ip_address", "pattern": r"\b(?:\d{1,3}\.){3}\d{1,3}\b"},
    {"type": "password", "matches": ["password", "passwd", "pwd", "secret", "token"]},
    {"type": "financial", "matches": ["bank account", "routing number", "swift code", "iban"]},
]


class PolicyRules(BaseModel):
    """Parsed policy rules from YAML configuration."""

    class Metadata(BaseModel):
        version: str = "1.0.0"
        description: str = "Default deliberation, routing and memory policy"

    class DeliberationRules(BaseModel):
        max_rounds: int = Field(default=2, ge=1)
        deadline_seconds: float = Field(default=30.0, gt=0.0)
        workers_per_round: int = Field(default=2, ge=1)
        clear_winner_threshold: float = Field(default=0.50, ge=0.0, le=1.0)
        capability_retries: int = Field(default=2, ge=0)
        retry_backoff_seconds: float = Field(default=0.5, ge=0.0)

    class VoteRules(BaseModel):
        planner_weight: float = Field(default=0.0, ge=0.0)
        worker_weight: float = Field(default=0.20, ge=0.0)
        critic_weight: float = Field(default=0.45, ge=0.0)
        arbiter_weight: float = Field(default=0.35, ge=0.0)
        tie_epsilon: float = Field(default=0.05, ge=0.0, le=1.0)
        max_reasons: int = Field(default=5, ge=1)

        @model_validator(mode="after")
        def check_weights(self):
            if self.planner_weight != 0.0:
                raise ValueError("Planner does not vote; planner_weight must be 0")
            if self.critic_weight <= self.worker_weight or self.arbiter_weight <= self.worker_weight:
                raise ValueError("Critic and Arbiter must outweigh Worker")
            return self

    class RoutingRules(BaseModel):
        auto_execute_threshold: float = Field(default=0.85, ge=0.0, le=1.0)
        confirm_threshold: float = Field(default=0.50, ge=0.0, le=1.0)
        viable_floor: float = Field(default=0.20, ge=0.0, le=1.0)

        @model_validator(mode="after")
        def check_order(self):
            if self.confirm_threshold > self.auto_execute_threshold:
                raise ValueError("confirm_threshold must not exceed auto_execute_threshold")
            return self

    class ConfirmationRules(BaseModel):
        expiry_hours: float = Field(default=72.0, gt=0.0)

    class MemoryRules(BaseModel):
        min_confidence_to_persist: float = Field(default=0.60, ge=0.0, le=1.0)
        include_threshold: float = Field(default=0.45, ge=0.0, le=1.0)
        max_retrieved: int = Field(default=6, ge=1)
        ttl_days: Dict[str, Optional[int]] = Field(
            default_factory=lambda: {
                "volatile": 30,
                "seasonal": 120,
                "durable": 730,
                "legal": None,
            }
        )
        scope_boosts: Dict[str, float] = Field(
            default_factory=lambda: {"conversation": 1.4, "user": 1.2, "account": 1.0}
        )
        pii_rule_set: List[Dict[str, object]] = Field(
            default_factory=lambda: [dict(rule) for rule in DEFAULT_PII_RULES]
        )

    metadata: Metadata = Field(default_factory=Metadata)
    deliberation: DeliberationRules = Field(default_factory=DeliberationRules)
    votes: VoteRules = Field(default_factory=VoteRules)
    routing: RoutingRules = Field(default_factory=RoutingRules)
    confirmation: ConfirmationRules = Field(default_factory=ConfirmationRules)
    memory: MemoryRules = Field(default_factory=MemoryRules)

    @property
    def version(self) -> str:
        return self.metadata.version


def load_policy_rules(policy_file: Optional[Union[str, Path]] = None) -> PolicyRules:
    """Load and validate policy rules from YAML.

    Args:
        policy_file: Path to policy_rules.yaml. Defaults are used when the
            path is None or does not exist.

    Raises:
        ConfigurationError: If the file exists but cannot be parsed or validated.
    """
    if policy_file is None:
        return PolicyRules()

    path = Path(policy_file)
    if not path.exists():
        logger.info("Policy file %s not found, using default rules", path)
        return PolicyRules()

    try:
        with open(path, "r") as f:
            raw_config = yaml.safe_load(f) or {}
        rules = PolicyRules.model_validate(raw_config)
    except (yaml.YAMLError, ValueError) as e:
        raise ConfigurationError(
            f"Invalid policy file: {path}",
            details={"error": str(e)},
        ) from e

    logger.info("Loaded policy rules", extra={"policy_version": rules.version, "path": str(path)})
    return rules
