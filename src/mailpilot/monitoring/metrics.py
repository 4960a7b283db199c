"""Monitoring - deliberation metrics summarised from the agent step log."""

import logging
from collections import OrderedDict
from datetime import datetime
from typing import Dict, Iterable, List, Optional

import numpy as np
from pydantic import BaseModel, Field

from mailpilot.common.constants import MonitoringConstants
from mailpilot.core.types import AgentRole
from mailpilot.governance.audit import AgentStep, AgentStepLog

logger = logging.getLogger(__name__)


class RoleActivity(BaseModel):
    count: int = 0
    failures: int = 0
    latency_ms_mean: float = 0.0
    latency_ms_p95: float = 0.0
    tokens_total: int = 0


class MetricsSummary(BaseModel):
    """Summary of recent deliberations."""
    since: Optional[datetime] = None
    steps: int = 0
    deliberations: int = 0
    rounds_max: int = 0
    groundedness_pct: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description="Share of deliberations with a Critic vote at or above the grounding minimum"
    )
    error_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    roles: Dict[str, RoleActivity] = Field(default_factory=dict)
    providers: Dict[str, int] = Field(default_factory=dict, description="Step count per provider:model")


class DeliberationMetrics:
    """Computes per-role activity, latency and groundedness."""

    def __init__(
        self,
        step_log: AgentStepLog,
        groundedness_min: float = MonitoringConstants.GROUNDEDNESS_MIN_CRITIC_SCORE,
        percentile: int = MonitoringConstants.LATENCY_PERCENTILE,
    ):
        self.step_log = step_log
        self.groundedness_min = groundedness_min
        self.percentile = percentile

    def compute(
        self,
        since: Optional[datetime] = None,
        limit: int = MonitoringConstants.DEFAULT_WINDOW_LIMIT,
    ) -> MetricsSummary:
        steps = [
            s for s in self.step_log.list_steps(limit=None)
            if since is None or s.timestamp >= since
        ][:limit]
        return self.summarize(steps, since)

    def summarize(self, steps: Iterable[AgentStep], since: Optional[datetime] = None) -> MetricsSummary:
        steps = list(steps)
        if not steps:
            return MetricsSummary(since=since)

        by_role: "OrderedDict[str, List[AgentStep]]" = OrderedDict((role.value, []) for role in AgentRole)
        providers: Dict[str, int] = {}
        rounds: Dict[str, int] = {}
        grounded: Dict[str, bool] = {}

        for step in steps:
            by_role[step.role.value].append(step)
            identity = f"{step.provider}:{step.model}" if step.model else step.provider
            providers[identity] = providers.get(identity, 0) + 1

            if step.deliberation_id is None:
                continue
            rounds[step.deliberation_id] = max(rounds.get(step.deliberation_id, 0), step.round_no)
            grounded.setdefault(step.deliberation_id, False)
            if (
                step.role == AgentRole.CRITIC
                and step.success
                and step.vote_score is not None
                and step.vote_score >= self.groundedness_min
            ):
                grounded[step.deliberation_id] = True

        roles = {}
        for role, role_steps in by_role.items():
            if not role_steps:
                continue
            latencies = np.array([s.latency_ms for s in role_steps], dtype=float)
            roles[role] = RoleActivity(
                count=len(role_steps),
                failures=sum(1 for s in role_steps if not s.success),
                latency_ms_mean=round(float(np.mean(latencies)), 3),
                latency_ms_p95=round(float(np.percentile(latencies, self.percentile)), 3),
                tokens_total=int(sum(s.tokens_total for s in role_steps)),
            )

        failures = sum(1 for s in steps if not s.success)
        summary = MetricsSummary(
            since=since,
            steps=len(steps),
            deliberations=len(rounds),
            rounds_max=max(rounds.values()) if rounds else 0,
            groundedness_pct=round(sum(grounded.values()) / len(grounded), 4) if grounded else 0.0,
            error_rate=round(failures / len(steps), 4),
            roles=roles,
            providers=providers,
        )
        logger.debug("Computed deliberation metrics", extra={"steps": summary.steps})
        return summary
