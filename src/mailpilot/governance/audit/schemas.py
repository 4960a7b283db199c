"""Agent step schema - the audit record for one capability invocation."""

import json
import uuid
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from mailpilot.core.types import AgentRole


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AgentStep(BaseModel):
    """Write-once record of a single agent judgment.

    Every capability call produces exactly one step, success or failure.
    """

    model_config = ConfigDict(frozen=True)

    step_id: str = Field(
        default_factory=lambda: f"step_{uuid.uuid4().hex[:16]}",
        description="Unique step identifier"
    )
    timestamp: datetime = Field(default_factory=_utcnow)
    deliberation_id: Optional[str] = Field(
        default=None,
        description="Deliberation this step belongs to"
    )

    role: AgentRole
    round_no: int = Field(default=0, ge=0, description="Round number, 0 outside deliberation")
    tool: str = Field(..., description="Capability tool that was invoked")

    provider: str = Field(default="unknown")
    model: Optional[str] = None

    vote_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    tokens_input: int = Field(default=0, ge=0)
    tokens_output: int = Field(default=0, ge=0)
    tokens_total: int = Field(default=0, ge=0)
    latency_ms: float = Field(default=0.0, ge=0.0)

    success: bool = True
    error: Optional[str] = None

    # Hash chain
    previous_hash: Optional[str] = None
    entry_hash: Optional[str] = None

    def to_jsonl(self) -> str:
        """Serialize to a single JSONL line."""
        return json.dumps(self.model_dump(mode="json"), sort_keys=True)

    @classmethod
    def from_jsonl(cls, line: str) -> "AgentStep":
        return cls.model_validate(json.loads(line))
