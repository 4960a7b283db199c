"""Capability output schemas.

Every tool a role can invoke has exactly one schema. Provider output that
does not validate is a capability failure, never a low-confidence answer.
"""

from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, Field

from mailpilot.common.constants import DeliberationConstants
from mailpilot.core.types import MemoryScope


class PlanResult(BaseModel):
    """Planner framing of the inbound request. Carries no vote."""
    framing: str = Field(..., min_length=1, description="One-line statement of what the sender wants")
    subtasks: List[str] = Field(default_factory=list, description="Ordered sub-goals for the workers")


class InterpretationResult(BaseModel):
    """A worker's proposed action for the message."""
    action_type: str = Field(..., min_length=1, description="Action identifier, e.g. create_event")
    parameters: Dict[str, Any] = Field(default_factory=dict)
    scope_hint: Optional[MemoryScope] = Field(default=None, description="Suggested memory scope for the request")
    confidence: float = Field(..., ge=0.0, le=1.0, description="Worker's self-reported confidence")
    needs_clarification: bool = False
    clarification_prompt: Optional[str] = None

    model_config = {
        "json_schema_extra": {
            "example": {
                "action_type": "create_event",
                "parameters": {"title": "Dentist", "start": "2026-03-02T09:00"},
                "scope_hint": "user",
                "confidence": 0.72,
                "needs_clarification": False,
                "clarification_prompt": None,
            }
        }
    }


class CritiqueResult(BaseModel):
    """A critic's score for one candidate."""
    score: float = Field(..., ge=0.0, le=1.0)
    reasons: List[str] = Field(default_factory=list)
    evidence_ids: List[str] = Field(default_factory=list)


class ArbiterVote(BaseModel):
    candidate_id: str = Field(..., min_length=1)
    score: float = Field(..., ge=0.0, le=1.0)
    reasons: List[str] = Field(default_factory=list)
    evidence_ids: List[str] = Field(default_factory=list)


class ArbitrationResult(BaseModel):
    """Arbiter votes over the round's candidates."""
    votes: List[ArbiterVote] = Field(default_factory=list)


class MemoryExtractionResult(BaseModel):
    """Raw memory candidates. Item-level validation belongs to the memory gate."""
    items: List[Dict[str, Any]] = Field(default_factory=list)


class LanguageDetectionResult(BaseModel):
    language: str = Field(..., min_length=1, max_length=10, description="BCP-47 style language tag")
    confidence: float = Field(..., ge=0.0, le=1.0)


TOOL_SCHEMAS: Dict[str, Type[BaseModel]] = {
    DeliberationConstants.PLANNER_TOOL: PlanResult,
    DeliberationConstants.WORKER_TOOL: InterpretationResult,
    DeliberationConstants.CRITIC_TOOL: CritiqueResult,
    DeliberationConstants.ARBITER_TOOL: ArbitrationResult,
    DeliberationConstants.MEMORY_TOOL: MemoryExtractionResult,
    DeliberationConstants.LANGUAGE_TOOL: LanguageDetectionResult,
}
