"""Decision Context - immutable records that flow through a deliberation.

Inbound message in, Decision out. Nothing here is mutated after creation;
round state lives only inside the coordinator for one deliberation.
"""

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from mailpilot.core.types import Vote


@dataclass(frozen=True)
class InboundMessage:
    """Structured inbound email as delivered by the ingestion layer."""
    message_id: str
    subject: str
    from_email: str
    from_name: str = ""
    text_body: str = ""
    html_body: str = ""
    headers: Tuple[Dict[str, str], ...] = field(default_factory=tuple)
    account_id: str = "default"
    thread_id: Optional[str] = None

    def __post_init__(self):
        if not self.message_id:
            raise ValueError("message_id is required")
        object.__setattr__(self, "headers", tuple(self.headers))

    @property
    def conversation_id(self) -> str:
        return self.thread_id or self.message_id

    def to_prompt(self) -> Dict[str, Any]:
        """Prompt context view handed to capability providers."""
        return {
            "message_id": self.message_id,
            "subject": self.subject,
            "from_email": self.from_email,
            "from_name": self.from_name,
            "text_body": self.text_body,
            "html_body": self.html_body,
            "headers": [dict(h) for h in self.headers],
        }


def candidate_id_for(action_type: str, parameters: Dict[str, Any]) -> str:
    """Deterministic id so identical proposals from different workers merge."""
    canonical = json.dumps(
        {"action_type": action_type, "parameters": parameters},
        sort_keys=True,
        default=str,
    )
    return "cand_" + hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


@dataclass(frozen=True)
class Candidate:
    """A proposed action produced by a Worker."""
    candidate_id: str
    action_type: str
    parameters: Dict[str, Any]
    confidence: float
    scope_hint: Optional[str] = None
    needs_clarification: bool = False
    clarification_prompt: Optional[str] = None

    @classmethod
    def from_interpretation(cls, interpretation) -> "Candidate":
        return cls(
            candidate_id=candidate_id_for(interpretation.action_type, interpretation.parameters),
            action_type=interpretation.action_type,
            parameters=dict(interpretation.parameters),
            confidence=interpretation.confidence,
            scope_hint=interpretation.scope_hint.value if interpretation.scope_hint else None,
            needs_clarification=interpretation.needs_clarification,
            clarification_prompt=interpretation.clarification_prompt,
        )

    def to_prompt(self) -> Dict[str, Any]:
        return {
            "candidate_id": self.candidate_id,
            "action_type": self.action_type,
            "parameters": dict(self.parameters),
            "confidence": self.confidence,
            "scope_hint": self.scope_hint,
        }


@dataclass(frozen=True)
class ScoredCandidate:
    """A candidate with its aggregate confidence, as offered to the user."""
    candidate: Candidate
    aggregate: float
    reasons: Tuple[str, ...] = field(default_factory=tuple)
    evidence_ids: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def candidate_id(self) -> str:
        return self.candidate.candidate_id


@dataclass(frozen=True)
class Decision:
    """The deliberation's output.

    ``confidence`` is the aggregate of ``votes`` for the chosen candidate.
    ``alternatives`` holds the other scored candidates, best first.
    """
    deliberation_id: str
    candidate_id: str
    action_type: str
    parameters: Dict[str, Any]
    confidence: float
    needs_clarification: bool
    votes: Tuple[Vote, ...]
    clarification_prompt: Optional[str] = None
    alternatives: Tuple[ScoredCandidate, ...] = field(default_factory=tuple)
    rounds_used: int = 1
    rationale: Tuple[str, ...] = field(default_factory=tuple)
    evidence_ids: Tuple[str, ...] = field(default_factory=tuple)
    scope_hint: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Decision confidence must be within [0, 1], got {self.confidence}")

    def options(self) -> List[ScoredCandidate]:
        """Chosen candidate followed by the alternatives."""
        chosen = ScoredCandidate(
            candidate=Candidate(
                candidate_id=self.candidate_id,
                action_type=self.action_type,
                parameters=dict(self.parameters),
                confidence=self.confidence,
                scope_hint=self.scope_hint,
                needs_clarification=self.needs_clarification,
                clarification_prompt=self.clarification_prompt,
            ),
            aggregate=self.confidence,
            reasons=self.rationale,
            evidence_ids=self.evidence_ids,
        )
        return [chosen, *self.alternatives]

    def viable_candidate_count(self, viable_floor: float) -> int:
        """The chosen candidate always counts; alternatives must clear the floor."""
        return 1 + sum(1 for alt in self.alternatives if alt.aggregate >= viable_floor)
