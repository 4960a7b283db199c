"""Core types and enums."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Tuple


class AgentRole(str, Enum):
    """Functional role an agent plays within one deliberation."""
    PLANNER = "Planner"
    WORKER = "Worker"
    CRITIC = "Critic"
    ARBITER = "Arbiter"


class ExecutionPath(str, Enum):
    """What happens to a decision once it leaves the router."""
    AUTO_EXECUTE = "AutoExecute"
    CONFIRM_SINGLE = "ConfirmSingle"
    CHOOSE_ONE = "ChooseOne"


class ActionStatus(str, Enum):
    """Lifecycle states of an action."""
    PENDING = "pending"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in (ActionStatus.COMPLETED, ActionStatus.FAILED, ActionStatus.EXPIRED)


class MemoryScope(str, Enum):
    """Blast radius of a memory on later retrieval."""
    CONVERSATION = "conversation"
    USER = "user"
    ACCOUNT = "account"


class TtlCategory(str, Enum):
    """Retention class enforced by the pruning job."""
    VOLATILE = "volatile"
    SEASONAL = "seasonal"
    DURABLE = "durable"
    LEGAL = "legal"


@dataclass(frozen=True)
class Vote:
    """One agent's scoring of one candidate.

    Immutable. Held only for the duration of a deliberation.
    """
    candidate_id: str
    score: float
    role: AgentRole
    reasons: Tuple[str, ...] = field(default_factory=tuple)
    evidence_ids: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if not 0.0 <= self.score <= 1.0:
            raise ValueError(f"Vote score must be within [0, 1], got {self.score}")
        # Accept lists from callers but store tuples
        object.__setattr__(self, "reasons", tuple(self.reasons))
        object.__setattr__(self, "evidence_ids", tuple(self.evidence_ids))
