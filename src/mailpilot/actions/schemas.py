"""Action schemas - the durable unit of work and confirmation outcomes."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from mailpilot.core.types import ActionStatus, ExecutionPath


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ActionOption(BaseModel):
    """One interpretation offered on the ChooseOne path."""
    option_id: str = Field(..., description="Candidate id of the interpretation")
    action_type: str
    parameters: Dict[str, Any] = Field(default_factory=dict)
    confidence: float = Field(..., ge=0.0, le=1.0)


class Action(BaseModel):
    """Pending or executing user-facing operation.

    Mutated only through the state machine, one version at a time. Never
    deleted; terminal states are stamped instead.
    """

    action_id: str = Field(default_factory=lambda: f"act_{uuid.uuid4().hex[:16]}")
    account_id: str
    thread_id: Optional[str] = None
    type: str = Field(..., description="Action kind, e.g. create_event")
    payload: Dict[str, Any] = Field(default_factory=dict)
    status: ActionStatus = ActionStatus.PENDING
    path: ExecutionPath
    version: int = Field(default=0, ge=0, description="Optimistic concurrency counter")

    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    deliberation_id: Optional[str] = None
    clarification_prompt: Optional[str] = None
    options: List[ActionOption] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    expires_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    error: Optional[str] = None

    meta: Dict[str, Any] = Field(default_factory=dict, description="Notification stamps and executor metadata")

    def is_expired(self, now: datetime) -> bool:
        return (
            self.status == ActionStatus.AWAITING_CONFIRMATION
            and self.expires_at is not None
            and now >= self.expires_at
        )

    def option(self, option_id: str) -> Optional[ActionOption]:
        for option in self.options:
            if option.option_id == option_id:
                return option
        return None


class ConfirmationOutcome(str, Enum):
    """What a link visit resolved to."""
    DISPATCHED = "dispatched"
    CANCELLED = "cancelled"
    ALREADY_PROCESSED = "already_processed"
    PENDING = "pending"


class ConfirmationResult(BaseModel):
    """Outcome of a confirm, choose, cancel or inspect call."""
    outcome: ConfirmationOutcome
    action_id: str
    status: ActionStatus
    purpose: Optional[str] = None
    option_id: Optional[str] = None
    action_type: Optional[str] = None
    dispatched: bool = False
    message: str = ""


class ConfirmationLinks(BaseModel):
    """Signed links issued for an action awaiting the user."""
    confirm_url: str
    cancel_url: str
    option_urls: Dict[str, str] = Field(default_factory=dict)
    reply_to_clarify: bool = False
    expires_at: datetime


class ActionCreation(BaseModel):
    """Result of turning a routed Decision into an Action."""
    action: Action
    links: Optional[ConfirmationLinks] = None
    dispatched: bool = False


class ExecutionReport(BaseModel):
    """Outcome reported by the external executor."""
    success: bool
    error: Optional[str] = None
    result: Dict[str, Any] = Field(default_factory=dict)
