"""API Schemas - Request/Response models for the API Gateway."""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from mailpilot.actions.schemas import ConfirmationLinks
from mailpilot.core.types import ActionStatus, ExecutionPath
from mailpilot.orchestration.decision_context import InboundMessage


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class InboundMessageRequest(BaseModel):
    """Structured inbound email from the ingestion layer."""
    message_id: str = Field(..., min_length=1, description="Unique message identifier")
    subject: str = Field(default="")
    from_email: str = Field(..., min_length=3, description="Sender address")
    from_name: str = Field(default="")
    text_body: str = Field(default="")
    html_body: str = Field(default="")
    headers: List[Dict[str, str]] = Field(default_factory=list)
    account_id: str = Field(default="default", min_length=1)
    thread_id: Optional[str] = Field(default=None, description="Conversation thread, if known")

    def to_domain(self) -> InboundMessage:
        return InboundMessage(
            message_id=self.message_id,
            subject=self.subject,
            from_email=self.from_email,
            from_name=self.from_name,
            text_body=self.text_body,
            html_body=self.html_body,
            headers=tuple(self.headers),
            account_id=self.account_id,
            thread_id=self.thread_id,
        )

    model_config = {
        "json_schema_extra": {
            "example": {
                "message_id": "<abc123@mail.example.com>",
                "subject": "Lunch on Friday?",
                "from_email": "sam@example.com",
                "from_name": "Sam",
                "text_body": "Can we meet Friday at noon?",
                "account_id": "acct_1",
            }
        }
    }


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class InboundResponse(BaseModel):
    """Response for POST /inbound."""
    deliberation_id: str
    action_id: str
    action_status: ActionStatus
    path: ExecutionPath
    action_type: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    needs_clarification: bool
    clarification_prompt: Optional[str] = None
    rounds_used: int
    language: Optional[str] = None
    memories_stored: int = 0
    notified: bool = False
    links: Optional[ConfirmationLinks] = None


class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Human-readable error message")
    request_id: Optional[str] = Field(
        default=None, description="Request ID for debugging"
    )
    details: Dict[str, object] = Field(default_factory=dict)
