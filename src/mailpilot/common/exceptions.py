"""Custom exceptions for MailPilot.

Provides a hierarchy of exceptions for the deliberation and confirmation flow.
All MailPilot exceptions inherit from MailPilotException.
"""

from typing import Any, Dict, Optional


class MailPilotException(Exception):
    """Base exception for all MailPilot errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        code: str = "MAILPILOT_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(MailPilotException):
    """Raised when configuration is invalid or missing."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="CONFIG_ERROR", details=details)


class CapabilityFailure(MailPilotException):
    """Raised when a capability provider errors or returns schema-invalid output.

    Never treated as a low-confidence answer: the caller retries, then the
    role abstains.
    """

    def __init__(
        self,
        message: str,
        role: str,
        tool: str,
        details: Optional[Dict[str, Any]] = None
    ):
        details = details or {}
        details["role"] = role
        details["tool"] = tool
        self.role = role
        self.tool = tool
        super().__init__(message, code="CAPABILITY_FAILURE", details=details)


class DeliberationExhausted(MailPilotException):
    """Raised when every role abstained or the deadline passed with no usable vote."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="DELIBERATION_EXHAUSTED", details=details)


class ConfirmationInvalid(MailPilotException):
    """Raised for a forged, malformed or wrong-purpose confirmation token."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="CONFIRMATION_INVALID", details=details)


class ConfirmationExpired(MailPilotException):
    """Raised when a correctly signed token is past its expiry."""

    def __init__(self, message: str, action_id: str, details: Optional[Dict[str, Any]] = None):
        details = details or {}
        details["action_id"] = action_id
        self.action_id = action_id
        super().__init__(message, code="CONFIRMATION_EXPIRED", details=details)


class ConfirmationReplay(MailPilotException):
    """Raised when a transition loses the race or the action is already resolved."""

    def __init__(
        self,
        message: str,
        action_id: str,
        status: str,
        details: Optional[Dict[str, Any]] = None
    ):
        details = details or {}
        details["action_id"] = action_id
        details["status"] = status
        self.action_id = action_id
        self.status = status
        super().__init__(message, code="CONFIRMATION_REPLAY", details=details)


class MemoryValidationFailure(MailPilotException):
    """Raised when a memory candidate is missing required fields."""

    def __init__(
        self,
        message: str,
        key: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        details = details or {}
        details["key"] = key
        super().__init__(message, code="MEMORY_VALIDATION_FAILURE", details=details)


class ActionNotFound(MailPilotException):
    """Raised when an action id does not exist in the store."""

    def __init__(self, action_id: str):
        super().__init__(
            f"Action not found: {action_id}",
            code="ACTION_NOT_FOUND",
            details={"action_id": action_id},
        )


class InvalidTransition(MailPilotException):
    """Raised when a status change is not allowed by the action lifecycle."""

    def __init__(self, action_id: str, from_status: str, to_status: str):
        super().__init__(
            f"Cannot move action {action_id} from {from_status} to {to_status}",
            code="INVALID_TRANSITION",
            details={
                "action_id": action_id,
                "from_status": from_status,
                "to_status": to_status,
            },
        )
