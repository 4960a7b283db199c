"""Actions - durable units of work and their confirmation lifecycle."""

from mailpilot.actions.schemas import (
    Action,
    ActionOption,
    ActionCreation,
    ConfirmationLinks,
    ConfirmationOutcome,
    ConfirmationResult,
    ExecutionReport,
)
from mailpilot.actions.signing import LinkClaims, LinkSigner
from mailpilot.actions.store import ActionStore, InMemoryActionStore
from mailpilot.actions.state_machine import ActionExecutor, ActionStateMachine, Notifier

__all__ = [
    "Action",
    "ActionOption",
    "ActionCreation",
    "ConfirmationLinks",
    "ConfirmationOutcome",
    "ConfirmationResult",
    "ExecutionReport",
    "LinkClaims",
    "LinkSigner",
    "ActionStore",
    "InMemoryActionStore",
    "ActionExecutor",
    "ActionStateMachine",
    "Notifier",
]
