"""Common utilities - logging, config, exceptions."""

from mailpilot.common.logging.logger import get_logger
from mailpilot.common.config import Config, get_config, reset_config
from mailpilot.common.exceptions import (
    MailPilotException,
    ConfigurationError,
    CapabilityFailure,
    DeliberationExhausted,
    ConfirmationInvalid,
    ConfirmationExpired,
    ConfirmationReplay,
    MemoryValidationFailure,
    ActionNotFound,
    InvalidTransition,
)

__all__ = [
    # Logging
    "get_logger",
    # Config
    "Config",
    "get_config",
    "reset_config",
    # Exceptions
    "MailPilotException",
    "ConfigurationError",
    "CapabilityFailure",
    "DeliberationExhausted",
    "ConfirmationInvalid",
    "ConfirmationExpired",
    "ConfirmationReplay",
    "MemoryValidationFailure",
    "ActionNotFound",
    "InvalidTransition",
]
