"""Centralized logging configuration.

Log calls pass structured context through ``extra={...}``. The formatter
appends those fields as ``key=value`` pairs after the message.
"""

import logging
import os
from typing import Optional

_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


class ContextFormatter(logging.Formatter):
    """Formatter that renders ``extra`` fields."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = {k: v for k, v in vars(record).items() if k not in _RECORD_ATTRS}
        if context:
            line += " | " + " ".join(f"{k}={v}" for k, v in sorted(context.items()))
        return line


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """Get a configured logger instance.

    The level defaults to MAILPILOT_LOG_LEVEL.
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level or os.getenv("MAILPILOT_LOG_LEVEL", "INFO")))

    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(ContextFormatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))
        logger.addHandler(handler)

    return logger
