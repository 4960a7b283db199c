"""Logging helpers."""

from mailpilot.common.logging.logger import ContextFormatter, get_logger

__all__ = ["ContextFormatter", "get_logger"]
