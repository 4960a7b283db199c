"""Development adapters for the executor and notifier ports.

Both only log. Deployments plug in real delivery and execution.
"""

import logging
from typing import Optional

from mailpilot.actions.schemas import Action, ConfirmationLinks, ExecutionReport

logger = logging.getLogger(__name__)


class LoggingActionExecutor:
    """Reports every action as completed."""

    def execute(self, action: Action) -> Optional[ExecutionReport]:
        logger.info(
            "Executing action",
            extra={"action_id": action.action_id, "action_type": action.type},
        )
        return ExecutionReport(success=True, result={"executed_by": "logging"})


class LoggingNotifier:

    def send_confirmation(self, action: Action, links: ConfirmationLinks) -> None:
        logger.info(
            "Confirmation requested",
            extra={"action_id": action.action_id, "confirm_url": links.confirm_url},
        )

    def send_options(self, action: Action, links: ConfirmationLinks) -> None:
        logger.info(
            "Options offered",
            extra={"action_id": action.action_id, "options": list(links.option_urls)},
        )
