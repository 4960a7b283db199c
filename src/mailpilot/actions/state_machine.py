"""Action Confirmation State Machine.

pending -> awaiting_confirmation -> processing -> completed | failed
awaiting_confirmation -> expired

Every transition is a compare-and-set on the action version, so two
racing confirmations produce exactly one dispatch. Link tokens are checked
for signature and expiry before any state is read.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

from mailpilot.actions.schemas import (
    Action,
    ActionCreation,
    ActionOption,
    ConfirmationLinks,
    ConfirmationOutcome,
    ConfirmationResult,
    ExecutionReport,
)
from mailpilot.actions.signing import LinkClaims, LinkSigner
from mailpilot.actions.store import ActionStore
from mailpilot.common.constants import LinkConstants
from mailpilot.common.exceptions import (
    ConfirmationExpired,
    ConfirmationInvalid,
    ConfirmationReplay,
    InvalidTransition,
)
from mailpilot.core.types import ActionStatus, ExecutionPath
from mailpilot.governance.policies import PolicyRules
from mailpilot.orchestration.decision_context import Decision, ScoredCandidate

logger = logging.getLogger(__name__)


class ActionExecutor(Protocol):
    """Port to whatever performs the action.

    Returning a report finishes the action at once; returning None leaves
    it in processing until ``report_outcome`` is called.
    """

    def execute(self, action: Action) -> Optional[ExecutionReport]:
        ...


class Notifier(Protocol):
    """Port to mail delivery for confirmation requests."""

    def send_confirmation(self, action: Action, links: ConfirmationLinks) -> None:
        ...

    def send_options(self, action: Action, links: ConfirmationLinks) -> None:
        ...


ALLOWED_TRANSITIONS: Dict[ActionStatus, Sequence[ActionStatus]] = {
    ActionStatus.PENDING: (ActionStatus.AWAITING_CONFIRMATION, ActionStatus.PROCESSING),
    ActionStatus.AWAITING_CONFIRMATION: (
        ActionStatus.PROCESSING,
        ActionStatus.FAILED,
        ActionStatus.EXPIRED,
    ),
    ActionStatus.PROCESSING: (ActionStatus.COMPLETED, ActionStatus.FAILED),
    ActionStatus.COMPLETED: (),
    ActionStatus.FAILED: (),
    ActionStatus.EXPIRED: (),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ActionStateMachine:
    """Owns the lifecycle of every Action."""

    MAX_CAS_ATTEMPTS = 5

    def __init__(
        self,
        store: ActionStore,
        signer: LinkSigner,
        executor: Optional[ActionExecutor] = None,
        confirmation_rules: Optional[PolicyRules.ConfirmationRules] = None,
        base_url: str = "http://localhost:8000",
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.signer = signer
        self.executor = executor
        self.rules = confirmation_rules or PolicyRules.ConfirmationRules()
        self.base_url = base_url.rstrip("/")
        self._clock = clock

        self._purpose_handlers: Dict[str, Callable[[LinkClaims, datetime], ConfirmationResult]] = {
            LinkConstants.PURPOSE_CONFIRM: self._accept,
            LinkConstants.PURPOSE_CHOOSE: self._accept,
            LinkConstants.PURPOSE_CANCEL: self._cancel,
        }

    # ===== CREATION =====

    def create_from_decision(
        self,
        decision: Decision,
        path: ExecutionPath,
        account_id: str,
        thread_id: Optional[str] = None,
        options: Optional[List[ScoredCandidate]] = None,
    ) -> ActionCreation:
        """Create the Action for a routed Decision.

        AutoExecute goes straight to processing and dispatches. The other
        paths wait for the user behind signed links.
        """
        now = self._clock()
        if path == ExecutionPath.CHOOSE_ONE:
            offered = options if options is not None else decision.options()
        else:
            offered = decision.options()[:1]

        action = Action(
            account_id=account_id,
            thread_id=thread_id,
            type=decision.action_type,
            payload=dict(decision.parameters),
            path=path,
            confidence=decision.confidence,
            deliberation_id=decision.deliberation_id,
            clarification_prompt=decision.clarification_prompt,
            options=[
                ActionOption(
                    option_id=option.candidate_id,
                    action_type=option.candidate.action_type,
                    parameters=dict(option.candidate.parameters),
                    confidence=option.aggregate,
                )
                for option in offered
            ],
            created_at=now,
            updated_at=now,
        )

        if path == ExecutionPath.AUTO_EXECUTE:
            action = self.store.create(action.model_copy(update={"status": ActionStatus.PROCESSING}))
            logger.info(
                "Action auto-executing",
                extra={"action_id": action.action_id, "action_type": action.type, "confidence": action.confidence},
            )
            action = self._dispatch(action)
            return ActionCreation(action=action, dispatched=True)

        action = self.store.create(action)
        action = self._transition(action, ActionStatus.AWAITING_CONFIRMATION, {
            "expires_at": now + timedelta(hours=self.rules.expiry_hours),
        })
        logger.info(
            "Action awaiting confirmation",
            extra={
                "action_id": action.action_id,
                "path": path.value,
                "options": len(action.options),
                "expires_at": action.expires_at.isoformat(),
            },
        )
        return ActionCreation(action=action, links=self.issue_links(action))

    def issue_links(self, action: Action) -> ConfirmationLinks:
        if action.expires_at is None:
            raise ValueError(f"Action {action.action_id} has no expiry; links are only issued while awaiting")

        def url(purpose: str, option_id: Optional[str] = None) -> str:
            token = self.signer.issue(action.action_id, purpose, action.expires_at, option_id)
            return f"{self.base_url}{LinkConstants.ROUTE_PREFIX}/{token}"

        option_urls = {}
        if action.path == ExecutionPath.CHOOSE_ONE:
            option_urls = {
                option.option_id: url(LinkConstants.PURPOSE_CHOOSE, option.option_id)
                for option in action.options
            }

        return ConfirmationLinks(
            confirm_url=url(LinkConstants.PURPOSE_CONFIRM),
            cancel_url=url(LinkConstants.PURPOSE_CANCEL),
            option_urls=option_urls,
            reply_to_clarify=action.path == ExecutionPath.CHOOSE_ONE,
            expires_at=action.expires_at,
        )

    # ===== LINK VISITS =====

    def handle(self, token: str) -> ConfirmationResult:
        """Perform whatever transition the token authorizes.

        Raises:
            ConfirmationInvalid: Forged, malformed or unknown-option token.
            ConfirmationExpired: Token or action past expiry.
        """
        now = self._clock()
        claims = self.signer.verify(token, now)
        return self._purpose_handlers[claims.purpose](claims, now)

    def confirm(self, token: str) -> ConfirmationResult:
        return self._handle_purpose(token, LinkConstants.PURPOSE_CONFIRM)

    def choose(self, token: str) -> ConfirmationResult:
        return self._handle_purpose(token, LinkConstants.PURPOSE_CHOOSE)

    def cancel(self, token: str) -> ConfirmationResult:
        return self._handle_purpose(token, LinkConstants.PURPOSE_CANCEL)

    def inspect(self, token: str) -> ConfirmationResult:
        """Read-only view of the action behind a link."""
        now = self._clock()
        claims = self.signer.verify(token, now)
        action = self.store.get(claims.action_id)
        if action.is_expired(now) or action.status == ActionStatus.EXPIRED:
            raise ConfirmationExpired("Action has expired", action_id=action.action_id)

        pending = action.status == ActionStatus.AWAITING_CONFIRMATION
        return self._result(
            action,
            ConfirmationOutcome.PENDING if pending else ConfirmationOutcome.ALREADY_PROCESSED,
            claims,
            message="Awaiting your confirmation" if pending else "This request was already processed",
        )

    def _handle_purpose(self, token: str, purpose: str) -> ConfirmationResult:
        now = self._clock()
        claims = self.signer.verify(token, now)
        if claims.purpose != purpose:
            raise ConfirmationInvalid(
                f"Link is for {claims.purpose}, not {purpose}",
                details={"action_id": claims.action_id},
            )
        return self._purpose_handlers[purpose](claims, now)

    def _accept(self, claims: LinkClaims, now: datetime) -> ConfirmationResult:
        action = self.store.get(claims.action_id)
        if action.status != ActionStatus.AWAITING_CONFIRMATION:
            return self._already_processed(action, claims)
        if action.is_expired(now):
            raise ConfirmationExpired("Action has expired", action_id=action.action_id)

        updates: Dict[str, Any] = {"meta": {**action.meta, "confirmed_at": now.isoformat()}}
        if claims.option_id:
            option = action.option(claims.option_id)
            if option is None:
                raise ConfirmationInvalid(
                    "Link refers to an option this action does not offer",
                    details={"action_id": action.action_id, "option_id": claims.option_id},
                )
            updates["type"] = option.action_type
            updates["payload"] = dict(option.parameters)
            updates["confidence"] = option.confidence
            updates["meta"]["chosen_option"] = option.option_id

        try:
            action = self._transition(action, ActionStatus.PROCESSING, updates, now)
        except ConfirmationReplay:
            return self._already_processed(self.store.get(claims.action_id), claims)

        logger.info(
            "Action confirmed",
            extra={"action_id": action.action_id, "purpose": claims.purpose, "option_id": claims.option_id},
        )
        action = self._dispatch(action)
        return self._result(
            action,
            ConfirmationOutcome.DISPATCHED,
            claims,
            dispatched=True,
            message="Confirmed. The action is being carried out.",
        )

    def _cancel(self, claims: LinkClaims, now: datetime) -> ConfirmationResult:
        action = self.store.get(claims.action_id)
        if action.status != ActionStatus.AWAITING_CONFIRMATION:
            return self._already_processed(action, claims)
        if action.is_expired(now):
            raise ConfirmationExpired("Action has expired", action_id=action.action_id)

        try:
            action = self._transition(action, ActionStatus.FAILED, {
                "error": LinkConstants.CANCELLED_REASON,
                "cancelled_at": now,
            }, now)
        except ConfirmationReplay:
            return self._already_processed(self.store.get(claims.action_id), claims)

        logger.info("Action cancelled", extra={"action_id": action.action_id})
        return self._result(action, ConfirmationOutcome.CANCELLED, claims, message="Cancelled. Nothing was done.")

    # ===== EXECUTION =====

    def _dispatch(self, action: Action) -> Action:
        if self.executor is None:
            return action
        try:
            report = self.executor.execute(action)
        except Exception as e:
            logger.exception("Executor failed", extra={"action_id": action.action_id})
            return self.report_outcome(
                action.action_id,
                ExecutionReport(success=False, error=f"{type(e).__name__}: {e}"),
            )
        if report is None:
            return action
        return self.report_outcome(action.action_id, report)

    def report_outcome(self, action_id: str, report: ExecutionReport) -> Action:
        """Move processing -> completed | failed. One-way.

        Raises:
            InvalidTransition: The action is not processing.
        """
        target = ActionStatus.COMPLETED if report.success else ActionStatus.FAILED
        for _ in range(self.MAX_CAS_ATTEMPTS):
            action = self.store.get(action_id)
            if action.status != ActionStatus.PROCESSING:
                raise InvalidTransition(action_id, action.status.value, target.value)

            now = self._clock()
            updates: Dict[str, Any] = {"completed_at": now, "error": report.error}
            if report.result:
                updates["meta"] = {**action.meta, "result": report.result}
            try:
                action = self._transition(action, target, updates, now)
            except ConfirmationReplay:
                continue

            log = logger.info if report.success else logger.warning
            log("Action finished", extra={"action_id": action_id, "status": action.status.value, "error": report.error})
            return action

        raise InvalidTransition(action_id, ActionStatus.PROCESSING.value, target.value)

    # ===== MAINTENANCE =====

    def expire_stale(self, now: Optional[datetime] = None) -> List[Action]:
        """Mark overdue awaiting actions expired. Idempotent."""
        now = now or self._clock()
        expired = []
        for action in self.store.list_actions(status=ActionStatus.AWAITING_CONFIRMATION):
            if not action.is_expired(now):
                continue
            try:
                expired.append(self._transition(action, ActionStatus.EXPIRED, {}, now))
            except ConfirmationReplay:
                # Confirmed or cancelled while sweeping
                continue

        if expired:
            logger.info("Expired stale actions", extra={"count": len(expired)})
        return expired

    def mark_notified(self, action_id: str, channel: str) -> bool:
        """Stamp ``<channel>_sent_at`` once.

        Returns True for the caller that set the stamp, who is the one that
        should send. False means it was already sent.
        """
        stamp = f"{channel}_sent_at"
        for _ in range(self.MAX_CAS_ATTEMPTS):
            action = self.store.get(action_id)
            if action.meta.get(stamp):
                return False
            updated = action.model_copy(update={
                "meta": {**action.meta, stamp: self._clock().isoformat()},
            })
            if self.store.compare_and_set(updated, action.version) is not None:
                return True
        return False

    def get(self, action_id: str) -> Action:
        return self.store.get(action_id)

    # ===== HELPERS =====

    def _transition(
        self,
        action: Action,
        target: ActionStatus,
        updates: Dict[str, Any],
        now: Optional[datetime] = None,
    ) -> Action:
        """Compare-and-set ``action`` into ``target``.

        Raises:
            InvalidTransition: The lifecycle does not allow the move.
            ConfirmationReplay: Another writer changed the action first.
        """
        if target not in ALLOWED_TRANSITIONS[action.status]:
            raise InvalidTransition(action.action_id, action.status.value, target.value)

        updated = action.model_copy(update={
            **updates,
            "status": target,
            "updated_at": now or self._clock(),
        })
        stored = self.store.compare_and_set(updated, action.version)
        if stored is None:
            raise ConfirmationReplay(
                "Action changed concurrently",
                action_id=action.action_id,
                status=action.status.value,
            )
        return stored

    def _already_processed(self, action: Action, claims: LinkClaims) -> ConfirmationResult:
        logger.info(
            "Link replayed on resolved action",
            extra={"action_id": action.action_id, "status": action.status.value, "purpose": claims.purpose},
        )
        if action.status == ActionStatus.EXPIRED:
            raise ConfirmationExpired("Action has expired", action_id=action.action_id)
        return self._result(
            action,
            ConfirmationOutcome.ALREADY_PROCESSED,
            claims,
            message="This request was already processed",
        )

    @staticmethod
    def _result(
        action: Action,
        outcome: ConfirmationOutcome,
        claims: LinkClaims,
        dispatched: bool = False,
        message: str = "",
    ) -> ConfirmationResult:
        return ConfirmationResult(
            outcome=outcome,
            action_id=action.action_id,
            status=action.status,
            purpose=claims.purpose,
            option_id=claims.option_id,
            action_type=action.type,
            dispatched=dispatched,
            message=message,
        )
