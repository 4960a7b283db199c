"""Inbound Processing Service - wires the pipeline for one inbound email.

Orchestrates:
1. Language detection
2. Memory retrieval for the prompt context
3. Deliberation, with memory extraction running alongside
4. Routing and Action creation
5. Confirmation delivery, at most once per action

Memory extraction never affects the routed outcome.
"""

import logging
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FuturesTimeout
from datetime import datetime
from typing import Dict, Optional

from mailpilot.actions.signing import LinkSigner
from mailpilot.actions.state_machine import ActionExecutor, ActionStateMachine, Notifier
from mailpilot.actions.store import ActionStore, InMemoryActionStore
from mailpilot.api.adapters import LoggingActionExecutor, LoggingNotifier
from mailpilot.api.schemas import InboundResponse
from mailpilot.common.config import ActionStoreType, Config, MemoryStoreType, ProviderType, get_config
from mailpilot.common.constants import DeliberationConstants
from mailpilot.common.exceptions import CapabilityFailure
from mailpilot.core.types import AgentRole, ExecutionPath, MemoryScope
from mailpilot.governance.audit import AgentStepLog
from mailpilot.governance.policies import PolicyRules, load_policy_rules
from mailpilot.memory import InMemoryMemoryStore, MemoryExtractionGate, MemoryRetriever, MemoryStore
from mailpilot.monitoring import DeliberationMetrics
from mailpilot.orchestration import ConfidenceRouter, DeliberationCoordinator, InboundMessage
from mailpilot.providers import CapabilityClient, CapabilityProvider, HttpCapabilityProvider, build_demo_provider

logger = logging.getLogger(__name__)


class InboundProcessingService:
    """Service for turning inbound email into actions."""

    MEMORY_WAIT_SECONDS = 10.0

    def __init__(
        self,
        client: CapabilityClient,
        rules: Optional[PolicyRules] = None,
        action_store: Optional[ActionStore] = None,
        memory_store: Optional[MemoryStore] = None,
        signer: Optional[LinkSigner] = None,
        executor: Optional[ActionExecutor] = None,
        notifier: Optional[Notifier] = None,
        base_url: str = "http://localhost:8000",
    ):
        self.client = client
        self.rules = rules or PolicyRules()
        self.step_log = client.step_log
        self.coordinator = DeliberationCoordinator(client, self.rules)
        self.router = ConfidenceRouter(self.rules.routing)
        self.memory_store = memory_store or InMemoryMemoryStore()
        self.memory_gate = MemoryExtractionGate(self.memory_store, self.rules.memory)
        self.memory_retriever = MemoryRetriever(self.memory_store, self.rules.memory)
        self.state_machine = ActionStateMachine(
            store=action_store or InMemoryActionStore(),
            signer=signer or LinkSigner(get_config().signing_secret),
            executor=executor,
            confirmation_rules=self.rules.confirmation,
            base_url=base_url,
        )
        self.notifier = notifier
        self.metrics = DeliberationMetrics(self.step_log)
        self._memory_executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="MemoryExtraction")

    @classmethod
    def from_config(
        cls,
        config: Optional[Config] = None,
        provider: Optional[CapabilityProvider] = None,
    ) -> "InboundProcessingService":
        """Build the service from environment configuration."""
        config = config or get_config()
        rules = load_policy_rules(config.policy_file)

        if provider is None:
            if config.provider_type == ProviderType.HTTP:
                provider = HttpCapabilityProvider(
                    config.provider_url,
                    api_token=config.provider_token,
                    timeout_seconds=config.provider_timeout_seconds,
                )
            else:
                provider = build_demo_provider()

        if config.action_store_type == ActionStoreType.DYNAMODB:
            from mailpilot.actions.dynamodb_store import DynamoDBActionStore
            action_store: ActionStore = DynamoDBActionStore(
                table_name=config.actions_dynamodb_table,
                region=config.aws_region,
            )
        else:
            action_store = InMemoryActionStore()

        if config.memory_store_type == MemoryStoreType.DYNAMODB:
            from mailpilot.memory.dynamodb_store import DynamoDBMemoryStore
            memory_store: MemoryStore = DynamoDBMemoryStore(
                table_name=config.memories_dynamodb_table,
                region=config.aws_region,
            )
        else:
            memory_store = InMemoryMemoryStore()

        return cls(
            client=CapabilityClient(provider, AgentStepLog(config.agent_step_log_dir)),
            rules=rules,
            action_store=action_store,
            memory_store=memory_store,
            signer=LinkSigner(config.signing_secret),
            executor=LoggingActionExecutor(),
            notifier=LoggingNotifier(),
            base_url=config.public_base_url,
        )

    def shutdown(self) -> None:
        self._memory_executor.shutdown(wait=True)
        logger.info("InboundProcessingService shutdown complete")

    def process(self, message: InboundMessage) -> InboundResponse:
        """Run the full pipeline for one message.

        Raises:
            DeliberationExhausted: No usable vote; no Action is created.
        """
        deliberation_id = f"dlb_{uuid.uuid4().hex[:16]}"
        scope_ids = self._scope_ids(message)

        language = self._detect_language(message, deliberation_id)
        memories = [
            {"key": m.key, "value": m.value, "scope": m.scope.value, "score": score}
            for m, score in self.memory_retriever.retrieve(scope_ids)
        ]

        memory_future = self._memory_executor.submit(
            self._extract_memories, message, deliberation_id, scope_ids
        )

        decision = self.coordinator.deliberate(message, deliberation_id=deliberation_id, memories=memories)
        path = self.router.route(decision)
        viable = [
            option for option in decision.options()
            if option.candidate_id == decision.candidate_id
            or option.aggregate >= self.rules.routing.viable_floor
        ]
        creation = self.state_machine.create_from_decision(
            decision,
            path,
            account_id=message.account_id,
            thread_id=message.conversation_id,
            options=viable,
        )

        notified = False
        if creation.links is not None and self.notifier is not None:
            notified = self._notify(creation.action, creation.links, path)

        memories_stored = self._await_memories(memory_future, deliberation_id)

        logger.info(
            "Inbound message processed",
            extra={
                "deliberation_id": deliberation_id,
                "action_id": creation.action.action_id,
                "path": path.value,
                "confidence": decision.confidence,
            },
        )

        return InboundResponse(
            deliberation_id=deliberation_id,
            action_id=creation.action.action_id,
            action_status=creation.action.status,
            path=path,
            action_type=creation.action.type,
            confidence=decision.confidence,
            needs_clarification=decision.needs_clarification,
            clarification_prompt=decision.clarification_prompt,
            rounds_used=decision.rounds_used,
            language=language,
            memories_stored=memories_stored,
            notified=notified,
            links=creation.links,
        )

    def prune_memories(self, now: Optional[datetime] = None) -> int:
        return self.memory_store.prune_expired(now)

    def expire_actions(self, now: Optional[datetime] = None) -> int:
        return len(self.state_machine.expire_stale(now))

    # ===== HELPERS =====

    @staticmethod
    def _scope_ids(message: InboundMessage) -> Dict[MemoryScope, str]:
        return {
            MemoryScope.CONVERSATION: message.conversation_id,
            MemoryScope.USER: message.from_email.lower(),
            MemoryScope.ACCOUNT: message.account_id,
        }

    def _detect_language(self, message: InboundMessage, deliberation_id: str) -> Optional[str]:
        try:
            result = self.client.invoke(
                AgentRole.WORKER,
                DeliberationConstants.LANGUAGE_TOOL,
                {"message": message.to_prompt()},
                deliberation_id=deliberation_id,
            )
        except CapabilityFailure as e:
            logger.info(f"Language detection unavailable: {e.message}")
            return None
        return result.language

    def _extract_memories(
        self,
        message: InboundMessage,
        deliberation_id: str,
        scope_ids: Dict[MemoryScope, str],
    ) -> int:
        result = self.client.invoke_with_retry(
            AgentRole.WORKER,
            DeliberationConstants.MEMORY_TOOL,
            {"message": message.to_prompt()},
            deliberation_id=deliberation_id,
            retries=self.rules.deliberation.capability_retries,
            backoff_seconds=self.rules.deliberation.retry_backoff_seconds,
        )
        report = self.memory_gate.process(
            result.items,
            scope_ids,
            provenance=f"email:{message.message_id}",
        )
        return len(report.accepted)

    def _await_memories(self, future: Future, deliberation_id: str) -> int:
        try:
            return future.result(timeout=self.MEMORY_WAIT_SECONDS)
        except CapabilityFailure as e:
            logger.warning(
                f"Memory extraction skipped: {e.message}",
                extra={"deliberation_id": deliberation_id},
            )
        except FuturesTimeout:
            logger.warning("Memory extraction still running", extra={"deliberation_id": deliberation_id})
        return 0

    def _notify(self, action, links, path: ExecutionPath) -> bool:
        channel = "options" if path == ExecutionPath.CHOOSE_ONE else "confirmation"
        if not self.state_machine.mark_notified(action.action_id, channel):
            logger.info("Notification already sent", extra={"action_id": action.action_id, "channel": channel})
            return False
        if channel == "options":
            self.notifier.send_options(action, links)
        else:
            self.notifier.send_confirmation(action, links)
        return True
