"""Capability provider port and the validating client around it."""

import logging
import time
from typing import Any, Callable, Dict, Optional, Protocol

from pydantic import BaseModel, ValidationError

from mailpilot.common.exceptions import CapabilityFailure
from mailpilot.core.types import AgentRole
from mailpilot.governance.audit import AgentStep, AgentStepLog
from mailpilot.providers.schemas import TOOL_SCHEMAS

logger = logging.getLogger(__name__)


class CapabilityProvider(Protocol):
    """Port to whatever reasoning backend plays an agent role.

    Returns a raw dict. It may carry ``usage`` (input_tokens, output_tokens)
    and ``model`` keys, which are stripped before validation.
    """

    def invoke(self, role: AgentRole, tool: str, prompt_context: Dict[str, Any]) -> Dict[str, Any]:
        ...


class CapabilityClient:
    """Validates provider output and records one AgentStep per call.

    Any raised error or schema-invalid output becomes CapabilityFailure.
    """

    def __init__(
        self,
        provider: CapabilityProvider,
        step_log: Optional[AgentStepLog] = None,
        provider_name: Optional[str] = None,
        clock: Callable[[], float] = time.perf_counter,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.provider = provider
        self.step_log = step_log if step_log is not None else AgentStepLog()
        self.provider_name = provider_name or getattr(provider, "name", type(provider).__name__)
        self._clock = clock
        self._sleep = sleep

    def invoke(
        self,
        role: AgentRole,
        tool: str,
        prompt_context: Dict[str, Any],
        round_no: int = 0,
        deliberation_id: Optional[str] = None,
    ) -> BaseModel:
        schema = TOOL_SCHEMAS.get(tool)
        started = self._clock()
        if schema is None:
            self._record_failure(role, tool, round_no, deliberation_id, started, {}, "unknown_tool", tool)
            raise CapabilityFailure(f"Unknown capability tool: {tool}", role=role.value, tool=tool)

        raw: Dict[str, Any] = {}
        try:
            raw = dict(self.provider.invoke(role, tool, prompt_context))
            usage = raw.pop("usage", None) or {}
            model = raw.pop("model", None)
            result = schema.model_validate(raw)
            # usage and model are provider metadata; bad values fail the call like bad output
            tokens_input = int(usage.get("input_tokens", 0) or 0)
            tokens_output = int(usage.get("output_tokens", 0) or 0)
            step = AgentStep(
                deliberation_id=deliberation_id,
                role=role,
                round_no=round_no,
                tool=tool,
                provider=self.provider_name,
                model=model,
                vote_score=_vote_score(result),
                confidence=getattr(result, "confidence", None),
                tokens_input=tokens_input,
                tokens_output=tokens_output,
                tokens_total=int(usage.get("total_tokens", 0) or 0) or tokens_input + tokens_output,
                latency_ms=self._elapsed_ms(started),
                success=True,
            )
        except ValidationError as e:
            self._record_failure(role, tool, round_no, deliberation_id, started, raw, "schema_invalid", str(e))
            raise CapabilityFailure(
                f"{role.value} returned schema-invalid output for {tool}",
                role=role.value,
                tool=tool,
                details={"errors": e.errors(include_url=False)},
            ) from e
        except Exception as e:
            self._record_failure(role, tool, round_no, deliberation_id, started, raw, type(e).__name__, str(e))
            raise CapabilityFailure(
                f"{role.value} failed on {tool}: {type(e).__name__}: {e}",
                role=role.value,
                tool=tool,
            ) from e

        self.step_log.record(step)
        return result

    def invoke_with_retry(
        self,
        role: AgentRole,
        tool: str,
        prompt_context: Dict[str, Any],
        round_no: int = 0,
        deliberation_id: Optional[str] = None,
        retries: int = 2,
        backoff_seconds: float = 0.5,
    ) -> BaseModel:
        """Invoke with up to ``retries`` extra attempts and linear backoff.

        Raises:
            CapabilityFailure: The last failure once attempts are used up.
        """
        attempt = 0
        while True:
            try:
                return self.invoke(role, tool, prompt_context, round_no, deliberation_id)
            except CapabilityFailure as e:
                if attempt >= retries:
                    logger.warning(
                        "Capability failed after retries",
                        extra={"role": role.value, "tool": tool, "attempts": attempt + 1},
                    )
                    raise
                attempt += 1
                logger.info(
                    f"Retrying {role.value}/{tool} (attempt {attempt + 1}): {e.message}"
                )
                if backoff_seconds > 0:
                    self._sleep(backoff_seconds * attempt)

    def _elapsed_ms(self, started: float) -> float:
        return round(max(0.0, self._clock() - started) * 1000.0, 3)

    def _record_failure(
        self,
        role: AgentRole,
        tool: str,
        round_no: int,
        deliberation_id: Optional[str],
        started: float,
        raw: Dict[str, Any],
        error_type: str,
        error_message: str,
    ) -> None:
        self.step_log.record(AgentStep(
            deliberation_id=deliberation_id,
            role=role,
            round_no=round_no,
            tool=tool,
            provider=self.provider_name,
            model=raw.get("model") if isinstance(raw.get("model"), str) else None,
            latency_ms=self._elapsed_ms(started),
            success=False,
            error=f"{error_type}: {error_message}"[:500],
        ))


def _vote_score(result: BaseModel) -> Optional[float]:
    score = getattr(result, "score", None)
    if score is not None:
        return score
    votes = getattr(result, "votes", None)
    if votes:
        return max(v.score for v in votes)
    return getattr(result, "confidence", None)
