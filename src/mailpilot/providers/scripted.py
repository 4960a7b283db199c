"""Scripted provider - deterministic in-process capability backend.

Used by the CLI demo and by tests. Responses are registered per
(role, tool) and replayed in order; the last response repeats once the
queue is drained. A response may be a dict, an exception instance (raised)
or a callable taking the prompt context.
"""

import copy
import threading
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from mailpilot.core.types import AgentRole

Response = Union[Dict[str, Any], Exception, Callable[[Dict[str, Any]], Dict[str, Any]]]


class ProviderError(RuntimeError):
    """Raised by the scripted provider for unscripted or injected failures."""
    pass


class ScriptedProvider:
    """Replays registered responses for each (role, tool) pair."""

    name = "scripted"

    def __init__(self, model: str = "scripted-1"):
        self.model = model
        self._lock = threading.Lock()
        self._scripts: Dict[Tuple[AgentRole, str], List[Response]] = {}
        self._keyed: Dict[Tuple[AgentRole, str], Tuple[str, Sequence[Response]]] = {}
        self._failures: Dict[Tuple[AgentRole, str], int] = {}
        self._usage: Dict[Tuple[AgentRole, str], Dict[str, int]] = {}
        self.calls: List[Tuple[AgentRole, str, Dict[str, Any]]] = []

    def script(
        self,
        role: AgentRole,
        tool: str,
        responses: Union[Response, Sequence[Response]],
        by_context_key: Optional[str] = None,
    ) -> "ScriptedProvider":
        """Register responses for a role/tool.

        Args:
            by_context_key: When set, the response is picked by the integer
                value of this prompt context key instead of call order, which
                keeps concurrent callers (e.g. workers) deterministic.
        """
        if isinstance(responses, (dict, Exception)) or callable(responses):
            responses = [responses]
        responses = list(responses)
        if not responses:
            raise ValueError("At least one response is required")

        with self._lock:
            if by_context_key:
                self._keyed[(role, tool)] = (by_context_key, responses)
                self._scripts.pop((role, tool), None)
            else:
                self._scripts[(role, tool)] = responses
                self._keyed.pop((role, tool), None)
        return self

    def fail(self, role: AgentRole, tool: str, times: int = 1) -> "ScriptedProvider":
        """Make the next ``times`` calls for role/tool raise ProviderError."""
        with self._lock:
            self._failures[(role, tool)] = self._failures.get((role, tool), 0) + times
        return self

    def report_usage(self, role: AgentRole, tool: str, input_tokens: int, output_tokens: int) -> "ScriptedProvider":
        with self._lock:
            self._usage[(role, tool)] = {"input_tokens": input_tokens, "output_tokens": output_tokens}
        return self

    def call_count(self, role: Optional[AgentRole] = None, tool: Optional[str] = None) -> int:
        return sum(
            1 for call_role, call_tool, _ in self.calls
            if (role is None or call_role == role) and (tool is None or call_tool == tool)
        )

    def invoke(self, role: AgentRole, tool: str, prompt_context: Dict[str, Any]) -> Dict[str, Any]:
        key = (role, tool)
        with self._lock:
            self.calls.append((role, tool, prompt_context))

            if self._failures.get(key, 0) > 0:
                self._failures[key] -= 1
                raise ProviderError(f"Injected failure for {role.value}/{tool}")

            if key in self._keyed:
                context_key, responses = self._keyed[key]
                index = int(prompt_context.get(context_key, 0))
                response = responses[index % len(responses)]
            elif key in self._scripts:
                queue = self._scripts[key]
                response = queue.pop(0) if len(queue) > 1 else queue[0]
            else:
                raise ProviderError(f"No script registered for {role.value}/{tool}")

            usage = self._usage.get(key)

        if isinstance(response, Exception):
            raise response
        if callable(response):
            response = response(prompt_context)

        result = copy.deepcopy(response)
        result.setdefault("model", self.model)
        if usage is not None:
            result.setdefault("usage", dict(usage))
        return result
