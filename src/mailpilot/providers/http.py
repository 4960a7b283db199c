"""HTTP capability provider - calls a remote reasoning service.

The remote service receives ``{role, tool, prompt_context}`` as JSON and
answers with the raw result object for that tool.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from mailpilot.core.types import AgentRole

logger = logging.getLogger(__name__)


class HttpCapabilityProvider:
    """Posts each invocation to ``{base_url}/invoke``."""

    name = "http"

    def __init__(
        self,
        base_url: str,
        api_token: Optional[str] = None,
        timeout_seconds: float = 20.0,
        client: Optional[httpx.Client] = None,
    ):
        self.base_url = base_url.rstrip("/")
        headers = {"Content-Type": "application/json"}
        if api_token:
            headers["Authorization"] = f"Bearer {api_token}"
        self._client = client or httpx.Client(timeout=timeout_seconds, headers=headers)

    def invoke(self, role: AgentRole, tool: str, prompt_context: Dict[str, Any]) -> Dict[str, Any]:
        payload = {"role": role.value, "tool": tool, "prompt_context": prompt_context}
        resp = self._client.post(f"{self.base_url}/invoke", json=payload)
        resp.raise_for_status()
        data = resp.json()
        if not isinstance(data, dict):
            raise ValueError(f"Provider returned {type(data).__name__}, expected an object")
        return data

    def close(self) -> None:
        self._client.close()
