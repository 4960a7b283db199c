"""Demo script for the scripted provider.

Interprets "meet"/"call" emails as calendar events and everything else as
a reminder, so the CLI demo and a development server work without a
remote reasoning service.
"""

from typing import Any, Dict

from mailpilot.common.constants import DeliberationConstants
from mailpilot.core.types import AgentRole
from mailpilot.providers.scripted import ScriptedProvider


def _text(ctx: Dict[str, Any]) -> str:
    message = ctx.get("message") or {}
    return f"{message.get('subject', '')}\n{message.get('text_body', '')}".lower()


def _interpret(ctx: Dict[str, Any]) -> Dict[str, Any]:
    text = _text(ctx)
    subject = (ctx.get("message") or {}).get("subject", "")
    if "meet" in text or "call" in text:
        return {
            "action_type": "create_event",
            "parameters": {"title": subject or "Meeting"},
            "scope_hint": "conversation",
            "confidence": 0.9 if "tomorrow" in text else 0.6,
            "needs_clarification": False,
        }
    return {
        "action_type": "create_reminder",
        "parameters": {"title": subject or "Follow up"},
        "scope_hint": "user",
        "confidence": 0.4,
        "needs_clarification": False,
    }


def _critique(ctx: Dict[str, Any]) -> Dict[str, Any]:
    candidate = ctx.get("candidate") or {}
    return {
        "score": candidate.get("confidence", 0.5),
        "reasons": [f"{candidate.get('action_type', 'action')} matches the request wording"],
        "evidence_ids": [f"msg:{(ctx.get('message') or {}).get('message_id', 'unknown')}"],
    }


def _arbitrate(ctx: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "votes": [
            {
                "candidate_id": c["candidate_id"],
                "score": c.get("critic_score") if c.get("critic_score") is not None else c.get("confidence", 0.5),
                "reasons": [],
                "evidence_ids": [],
            }
            for c in ctx.get("candidates", [])
        ]
    }


def _extract_memories(ctx: Dict[str, Any]) -> Dict[str, Any]:
    message = ctx.get("message") or {}
    if not message.get("from_name"):
        return {"items": []}
    return {
        "items": [{
            "key": "sender_display_name",
            "value": message["from_name"],
            "scope": "user",
            "ttl_category": "durable",
            "confidence": 0.8,
        }]
    }


def build_demo_provider() -> ScriptedProvider:
    provider = ScriptedProvider(model="demo-1")
    provider.script(AgentRole.PLANNER, DeliberationConstants.PLANNER_TOOL, lambda ctx: {
        "framing": "Work out which action the sender is asking for",
        "subtasks": ["identify action", "extract parameters"],
    })
    provider.script(AgentRole.WORKER, DeliberationConstants.WORKER_TOOL, _interpret)
    provider.script(AgentRole.CRITIC, DeliberationConstants.CRITIC_TOOL, _critique)
    provider.script(AgentRole.ARBITER, DeliberationConstants.ARBITER_TOOL, _arbitrate)
    provider.script(AgentRole.WORKER, DeliberationConstants.MEMORY_TOOL, _extract_memories)
    provider.script(AgentRole.WORKER, DeliberationConstants.LANGUAGE_TOOL, lambda ctx: {
        "language": "en",
        "confidence": 0.99,
    })
    return provider
