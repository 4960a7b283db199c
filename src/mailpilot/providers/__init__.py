"""Capability providers - the port to agent reasoning and its validation."""

from mailpilot.providers.base import CapabilityProvider, CapabilityClient
from mailpilot.providers.scripted import ScriptedProvider, ProviderError
from mailpilot.providers.http import HttpCapabilityProvider
from mailpilot.providers.demo import build_demo_provider
from mailpilot.providers.schemas import (
    PlanResult,
    InterpretationResult,
    CritiqueResult,
    ArbiterVote,
    ArbitrationResult,
    MemoryExtractionResult,
    LanguageDetectionResult,
    TOOL_SCHEMAS,
)

__all__ = [
    "CapabilityProvider",
    "CapabilityClient",
    "ScriptedProvider",
    "ProviderError",
    "HttpCapabilityProvider",
    "build_demo_provider",
    "PlanResult",
    "InterpretationResult",
    "CritiqueResult",
    "ArbiterVote",
    "ArbitrationResult",
    "MemoryExtractionResult",
    "LanguageDetectionResult",
    "TOOL_SCHEMAS",
]
