"""Memory - extraction gate, storage port and retrieval scoring."""

from mailpilot.memory.schemas import MemoryCandidate, StoredMemory
from mailpilot.memory.store import MemoryStore, InMemoryMemoryStore, merge_confidence
from mailpilot.memory.gate import GateReport, MemoryExtractionGate
from mailpilot.memory.retrieval import MemoryRetriever

__all__ = [
    "MemoryCandidate",
    "StoredMemory",
    "MemoryStore",
    "InMemoryMemoryStore",
    "merge_confidence",
    "GateReport",
    "MemoryExtractionGate",
    "MemoryRetriever",
]
