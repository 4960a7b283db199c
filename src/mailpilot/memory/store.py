"""Memory stores - durable storage port keyed by (scope, scope_id, key)."""

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from mailpilot.core.types import MemoryScope
from mailpilot.memory.schemas import StoredMemory

logger = logging.getLogger(__name__)

MemoryKey = Tuple[MemoryScope, str, str]


def merge_confidence(existing: float, incoming: float) -> float:
    """Probabilistic OR: independent sightings reinforce each other."""
    return round(1.0 - (1.0 - existing) * (1.0 - incoming), 4)


def supersede(existing: StoredMemory, incoming: StoredMemory) -> StoredMemory:
    """A later write for the same key replaces the value and reinforces confidence."""
    return existing.model_copy(update={
        "value": incoming.value,
        "ttl_category": incoming.ttl_category,
        "expires_at": incoming.expires_at,
        "provenance": incoming.provenance or existing.provenance,
        "confidence": merge_confidence(existing.confidence, incoming.confidence),
        "usage_count": existing.usage_count + 1,
        "last_seen_at": incoming.last_seen_at,
    }, deep=True)


class MemoryStore(ABC):
    """Abstract base class for memory persistence."""

    @abstractmethod
    def upsert(self, memory: StoredMemory) -> StoredMemory:
        """Insert, or supersede the memory with the same storage key."""
        pass

    @abstractmethod
    def get(self, scope: MemoryScope, scope_id: str, key: str) -> Optional[StoredMemory]:
        pass

    @abstractmethod
    def list_scope(self, scope: MemoryScope, scope_id: str) -> List[StoredMemory]:
        pass

    @abstractmethod
    def prune_expired(self, now: Optional[datetime] = None) -> int:
        """Delete expired memories; legal memories are never pruned. Idempotent."""
        pass


class InMemoryMemoryStore(MemoryStore):
    """Thread-safe in-process memory store."""

    def __init__(self):
        self._memories: Dict[MemoryKey, StoredMemory] = {}
        self._lock = threading.Lock()

    def upsert(self, memory: StoredMemory) -> StoredMemory:
        with self._lock:
            existing = self._memories.get(memory.storage_key)
            if existing is None:
                stored = memory.model_copy(deep=True)
            else:
                stored = supersede(existing, memory)
                logger.debug(
                    "Memory superseded",
                    extra={"memory_key": memory.key, "scope": memory.scope.value, "usage_count": stored.usage_count},
                )
            self._memories[memory.storage_key] = stored
            return stored.model_copy(deep=True)

    def get(self, scope: MemoryScope, scope_id: str, key: str) -> Optional[StoredMemory]:
        with self._lock:
            memory = self._memories.get((scope, scope_id, key))
            return memory.model_copy(deep=True) if memory else None

    def list_scope(self, scope: MemoryScope, scope_id: str) -> List[StoredMemory]:
        with self._lock:
            return [
                m.model_copy(deep=True) for (s, sid, _), m in self._memories.items()
                if s == scope and sid == scope_id
            ]

    def prune_expired(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        with self._lock:
            expired = [key for key, memory in self._memories.items() if memory.is_expired(now)]
            for key in expired:
                del self._memories[key]

        logger.info("Pruned expired memories", extra={"count": len(expired)})
        return len(expired)

    def count(self) -> int:
        with self._lock:
            return len(self._memories)
