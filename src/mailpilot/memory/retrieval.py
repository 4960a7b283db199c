"""Memory retrieval - ranks stored memories for prompt context.

score = confidence * recency decay * frequency boost * scope boost,
clamped to [0, 1]. Memories under the include threshold are left out.
"""

import math
from datetime import datetime, timezone
from typing import Callable, List, Mapping, Optional, Tuple

from mailpilot.core.types import MemoryScope
from mailpilot.governance.policies import PolicyRules
from mailpilot.memory.schemas import StoredMemory
from mailpilot.memory.store import MemoryStore

# Half-life used for legal memories, which have no TTL
_LEGAL_HALF_LIFE_DAYS = 3650.0


class MemoryRetriever:

    def __init__(
        self,
        store: MemoryStore,
        memory_rules: Optional[PolicyRules.MemoryRules] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.store = store
        self.rules = memory_rules or PolicyRules.MemoryRules()
        self._clock = clock

    def score(self, memory: StoredMemory, now: datetime) -> float:
        age_days = max(0.0, (now - memory.last_seen_at).total_seconds() / 86400.0)
        ttl_days = self.rules.ttl_days.get(memory.ttl_category.value)
        half_life = ttl_days / 2.0 if ttl_days else _LEGAL_HALF_LIFE_DAYS

        score = memory.confidence
        score *= math.exp(-age_days / half_life)
        score *= 1.0 + min(math.log1p(memory.usage_count), 1.0)
        score *= self.rules.scope_boosts.get(memory.scope.value, 1.0)
        return max(0.0, min(1.0, score))

    def retrieve(
        self,
        scope_ids: Mapping[MemoryScope, str],
        limit: Optional[int] = None,
    ) -> List[Tuple[StoredMemory, float]]:
        """Best memories across the given scopes, highest score first."""
        now = self._clock()
        scored = []
        for scope, scope_id in scope_ids.items():
            if not scope_id:
                continue
            for memory in self.store.list_scope(scope, scope_id):
                if memory.is_expired(now):
                    continue
                value = self.score(memory, now)
                if value >= self.rules.include_threshold:
                    scored.append((memory, round(value, 4)))

        scored.sort(key=lambda pair: (-pair[1], pair[0].key))
        return scored[: limit or self.rules.max_retrieved]
