"""Memory Extraction Gate - validates and scopes memory candidates.

Invalid candidates are dropped and logged, never coerced to a default
scope or TTL. Accepted values are PII-redacted and given an expiry from
their TTL category before reaching the store.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from pydantic import ValidationError

from mailpilot.common.constants import MemoryConstants
from mailpilot.common.exceptions import MemoryValidationFailure
from mailpilot.core.types import MemoryScope, TtlCategory
from mailpilot.governance.policies import PolicyRules
from mailpilot.memory.schemas import MemoryCandidate, StoredMemory
from mailpilot.memory.store import MemoryStore

logger = logging.getLogger(__name__)


@dataclass
class GateReport:
    """What happened to one batch of candidates."""
    accepted: List[StoredMemory] = field(default_factory=list)
    rejected: List[MemoryValidationFailure] = field(default_factory=list)
    below_threshold: List[str] = field(default_factory=list)


class MemoryExtractionGate:
    """Validates candidates and forwards accepted ones to a MemoryStore."""

    def __init__(
        self,
        store: MemoryStore,
        memory_rules: Optional[PolicyRules.MemoryRules] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.store = store
        self.rules = memory_rules or PolicyRules.MemoryRules()
        self._clock = clock
        self._pii_rules = self._compile_rules(self.rules.pii_rule_set)

    @staticmethod
    def _compile_rules(rule_set: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        compiled = []
        for rule in rule_set:
            entry: Dict[str, Any] = {"type": rule.get("type", "unknown")}
            if rule.get("pattern"):
                entry["pattern"] = re.compile(str(rule["pattern"]))
            if rule.get("matches"):
                entry["matches"] = [
                    re.compile(re.escape(str(match)), re.IGNORECASE) for match in rule["matches"]
                ]
            compiled.append(entry)
        return compiled

    def validate(self, raw: Mapping[str, Any]) -> MemoryCandidate:
        """Raises MemoryValidationFailure for anything not schema-valid."""
        if not isinstance(raw, Mapping):
            raise MemoryValidationFailure("Memory candidate is not an object")
        key = raw.get("key")
        try:
            return MemoryCandidate.model_validate(dict(raw))
        except ValidationError as e:
            missing = [
                ".".join(str(p) for p in err["loc"]) for err in e.errors() if err["type"] == "missing"
            ]
            raise MemoryValidationFailure(
                "Memory candidate failed validation",
                key=key if isinstance(key, str) else None,
                details={"missing": missing, "errors": len(e.errors())},
            ) from e

    def redact(self, value: Any) -> Any:
        """Apply every PII rule to every string inside ``value``."""
        if isinstance(value, str):
            for rule in self._pii_rules:
                if "pattern" in rule:
                    value = rule["pattern"].sub(MemoryConstants.REDACTED, value)
                for match in rule.get("matches", []):
                    value = match.sub(MemoryConstants.REDACTED, value)
            return value
        if isinstance(value, dict):
            return {k: self.redact(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [self.redact(v) for v in value]
        return value

    def expiry_for(self, ttl_category: TtlCategory, now: datetime) -> Optional[datetime]:
        if ttl_category == TtlCategory.LEGAL:
            return None
        days = self.rules.ttl_days.get(ttl_category.value)
        if days is None:
            return None
        return now + timedelta(days=days)

    def process(
        self,
        items: Iterable[Mapping[str, Any]],
        scope_ids: Mapping[MemoryScope, str],
        provenance: Optional[str] = None,
    ) -> GateReport:
        """Validate, filter, redact and persist a batch of candidates.

        Args:
            items: Raw candidates from the memory_extract capability.
            scope_ids: Identifier for each scope in this context, e.g. the
                thread id for conversation scope.
            provenance: Used when a candidate carries none.
        """
        report = GateReport()
        now = self._clock()

        for raw in items:
            try:
                candidate = self.validate(raw)
            except MemoryValidationFailure as e:
                logger.warning(
                    "Dropped invalid memory candidate",
                    extra={"memory_key": e.details.get("key"), "missing": e.details.get("missing")},
                )
                report.rejected.append(e)
                continue

            if candidate.confidence < self.rules.min_confidence_to_persist:
                logger.info(
                    "Memory candidate below persistence threshold",
                    extra={"memory_key": candidate.key, "confidence": candidate.confidence},
                )
                report.below_threshold.append(candidate.key)
                continue

            scope_id = scope_ids.get(candidate.scope)
            if not scope_id:
                failure = MemoryValidationFailure(
                    f"No scope id available for scope {candidate.scope.value}",
                    key=candidate.key,
                )
                logger.warning("Dropped memory candidate without scope id", extra={"memory_key": candidate.key})
                report.rejected.append(failure)
                continue

            stored = self.store.upsert(StoredMemory(
                scope=candidate.scope,
                scope_id=scope_id,
                key=candidate.key,
                value=self.redact(candidate.value),
                ttl_category=candidate.ttl_category,
                confidence=candidate.confidence,
                provenance=candidate.provenance or provenance,
                first_seen_at=now,
                last_seen_at=now,
                expires_at=self.expiry_for(candidate.ttl_category, now),
            ))
            report.accepted.append(stored)

        logger.info(
            "Memory gate processed batch",
            extra={
                "accepted": len(report.accepted),
                "rejected": len(report.rejected),
                "below_threshold": len(report.below_threshold),
            },
        )
        return report
