"""Memory schemas - candidates proposed during deliberation and stored facts."""

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from mailpilot.common.constants import MemoryConstants
from mailpilot.core.types import MemoryScope, TtlCategory


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MemoryCandidate(BaseModel):
    """A key/value fact proposed by the memory_extract capability.

    ``scope`` and ``ttl_category`` have no defaults: a candidate without
    them fails validation.
    """
    key: str = Field(..., min_length=1, max_length=MemoryConstants.MAX_KEY_LENGTH)
    value: Any = None
    scope: MemoryScope
    ttl_category: TtlCategory
    confidence: float = Field(..., ge=0.0, le=1.0)
    provenance: Optional[str] = None

    @field_validator("key")
    @classmethod
    def key_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("key must not be blank")
        return v.strip()


class StoredMemory(BaseModel):
    """A memory as held by durable storage, keyed by (scope, scope_id, key)."""
    memory_id: str = Field(default_factory=lambda: f"mem_{uuid.uuid4().hex[:16]}")
    scope: MemoryScope
    scope_id: str = Field(..., min_length=1)
    key: str
    value: Any = None
    ttl_category: TtlCategory
    confidence: float = Field(..., ge=0.0, le=1.0)
    provenance: Optional[str] = None
    usage_count: int = Field(default=1, ge=0)
    first_seen_at: datetime = Field(default_factory=_utcnow)
    last_seen_at: datetime = Field(default_factory=_utcnow)
    expires_at: Optional[datetime] = Field(default=None, description="None means never expires")

    @property
    def storage_key(self):
        return (self.scope, self.scope_id, self.key)

    def is_expired(self, now: datetime) -> bool:
        if self.ttl_category == TtlCategory.LEGAL or self.expires_at is None:
            return False
        return now >= self.expires_at
