"""Data models for persisted cache and idempotency rows."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel


class CacheEntry(BaseModel):
    """Cached response keyed by the content hashes of a request."""

    user_id: str
    response_kind: str
    inventory_hash: str
    prompt_hash: str
    response: dict[str, Any]
    model: Optional[str] = None
    credits_used: int = 0
    expires_at: datetime
    hit_count: int = 0

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


class IdempotencyRecord(BaseModel):
    """Outcome of a request carrying a caller-supplied idempotency key."""

    user_id: str
    response_kind: str
    idempotency_key: str
    status: Literal["success", "failed"]
    response: Optional[dict[str, Any]] = None
    prompt_hash: Optional[str] = None
    inventory_hash: Optional[str] = None
    request: Optional[dict[str, Any]] = None
    credits_used: int = 0
    error_text: Optional[str] = None
    updated_at: Optional[datetime] = None
