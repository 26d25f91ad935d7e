"""Content-hash response cache and idempotency ledger for the stylist chat."""

from __future__ import annotations

import hashlib
import json
import logging
import re
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .contracts import ChatTurn, utcnow
from .persistence import CacheEntry, IdempotencyRecord, WorkflowRepository

logger = logging.getLogger(__name__)

_IDEMPOTENCY_KEY = re.compile(r"^[a-zA-Z0-9._:-]+$")
MAX_IDEMPOTENCY_KEY_LENGTH = 120
HISTORY_TURNS_IN_HASH = 6


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def _dumps(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def normalize_inventory_for_hash(items: Iterable[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    """Project inventory items onto the fields that affect a reply, ordered by id."""
    normalized = []
    for item in items or []:
        metadata = item.get("metadata") if isinstance(item.get("metadata"), dict) else {}
        normalized.append(
            {
                "id": str(item.get("id") or ""),
                "category": item.get("category") or metadata.get("category"),
                "subcategory": item.get("subcategory") or metadata.get("subcategory"),
                "color_primary": item.get("color_primary") or metadata.get("color_primary"),
                "tags": item.get("tags") or metadata.get("vibe_tags") or [],
                "seasons": metadata.get("seasons") or [],
                "ai_status": item.get("ai_status") or metadata.get("ai_status"),
                "ai_metadata_version": item.get("ai_metadata_version") or metadata.get("ai_metadata_version") or 0,
                "updated_at": item.get("updated_at") or metadata.get("updated_at"),
            }
        )
    return sorted(normalized, key=lambda entry: entry["id"])


def inventory_hash(items: Iterable[Mapping[str, Any]]) -> str:
    return sha256_hex(_dumps(normalize_inventory_for_hash(items)))


def prompt_hash(surface: str, response_mode: str, message: str, history: Iterable[ChatTurn]) -> str:
    """Hash the request text together with the last few history turns."""
    recent = list(history)[-HISTORY_TURNS_IN_HASH:]
    history_key = "||".join(f"{turn.role}:{turn.content}" for turn in recent)
    return sha256_hex(f"{surface}|{response_mode}|{message}|{history_key}".strip().lower())


def sanitize_idempotency_key(key: Any) -> Optional[str]:
    if not isinstance(key, str):
        return None
    trimmed = key.strip()
    if not trimmed or len(trimmed) > MAX_IDEMPOTENCY_KEY_LENGTH:
        return None
    if not _IDEMPOTENCY_KEY.match(trimmed):
        return None
    return trimmed


class ResponseCache:
    """Replies keyed by user, response kind and the content hashes of the request."""

    def __init__(self, repository: WorkflowRepository, ttl_hours: float = 6) -> None:
        self.repository = repository
        self.ttl = timedelta(hours=ttl_hours)

    async def lookup(
        self, user_id: str, response_kind: str, inventory_key: str, prompt_key: str, now: Optional[datetime] = None
    ) -> Optional[CacheEntry]:
        """Return an unexpired entry and count the hit."""
        entry = await self.repository.get_cache_entry(user_id, response_kind, inventory_key, prompt_key)
        if entry is None or entry.is_expired(now or utcnow()):
            return None
        await self.repository.record_cache_hit(user_id, response_kind, inventory_key, prompt_key)
        logger.info(f"Cache hit for {user_id}/{response_kind} (hits={entry.hit_count + 1})")
        return entry

    async def store(
        self,
        user_id: str,
        response_kind: str,
        inventory_key: str,
        prompt_key: str,
        response: Dict[str, Any],
        model: Optional[str],
        credits_used: int,
    ) -> None:
        await self.repository.put_cache_entry(
            CacheEntry(
                user_id=user_id,
                response_kind=response_kind,
                inventory_hash=inventory_key,
                prompt_hash=prompt_key,
                response=response,
                model=model,
                credits_used=credits_used,
                expires_at=utcnow() + self.ttl,
            )
        )


class IdempotencyLedger:
    """Exactly-once replay of successful responses for a caller-supplied key.

    No lock is taken: two near-simultaneous requests with the same key can
    both miss and both run.
    """

    def __init__(self, repository: WorkflowRepository) -> None:
        self.repository = repository

    async def find_success(self, user_id: str, response_kind: str, key: Optional[str]) -> Optional[Dict[str, Any]]:
        if not key:
            return None
        record = await self.repository.get_idempotency_record(user_id, response_kind, key)
        if record is None or record.status != "success" or not record.response:
            return None
        logger.info(f"Replaying idempotent response for {user_id}/{response_kind}/{key}")
        return record.response

    async def record_success(
        self,
        user_id: str,
        response_kind: str,
        key: Optional[str],
        response: Dict[str, Any],
        prompt_key: Optional[str] = None,
        inventory_key: Optional[str] = None,
        request: Optional[Dict[str, Any]] = None,
        credits_used: int = 0,
    ) -> None:
        if not key:
            return
        await self.repository.put_idempotency_record(
            IdempotencyRecord(
                user_id=user_id,
                response_kind=response_kind,
                idempotency_key=key,
                status="success",
                response=response,
                prompt_hash=prompt_key,
                inventory_hash=inventory_key,
                request=request,
                credits_used=credits_used,
            )
        )

    async def record_failure(
        self,
        user_id: str,
        response_kind: str,
        key: Optional[str],
        error_text: str,
        prompt_key: Optional[str] = None,
        inventory_key: Optional[str] = None,
    ) -> None:
        if not key:
            return
        await self.repository.put_idempotency_record(
            IdempotencyRecord(
                user_id=user_id,
                response_kind=response_kind,
                idempotency_key=key,
                status="failed",
                prompt_hash=prompt_key,
                inventory_hash=inventory_key,
                error_text=error_text,
            )
        )
