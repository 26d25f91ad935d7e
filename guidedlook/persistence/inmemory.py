"""In-memory implementation of the workflow repository."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional, Tuple

from ..contracts import GeneratedArtifact, WorkflowSession, utcnow
from .models import CacheEntry, IdempotencyRecord
from .repository import WorkflowRepository


class InMemoryWorkflowRepository(WorkflowRepository):
    """Store sessions, cache rows and inventory in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._sessions: Dict[Tuple[str, str], WorkflowSession] = {}
        self._cache: Dict[Tuple[str, str, str, str], CacheEntry] = {}
        self._idempotency: Dict[Tuple[str, str, str], IdempotencyRecord] = {}
        self._inventory: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    async def get_session(self, user_id: str, session_id: str) -> WorkflowSession | None:
        return self._sessions.get((user_id, session_id))

    async def save_session(self, session: WorkflowSession) -> None:
        async with self._lock:
            self._sessions[(session.user_id, session.session_id)] = session

    async def cas_update(
        self,
        session: WorkflowSession,
        expected_status: str,
        expected_token: Optional[str],
    ) -> bool:
        key = (session.user_id, session.session_id)
        async with self._lock:
            current = self._sessions.get(key)
            if current is None:
                return False
            if current.status != expected_status or current.confirmation_token != expected_token:
                return False
            self._sessions[key] = session
            return True

    async def list_sessions(self, user_id: Optional[str] = None) -> list[WorkflowSession]:
        return [s for s in self._sessions.values() if user_id is None or s.user_id == user_id]

    # ------------------------------------------------------------------
    async def get_cache_entry(
        self, user_id: str, response_kind: str, inventory_hash: str, prompt_hash: str
    ) -> CacheEntry | None:
        return self._cache.get((user_id, response_kind, inventory_hash, prompt_hash))

    async def put_cache_entry(self, entry: CacheEntry) -> None:
        key = (entry.user_id, entry.response_kind, entry.inventory_hash, entry.prompt_hash)
        self._cache[key] = entry

    async def record_cache_hit(
        self, user_id: str, response_kind: str, inventory_hash: str, prompt_hash: str
    ) -> None:
        key = (user_id, response_kind, inventory_hash, prompt_hash)
        entry = self._cache.get(key)
        if entry:
            self._cache[key] = entry.model_copy(update={"hit_count": entry.hit_count + 1})

    async def get_idempotency_record(
        self, user_id: str, response_kind: str, idempotency_key: str
    ) -> IdempotencyRecord | None:
        return self._idempotency.get((user_id, response_kind, idempotency_key))

    async def put_idempotency_record(self, record: IdempotencyRecord) -> None:
        key = (record.user_id, record.response_kind, record.idempotency_key)
        self._idempotency[key] = record.model_copy(update={"updated_at": utcnow()})

    # ------------------------------------------------------------------
    async def add_inventory_item(self, user_id: str, artifact: GeneratedArtifact) -> None:
        items = self._inventory.setdefault(user_id, {})
        if artifact.id in items:
            return
        item = artifact.as_inventory_item()
        item["metadata"]["updated_at"] = utcnow().isoformat()
        item["image_ref"] = artifact.image_ref
        items[artifact.id] = item

    async def list_inventory_items(self, user_id: str) -> list[dict[str, Any]]:
        return [
            {"id": item["id"], "metadata": dict(item["metadata"])}
            for item in self._inventory.get(user_id, {}).values()
        ]
