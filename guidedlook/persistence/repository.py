"""Repository abstraction for workflow session, cache and inventory persistence."""

from __future__ import annotations

from typing import Any, Optional, Protocol

from ..contracts import GeneratedArtifact, WorkflowSession
from .models import CacheEntry, IdempotencyRecord


class WorkflowRepository(Protocol):
    """Protocol for persistence backends."""

    async def get_session(self, user_id: str, session_id: str) -> WorkflowSession | None:
        """Retrieve the session row for ``(user_id, session_id)``."""

    async def save_session(self, session: WorkflowSession) -> None:
        """Insert or replace the session row."""

    async def cas_update(
        self,
        session: WorkflowSession,
        expected_status: str,
        expected_token: Optional[str],
    ) -> bool:
        """Replace the session row only if it still has ``expected_status`` and ``expected_token``.

        Returns ``True`` when the row was written.
        """

    async def list_sessions(self, user_id: Optional[str] = None) -> list[WorkflowSession]:
        """Return persisted sessions, optionally for a single user."""

    async def get_cache_entry(
        self, user_id: str, response_kind: str, inventory_hash: str, prompt_hash: str
    ) -> CacheEntry | None:
        """Retrieve a cached response by its content hashes."""

    async def put_cache_entry(self, entry: CacheEntry) -> None:
        """Insert or replace a cached response."""

    async def record_cache_hit(
        self, user_id: str, response_kind: str, inventory_hash: str, prompt_hash: str
    ) -> None:
        """Increment the hit counter of a cached response."""

    async def get_idempotency_record(
        self, user_id: str, response_kind: str, idempotency_key: str
    ) -> IdempotencyRecord | None:
        """Retrieve the recorded outcome for an idempotency key."""

    async def put_idempotency_record(self, record: IdempotencyRecord) -> None:
        """Insert or replace the recorded outcome for an idempotency key."""

    async def add_inventory_item(self, user_id: str, artifact: GeneratedArtifact) -> None:
        """Copy a generated artifact into the user's permanent inventory (once)."""

    async def list_inventory_items(self, user_id: str) -> list[dict[str, Any]]:
        """Return the user's permanent inventory as ``{id, metadata}`` items."""
