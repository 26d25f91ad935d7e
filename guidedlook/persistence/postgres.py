"""PostgreSQL implementation of the workflow repository."""

from __future__ import annotations

import json
from typing import Any, Optional

import asyncpg

from ..contracts import Collected, GeneratedArtifact, WorkflowSession, utcnow
from .models import CacheEntry, IdempotencyRecord
from .repository import WorkflowRepository

_SESSION_COLUMNS = (
    "user_id, session_id, status, collected_json, confirmation_token, "
    "generated_item_json, autosave_enabled, expires_at, updated_at"
)


def _loads(value: Any) -> Any:
    if value is None:
        return None
    return json.loads(value) if isinstance(value, str) else value


class PostgresWorkflowRepository(WorkflowRepository):
    """Persist sessions, cache rows and inventory using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS guided_look_sessions (
                user_id TEXT NOT NULL,
                session_id TEXT NOT NULL,
                status TEXT NOT NULL,
                collected_json JSONB NOT NULL,
                confirmation_token TEXT,
                generated_item_json JSONB,
                autosave_enabled BOOLEAN NOT NULL DEFAULT FALSE,
                expires_at TIMESTAMPTZ,
                updated_at TIMESTAMPTZ,
                PRIMARY KEY (user_id, session_id)
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS response_cache (
                user_id TEXT NOT NULL,
                response_kind TEXT NOT NULL,
                inventory_hash TEXT NOT NULL,
                prompt_hash TEXT NOT NULL,
                response_json JSONB NOT NULL,
                model TEXT,
                credits_used INTEGER NOT NULL DEFAULT 0,
                expires_at TIMESTAMPTZ NOT NULL,
                hit_count INTEGER NOT NULL DEFAULT 0,
                PRIMARY KEY (user_id, response_kind, inventory_hash, prompt_hash)
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS idempotency_records (
                user_id TEXT NOT NULL,
                response_kind TEXT NOT NULL,
                idempotency_key TEXT NOT NULL,
                status TEXT NOT NULL,
                response_json JSONB,
                prompt_hash TEXT,
                inventory_hash TEXT,
                request_json JSONB,
                credits_used INTEGER NOT NULL DEFAULT 0,
                error_text TEXT,
                updated_at TIMESTAMPTZ,
                PRIMARY KEY (user_id, response_kind, idempotency_key)
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS inventory_items (
                user_id TEXT NOT NULL,
                item_id TEXT NOT NULL,
                metadata_json JSONB NOT NULL,
                image_ref TEXT,
                updated_at TIMESTAMPTZ,
                PRIMARY KEY (user_id, item_id)
            )
            """
        )

    @staticmethod
    def _session_params(session: WorkflowSession) -> tuple:
        artifact = session.generated_artifact
        return (
            session.status,
            json.dumps(session.collected.model_dump(mode="json")),
            session.confirmation_token,
            json.dumps(artifact.model_dump(mode="json")) if artifact else None,
            session.autosave_enabled,
            session.expires_at,
            session.updated_at or utcnow(),
        )

    @staticmethod
    def _row_to_session(row: asyncpg.Record) -> WorkflowSession:
        artifact = _loads(row["generated_item_json"])
        return WorkflowSession(
            user_id=row["user_id"],
            session_id=row["session_id"],
            status=row["status"],
            collected=Collected.model_validate(_loads(row["collected_json"]) or {}),
            confirmation_token=row["confirmation_token"],
            generated_artifact=GeneratedArtifact.model_validate(artifact) if artifact else None,
            autosave_enabled=row["autosave_enabled"],
            expires_at=row["expires_at"],
            updated_at=row["updated_at"],
        )

    # ------------------------------------------------------------------
    async def get_session(self, user_id: str, session_id: str) -> WorkflowSession | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                f"SELECT {_SESSION_COLUMNS} FROM guided_look_sessions WHERE user_id = $1 AND session_id = $2",
                user_id,
                session_id,
            )
            return self._row_to_session(row) if row else None
        finally:
            await conn.close()

    async def save_session(self, session: WorkflowSession) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                f"""
                INSERT INTO guided_look_sessions ({_SESSION_COLUMNS})
                VALUES ($1, $2, $3, $4::jsonb, $5, $6::jsonb, $7, $8, $9)
                ON CONFLICT (user_id, session_id) DO UPDATE SET
                    status = EXCLUDED.status,
                    collected_json = EXCLUDED.collected_json,
                    confirmation_token = EXCLUDED.confirmation_token,
                    generated_item_json = EXCLUDED.generated_item_json,
                    autosave_enabled = EXCLUDED.autosave_enabled,
                    expires_at = EXCLUDED.expires_at,
                    updated_at = EXCLUDED.updated_at
                """,
                session.user_id,
                session.session_id,
                *self._session_params(session),
            )
        finally:
            await conn.close()

    async def cas_update(
        self,
        session: WorkflowSession,
        expected_status: str,
        expected_token: Optional[str],
    ) -> bool:
        conn = await self._connect()
        try:
            result = await conn.execute(
                """
                UPDATE guided_look_sessions
                SET status = $1, collected_json = $2::jsonb, confirmation_token = $3,
                    generated_item_json = $4::jsonb, autosave_enabled = $5, expires_at = $6, updated_at = $7
                WHERE user_id = $8 AND session_id = $9 AND status = $10
                  AND confirmation_token IS NOT DISTINCT FROM $11
                """,
                *self._session_params(session),
                session.user_id,
                session.session_id,
                expected_status,
                expected_token,
            )
            return result == "UPDATE 1"
        finally:
            await conn.close()

    async def list_sessions(self, user_id: Optional[str] = None) -> list[WorkflowSession]:
        conn = await self._connect()
        try:
            if user_id is None:
                rows = await conn.fetch(
                    f"SELECT {_SESSION_COLUMNS} FROM guided_look_sessions ORDER BY updated_at DESC"
                )
            else:
                rows = await conn.fetch(
                    f"SELECT {_SESSION_COLUMNS} FROM guided_look_sessions WHERE user_id = $1 ORDER BY updated_at DESC",
                    user_id,
                )
            return [self._row_to_session(row) for row in rows]
        finally:
            await conn.close()

    # ------------------------------------------------------------------
    async def get_cache_entry(
        self, user_id: str, response_kind: str, inventory_hash: str, prompt_hash: str
    ) -> CacheEntry | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                """
                SELECT user_id, response_kind, inventory_hash, prompt_hash, response_json, model,
                       credits_used, expires_at, hit_count
                FROM response_cache
                WHERE user_id = $1 AND response_kind = $2 AND inventory_hash = $3 AND prompt_hash = $4
                """,
                user_id,
                response_kind,
                inventory_hash,
                prompt_hash,
            )
            if not row:
                return None
            return CacheEntry(
                user_id=row["user_id"],
                response_kind=row["response_kind"],
                inventory_hash=row["inventory_hash"],
                prompt_hash=row["prompt_hash"],
                response=_loads(row["response_json"]),
                model=row["model"],
                credits_used=row["credits_used"],
                expires_at=row["expires_at"],
                hit_count=row["hit_count"],
            )
        finally:
            await conn.close()

    async def put_cache_entry(self, entry: CacheEntry) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO response_cache (user_id, response_kind, inventory_hash, prompt_hash,
                                            response_json, model, credits_used, expires_at, hit_count)
                VALUES ($1, $2, $3, $4, $5::jsonb, $6, $7, $8, $9)
                ON CONFLICT (user_id, response_kind, inventory_hash, prompt_hash) DO UPDATE SET
                    response_json = EXCLUDED.response_json,
                    model = EXCLUDED.model,
                    credits_used = EXCLUDED.credits_used,
                    expires_at = EXCLUDED.expires_at
                """,
                entry.user_id,
                entry.response_kind,
                entry.inventory_hash,
                entry.prompt_hash,
                json.dumps(entry.response),
                entry.model,
                entry.credits_used,
                entry.expires_at,
                entry.hit_count,
            )
        finally:
            await conn.close()

    async def record_cache_hit(
        self, user_id: str, response_kind: str, inventory_hash: str, prompt_hash: str
    ) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                UPDATE response_cache SET hit_count = hit_count + 1
                WHERE user_id = $1 AND response_kind = $2 AND inventory_hash = $3 AND prompt_hash = $4
                """,
                user_id,
                response_kind,
                inventory_hash,
                prompt_hash,
            )
        finally:
            await conn.close()

    async def get_idempotency_record(
        self, user_id: str, response_kind: str, idempotency_key: str
    ) -> IdempotencyRecord | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                """
                SELECT user_id, response_kind, idempotency_key, status, response_json, prompt_hash,
                       inventory_hash, request_json, credits_used, error_text, updated_at
                FROM idempotency_records
                WHERE user_id = $1 AND response_kind = $2 AND idempotency_key = $3
                """,
                user_id,
                response_kind,
                idempotency_key,
            )
            if not row:
                return None
            return IdempotencyRecord(
                user_id=row["user_id"],
                response_kind=row["response_kind"],
                idempotency_key=row["idempotency_key"],
                status=row["status"],
                response=_loads(row["response_json"]),
                prompt_hash=row["prompt_hash"],
                inventory_hash=row["inventory_hash"],
                request=_loads(row["request_json"]),
                credits_used=row["credits_used"],
                error_text=row["error_text"],
                updated_at=row["updated_at"],
            )
        finally:
            await conn.close()

    async def put_idempotency_record(self, record: IdempotencyRecord) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO idempotency_records (user_id, response_kind, idempotency_key, status, response_json,
                                                 prompt_hash, inventory_hash, request_json, credits_used,
                                                 error_text, updated_at)
                VALUES ($1, $2, $3, $4, $5::jsonb, $6, $7, $8::jsonb, $9, $10, $11)
                ON CONFLICT (user_id, response_kind, idempotency_key) DO UPDATE SET
                    status = EXCLUDED.status,
                    response_json = EXCLUDED.response_json,
                    prompt_hash = EXCLUDED.prompt_hash,
                    inventory_hash = EXCLUDED.inventory_hash,
                    request_json = EXCLUDED.request_json,
                    credits_used = EXCLUDED.credits_used,
                    error_text = EXCLUDED.error_text,
                    updated_at = EXCLUDED.updated_at
                """,
                record.user_id,
                record.response_kind,
                record.idempotency_key,
                record.status,
                json.dumps(record.response) if record.response is not None else None,
                record.prompt_hash,
                record.inventory_hash,
                json.dumps(record.request) if record.request is not None else None,
                record.credits_used,
                record.error_text,
                utcnow(),
            )
        finally:
            await conn.close()

    # ------------------------------------------------------------------
    async def add_inventory_item(self, user_id: str, artifact: GeneratedArtifact) -> None:
        now = utcnow()
        metadata = artifact.metadata.model_dump(mode="json")
        metadata["updated_at"] = now.isoformat()
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO inventory_items (user_id, item_id, metadata_json, image_ref, updated_at)
                VALUES ($1, $2, $3::jsonb, $4, $5)
                ON CONFLICT (user_id, item_id) DO NOTHING
                """,
                user_id,
                artifact.id,
                json.dumps(metadata),
                artifact.image_ref,
                now,
            )
        finally:
            await conn.close()

    async def list_inventory_items(self, user_id: str) -> list[dict[str, Any]]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT item_id, metadata_json FROM inventory_items WHERE user_id = $1 ORDER BY updated_at DESC",
                user_id,
            )
            return [{"id": row["item_id"], "metadata": _loads(row["metadata_json"])} for row in rows]
        finally:
            await conn.close()
