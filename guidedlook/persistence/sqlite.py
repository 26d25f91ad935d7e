"""SQLite implementation of the workflow repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from ..contracts import Collected, GeneratedArtifact, WorkflowSession, utcnow
from .models import CacheEntry, IdempotencyRecord
from .repository import WorkflowRepository

_SESSION_COLUMNS = (
    "user_id, session_id, status, collected_json, confirmation_token, "
    "generated_item_json, autosave_enabled, expires_at, updated_at"
)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SQLiteWorkflowRepository(WorkflowRepository):
    """Persist sessions, cache rows and inventory using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._write_lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS guided_look_sessions (
                user_id TEXT NOT NULL,
                session_id TEXT NOT NULL,
                status TEXT NOT NULL,
                collected_json TEXT NOT NULL,
                confirmation_token TEXT,
                generated_item_json TEXT,
                autosave_enabled INTEGER NOT NULL DEFAULT 0,
                expires_at TEXT,
                updated_at TEXT,
                PRIMARY KEY (user_id, session_id)
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS response_cache (
                user_id TEXT NOT NULL,
                response_kind TEXT NOT NULL,
                inventory_hash TEXT NOT NULL,
                prompt_hash TEXT NOT NULL,
                response_json TEXT NOT NULL,
                model TEXT,
                credits_used INTEGER NOT NULL DEFAULT 0,
                expires_at TEXT NOT NULL,
                hit_count INTEGER NOT NULL DEFAULT 0,
                PRIMARY KEY (user_id, response_kind, inventory_hash, prompt_hash)
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS idempotency_records (
                user_id TEXT NOT NULL,
                response_kind TEXT NOT NULL,
                idempotency_key TEXT NOT NULL,
                status TEXT NOT NULL,
                response_json TEXT,
                prompt_hash TEXT,
                inventory_hash TEXT,
                request_json TEXT,
                credits_used INTEGER NOT NULL DEFAULT 0,
                error_text TEXT,
                updated_at TEXT,
                PRIMARY KEY (user_id, response_kind, idempotency_key)
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS inventory_items (
                user_id TEXT NOT NULL,
                item_id TEXT NOT NULL,
                metadata_json TEXT NOT NULL,
                image_ref TEXT,
                updated_at TEXT,
                PRIMARY KEY (user_id, item_id)
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        with self._write_lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            self._conn.commit()
            return cur.rowcount

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    @staticmethod
    def _session_params(session: WorkflowSession) -> tuple:
        artifact = session.generated_artifact
        return (
            session.status,
            json.dumps(session.collected.model_dump(mode="json")),
            session.confirmation_token,
            json.dumps(artifact.model_dump(mode="json")) if artifact else None,
            int(session.autosave_enabled),
            _iso(session.expires_at),
            _iso(session.updated_at or utcnow()),
        )

    @staticmethod
    def _row_to_session(row: sqlite3.Row) -> WorkflowSession:
        artifact = row["generated_item_json"]
        return WorkflowSession(
            user_id=row["user_id"],
            session_id=row["session_id"],
            status=row["status"],
            collected=Collected.model_validate(json.loads(row["collected_json"])),
            confirmation_token=row["confirmation_token"],
            generated_artifact=GeneratedArtifact.model_validate(json.loads(artifact)) if artifact else None,
            autosave_enabled=bool(row["autosave_enabled"]),
            expires_at=_parse_dt(row["expires_at"]),
            updated_at=_parse_dt(row["updated_at"]),
        )

    # ------------------------------------------------------------------
    # Sessions
    async def get_session(self, user_id: str, session_id: str) -> WorkflowSession | None:
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT {_SESSION_COLUMNS} FROM guided_look_sessions WHERE user_id = ? AND session_id = ?",
            user_id,
            session_id,
        )
        return self._row_to_session(row) if row else None

    async def save_session(self, session: WorkflowSession) -> None:
        await asyncio.to_thread(
            self._execute,
            f"""
            INSERT INTO guided_look_sessions ({_SESSION_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (user_id, session_id) DO UPDATE SET
                status = excluded.status,
                collected_json = excluded.collected_json,
                confirmation_token = excluded.confirmation_token,
                generated_item_json = excluded.generated_item_json,
                autosave_enabled = excluded.autosave_enabled,
                expires_at = excluded.expires_at,
                updated_at = excluded.updated_at
            """,
            session.user_id,
            session.session_id,
            *self._session_params(session),
        )

    async def cas_update(
        self,
        session: WorkflowSession,
        expected_status: str,
        expected_token: Optional[str],
    ) -> bool:
        updated = await asyncio.to_thread(
            self._execute,
            """
            UPDATE guided_look_sessions
            SET status = ?, collected_json = ?, confirmation_token = ?, generated_item_json = ?,
                autosave_enabled = ?, expires_at = ?, updated_at = ?
            WHERE user_id = ? AND session_id = ? AND status = ? AND confirmation_token IS ?
            """,
            *self._session_params(session),
            session.user_id,
            session.session_id,
            expected_status,
            expected_token,
        )
        return updated == 1

    async def list_sessions(self, user_id: Optional[str] = None) -> list[WorkflowSession]:
        if user_id is None:
            rows = await asyncio.to_thread(
                self._fetchall,
                f"SELECT {_SESSION_COLUMNS} FROM guided_look_sessions ORDER BY updated_at DESC",
            )
        else:
            rows = await asyncio.to_thread(
                self._fetchall,
                f"SELECT {_SESSION_COLUMNS} FROM guided_look_sessions WHERE user_id = ? ORDER BY updated_at DESC",
                user_id,
            )
        return [self._row_to_session(row) for row in rows]

    # ------------------------------------------------------------------
    # Response cache and idempotency ledger
    async def get_cache_entry(
        self, user_id: str, response_kind: str, inventory_hash: str, prompt_hash: str
    ) -> CacheEntry | None:
        row = await asyncio.to_thread(
            self._fetchone,
            """
            SELECT user_id, response_kind, inventory_hash, prompt_hash, response_json, model,
                   credits_used, expires_at, hit_count
            FROM response_cache
            WHERE user_id = ? AND response_kind = ? AND inventory_hash = ? AND prompt_hash = ?
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
            response=json.loads(row["response_json"]),
            model=row["model"],
            credits_used=row["credits_used"],
            expires_at=datetime.fromisoformat(row["expires_at"]),
            hit_count=row["hit_count"],
        )

    async def put_cache_entry(self, entry: CacheEntry) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO response_cache (user_id, response_kind, inventory_hash, prompt_hash,
                                        response_json, model, credits_used, expires_at, hit_count)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (user_id, response_kind, inventory_hash, prompt_hash) DO UPDATE SET
                response_json = excluded.response_json,
                model = excluded.model,
                credits_used = excluded.credits_used,
                expires_at = excluded.expires_at
            """,
            entry.user_id,
            entry.response_kind,
            entry.inventory_hash,
            entry.prompt_hash,
            json.dumps(entry.response),
            entry.model,
            entry.credits_used,
            entry.expires_at.isoformat(),
            entry.hit_count,
        )

    async def record_cache_hit(
        self, user_id: str, response_kind: str, inventory_hash: str, prompt_hash: str
    ) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            UPDATE response_cache SET hit_count = hit_count + 1
            WHERE user_id = ? AND response_kind = ? AND inventory_hash = ? AND prompt_hash = ?
            """,
            user_id,
            response_kind,
            inventory_hash,
            prompt_hash,
        )

    async def get_idempotency_record(
        self, user_id: str, response_kind: str, idempotency_key: str
    ) -> IdempotencyRecord | None:
        row = await asyncio.to_thread(
            self._fetchone,
            """
            SELECT user_id, response_kind, idempotency_key, status, response_json, prompt_hash,
                   inventory_hash, request_json, credits_used, error_text, updated_at
            FROM idempotency_records
            WHERE user_id = ? AND response_kind = ? AND idempotency_key = ?
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
            response=json.loads(row["response_json"]) if row["response_json"] else None,
            prompt_hash=row["prompt_hash"],
            inventory_hash=row["inventory_hash"],
            request=json.loads(row["request_json"]) if row["request_json"] else None,
            credits_used=row["credits_used"],
            error_text=row["error_text"],
            updated_at=_parse_dt(row["updated_at"]),
        )

    async def put_idempotency_record(self, record: IdempotencyRecord) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO idempotency_records (user_id, response_kind, idempotency_key, status, response_json,
                                             prompt_hash, inventory_hash, request_json, credits_used,
                                             error_text, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (user_id, response_kind, idempotency_key) DO UPDATE SET
                status = excluded.status,
                response_json = excluded.response_json,
                prompt_hash = excluded.prompt_hash,
                inventory_hash = excluded.inventory_hash,
                request_json = excluded.request_json,
                credits_used = excluded.credits_used,
                error_text = excluded.error_text,
                updated_at = excluded.updated_at
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
            utcnow().isoformat(),
        )

    # ------------------------------------------------------------------
    # Permanent inventory
    async def add_inventory_item(self, user_id: str, artifact: GeneratedArtifact) -> None:
        now = utcnow().isoformat()
        metadata = artifact.metadata.model_dump(mode="json")
        metadata["updated_at"] = now
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO inventory_items (user_id, item_id, metadata_json, image_ref, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT (user_id, item_id) DO NOTHING
            """,
            user_id,
            artifact.id,
            json.dumps(metadata),
            artifact.image_ref,
            now,
        )

    async def list_inventory_items(self, user_id: str) -> list[dict[str, Any]]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT item_id, metadata_json FROM inventory_items WHERE user_id = ? ORDER BY updated_at DESC",
            user_id,
        )
        return [{"id": row["item_id"], "metadata": json.loads(row["metadata_json"])} for row in rows]
