"""SQLite persistence for knowledge sources via aiosqlite."""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timedelta, timezone
from functools import wraps
from typing import Iterable

import aiosqlite

from onescript.errors import PersistenceError
from onescript.models.source import KnowledgeSource, SourceStatus, SourceType

SCHEMA = """
CREATE TABLE IF NOT EXISTS knowledge_sources (
    id TEXT PRIMARY KEY,
    organization_id TEXT NOT NULL,
    type TEXT NOT NULL,
    name TEXT NOT NULL,
    content TEXT,
    embedding TEXT,
    status TEXT NOT NULL DEFAULT 'pending',
    error_message TEXT,
    metadata TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    processed_at TEXT
);

CREATE INDEX IF NOT EXISTS knowledge_sources_org_id_idx
    ON knowledge_sources (organization_id);
CREATE INDEX IF NOT EXISTS knowledge_sources_status_idx
    ON knowledge_sources (status);
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _row_to_source(row: aiosqlite.Row) -> KnowledgeSource:
    embedding = row["embedding"]
    return KnowledgeSource(
        id=row["id"],
        organization_id=row["organization_id"],
        type=SourceType(row["type"]),
        name=row["name"],
        content=row["content"],
        embedding=json.loads(embedding) if embedding is not None else None,
        status=SourceStatus(row["status"]),
        error_message=row["error_message"],
        metadata=json.loads(row["metadata"] or "{}"),
        created_at=_parse_ts(row["created_at"]),
        updated_at=_parse_ts(row["updated_at"]),
        processed_at=_parse_ts(row["processed_at"]),
    )


def _wrap_errors(func):
    """Re-raise driver errors as PersistenceError."""

    @wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except aiosqlite.Error as exc:
            raise PersistenceError(f"{func.__name__} failed: {exc}") from exc

    return wrapper


class Database:
    """Async SQLite database holding knowledge source rows."""

    def __init__(self, path: str = "onescript.db") -> None:
        self.path = path
        self._db: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        self._db = await aiosqlite.connect(self.path)
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(SCHEMA)

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("Database not connected — call connect() first")
        return self._db

    # -- Reads --

    @_wrap_errors
    async def get_source(self, source_id: str) -> KnowledgeSource | None:
        cursor = await self.db.execute(
            "SELECT * FROM knowledge_sources WHERE id = ?", (source_id,)
        )
        row = await cursor.fetchone()
        return _row_to_source(row) if row else None

    @_wrap_errors
    async def list_sources(
        self, organization_id: str, status: SourceStatus | None = None
    ) -> list[KnowledgeSource]:
        query = "SELECT * FROM knowledge_sources WHERE organization_id = ?"
        params: tuple = (organization_id,)
        if status is not None:
            query += " AND status = ?"
            params += (status.value,)
        query += " ORDER BY created_at DESC"
        cursor = await self.db.execute(query, params)
        rows = await cursor.fetchall()
        return [_row_to_source(r) for r in rows]

    @_wrap_errors
    async def count_sources(self, organization_id: str) -> dict[str, int]:
        """Number of sources per status for one organization."""
        cursor = await self.db.execute(
            "SELECT status, COUNT(*) AS n FROM knowledge_sources "
            "WHERE organization_id = ? GROUP BY status",
            (organization_id,),
        )
        rows = await cursor.fetchall()
        counts = {s.value: 0 for s in SourceStatus}
        for row in rows:
            counts[row["status"]] = row["n"]
        return counts

    @_wrap_errors
    async def list_pending_ids(self) -> list[str]:
        cursor = await self.db.execute(
            "SELECT id FROM knowledge_sources WHERE status = ? ORDER BY created_at",
            (SourceStatus.PENDING.value,),
        )
        rows = await cursor.fetchall()
        return [r["id"] for r in rows]

    # -- Writes --

    @_wrap_errors
    async def create_source(
        self,
        organization_id: str,
        type: SourceType,
        name: str,
        content: str | None,
        metadata: dict | None = None,
    ) -> str:
        source_id = str(uuid.uuid4())
        now = _now()
        await self.db.execute(
            "INSERT INTO knowledge_sources "
            "(id, organization_id, type, name, content, status, metadata, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                source_id,
                organization_id,
                type.value,
                name,
                content,
                SourceStatus.PENDING.value,
                json.dumps(metadata or {}),
                now,
                now,
            ),
        )
        await self.db.commit()
        return source_id

    @_wrap_errors
    async def claim_for_processing(self, source_id: str) -> bool:
        """Move a source into ``processing`` unless another run already holds it.

        Returns False when the row is missing or already ``processing``.
        """
        cursor = await self.db.execute(
            "UPDATE knowledge_sources "
            "SET status = ?, embedding = NULL, error_message = NULL, updated_at = ? "
            "WHERE id = ? AND status != ?",
            (
                SourceStatus.PROCESSING.value,
                _now(),
                source_id,
                SourceStatus.PROCESSING.value,
            ),
        )
        await self.db.commit()
        return cursor.rowcount == 1

    @_wrap_errors
    async def mark_active(self, source_id: str, embedding: list[float]) -> None:
        now = _now()
        await self.db.execute(
            "UPDATE knowledge_sources "
            "SET embedding = ?, status = ?, error_message = NULL, processed_at = ?, updated_at = ? "
            "WHERE id = ?",
            (json.dumps(embedding), SourceStatus.ACTIVE.value, now, now, source_id),
        )
        await self.db.commit()

    @_wrap_errors
    async def mark_failed(self, source_id: str, error_message: str) -> None:
        await self.db.execute(
            "UPDATE knowledge_sources "
            "SET status = ?, error_message = ?, embedding = NULL, updated_at = ? "
            "WHERE id = ?",
            (SourceStatus.FAILED.value, error_message, _now(), source_id),
        )
        await self.db.commit()

    @_wrap_errors
    async def requeue_stale(
        self, older_than: timedelta, exclude: Iterable[str] = ()
    ) -> list[str]:
        """Reset ``processing`` rows untouched for ``older_than`` back to ``pending``.

        Ids in ``exclude`` are left alone even when stale.
        """
        cutoff = (datetime.now(timezone.utc) - older_than).isoformat(timespec="microseconds")
        cursor = await self.db.execute(
            "SELECT id FROM knowledge_sources WHERE status = ? AND updated_at < ?",
            (SourceStatus.PROCESSING.value, cutoff),
        )
        skip = set(exclude)
        ids = [r["id"] for r in await cursor.fetchall() if r["id"] not in skip]
        if not ids:
            return []
        placeholders = ", ".join("?" for _ in ids)
        await self.db.execute(
            f"UPDATE knowledge_sources SET status = ?, updated_at = ? "
            f"WHERE status = ? AND id IN ({placeholders})",
            (SourceStatus.PENDING.value, _now(), SourceStatus.PROCESSING.value, *ids),
        )
        await self.db.commit()
        return ids
