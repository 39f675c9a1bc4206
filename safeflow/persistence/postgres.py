"""PostgreSQL implementation of the record repository."""

from __future__ import annotations

from typing import Any, Optional

import asyncpg

from ..contracts import LifecycleRecord
from ..errors import StaleRecordError
from .repository import RecordRepository


class PostgresRecordRepository(RecordRepository):
    """Persist lifecycle records using PostgreSQL."""

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
            CREATE TABLE IF NOT EXISTS lifecycle_records (
                id TEXT PRIMARY KEY,
                family TEXT NOT NULL,
                state TEXT NOT NULL,
                version INTEGER NOT NULL,
                body JSONB NOT NULL,
                created_at TIMESTAMPTZ NOT NULL DEFAULT now()
            )
            """
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_records_family_state ON lifecycle_records (family, state)"
        )

    @staticmethod
    def _decode(body: Any) -> LifecycleRecord:
        if isinstance(body, str):
            return LifecycleRecord.from_json(body)
        return LifecycleRecord.model_validate(body)

    # ------------------------------------------------------------------
    async def create_record(self, record: LifecycleRecord) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                "INSERT INTO lifecycle_records (id, family, state, version, body) VALUES ($1, $2, $3, $4, $5)",
                record.id,
                record.family,
                record.state,
                record.version,
                record.to_json(),
            )
        finally:
            await conn.close()

    async def get_record(self, record_id: str) -> LifecycleRecord | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT body FROM lifecycle_records WHERE id = $1",
                record_id,
            )
        finally:
            await conn.close()
        if not row:
            return None
        return self._decode(row["body"])

    async def save_record(
        self, record: LifecycleRecord, expected_version: int
    ) -> LifecycleRecord:
        saved = record.model_copy(deep=True, update={"version": expected_version + 1})
        conn = await self._connect()
        try:
            status = await conn.execute(
                """
                UPDATE lifecycle_records
                SET state = $1, version = $2, body = $3
                WHERE id = $4 AND version = $5
                """,
                saved.state,
                saved.version,
                saved.to_json(),
                saved.id,
                expected_version,
            )
            if status != "UPDATE 1":
                actual = await conn.fetchval(
                    "SELECT version FROM lifecycle_records WHERE id = $1",
                    record.id,
                )
                raise StaleRecordError(record.id, expected_version, actual)
        finally:
            await conn.close()
        return saved

    async def list_records(
        self, family: Optional[str] = None, state: Optional[str] = None
    ) -> list[LifecycleRecord]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                """
                SELECT body FROM lifecycle_records
                WHERE ($1::text IS NULL OR family = $1)
                  AND ($2::text IS NULL OR state = $2)
                ORDER BY created_at
                """,
                family,
                state,
            )
        finally:
            await conn.close()
        return [self._decode(r["body"]) for r in rows]
