"""SQLite implementation of the record repository."""

from __future__ import annotations

import asyncio
import sqlite3
from pathlib import Path
from typing import Any, Optional

from ..contracts import LifecycleRecord
from ..errors import StaleRecordError
from .repository import RecordRepository


class SQLiteRecordRepository(RecordRepository):
    """Persist lifecycle records using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS lifecycle_records (
                id TEXT PRIMARY KEY,
                family TEXT NOT NULL,
                state TEXT NOT NULL,
                version INTEGER NOT NULL,
                body TEXT NOT NULL
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_records_family_state ON lifecycle_records (family, state)"
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
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

    # ------------------------------------------------------------------
    # Repository API
    async def create_record(self, record: LifecycleRecord) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT INTO lifecycle_records (id, family, state, version, body) VALUES (?, ?, ?, ?, ?)",
            record.id,
            record.family,
            record.state,
            record.version,
            record.to_json(),
        )

    async def get_record(self, record_id: str) -> LifecycleRecord | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT body FROM lifecycle_records WHERE id = ?",
            record_id,
        )
        if not row:
            return None
        return LifecycleRecord.from_json(row["body"])

    async def save_record(
        self, record: LifecycleRecord, expected_version: int
    ) -> LifecycleRecord:
        saved = record.model_copy(deep=True, update={"version": expected_version + 1})
        updated = await asyncio.to_thread(
            self._execute,
            """
            UPDATE lifecycle_records
            SET state = ?, version = ?, body = ?
            WHERE id = ? AND version = ?
            """,
            saved.state,
            saved.version,
            saved.to_json(),
            saved.id,
            expected_version,
        )
        if updated != 1:
            row = await asyncio.to_thread(
                self._fetchone,
                "SELECT version FROM lifecycle_records WHERE id = ?",
                record.id,
            )
            raise StaleRecordError(record.id, expected_version, row["version"] if row else None)
        return saved

    async def list_records(
        self, family: Optional[str] = None, state: Optional[str] = None
    ) -> list[LifecycleRecord]:
        query = "SELECT body FROM lifecycle_records WHERE 1 = 1"
        params: list[Any] = []
        if family is not None:
            query += " AND family = ?"
            params.append(family)
        if state is not None:
            query += " AND state = ?"
            params.append(state)
        rows = await asyncio.to_thread(self._fetchall, query + " ORDER BY rowid", *params)
        return [LifecycleRecord.from_json(row["body"]) for row in rows]
