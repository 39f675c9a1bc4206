"""In-memory implementation of the record repository."""

from __future__ import annotations

from typing import Dict, Optional

from ..contracts import LifecycleRecord
from ..errors import StaleRecordError
from .repository import RecordRepository


class InMemoryRecordRepository(RecordRepository):
    """Store lifecycle records in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._records: Dict[str, LifecycleRecord] = {}

    # ------------------------------------------------------------------
    async def create_record(self, record: LifecycleRecord) -> None:
        if record.id in self._records:
            raise ValueError(f"Record {record.id} already exists")
        self._records[record.id] = record.model_copy(deep=True)

    async def get_record(self, record_id: str) -> LifecycleRecord | None:
        stored = self._records.get(record_id)
        return stored.model_copy(deep=True) if stored else None

    async def save_record(
        self, record: LifecycleRecord, expected_version: int
    ) -> LifecycleRecord:
        stored = self._records.get(record.id)
        actual = stored.version if stored else None
        if actual != expected_version:
            raise StaleRecordError(record.id, expected_version, actual)
        saved = record.model_copy(deep=True, update={"version": expected_version + 1})
        self._records[record.id] = saved
        return saved.model_copy(deep=True)

    async def list_records(
        self, family: Optional[str] = None, state: Optional[str] = None
    ) -> list[LifecycleRecord]:
        return [
            record.model_copy(deep=True)
            for record in self._records.values()
            if (family is None or record.family == family)
            and (state is None or record.state == state)
        ]
