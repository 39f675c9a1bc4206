"""Repository abstraction for lifecycle record persistence."""

from __future__ import annotations

from typing import Optional, Protocol

from ..contracts import LifecycleRecord


class RecordRepository(Protocol):
    """Protocol for lifecycle record persistence backends."""

    async def create_record(self, record: LifecycleRecord) -> None:
        """Persist a newly created record."""

    async def get_record(self, record_id: str) -> LifecycleRecord | None:
        """Retrieve a record by id."""

    async def save_record(
        self, record: LifecycleRecord, expected_version: int
    ) -> LifecycleRecord:
        """Replace a record if its stored version still equals ``expected_version``.

        Returns the stored record with its version bumped. Raises
        ``StaleRecordError`` when another writer got there first.
        """

    async def list_records(
        self, family: Optional[str] = None, state: Optional[str] = None
    ) -> list[LifecycleRecord]:
        """Return records, optionally filtered by family and stored state."""
