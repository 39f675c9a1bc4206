"""Persistence layer for lifecycle records."""

from __future__ import annotations

import os
from typing import Optional

from ..config import SafeflowConfig, load_config
from .inmemory import InMemoryRecordRepository
from .repository import RecordRepository
from .sqlite import SQLiteRecordRepository

try:  # pragma: no cover - optional dependency
    from .postgres import PostgresRecordRepository
except ImportError:  # pragma: no cover - optional dependency
    PostgresRecordRepository = None  # type: ignore

_repository_instance: RecordRepository | None = None


def get_repository(
    database_url: Optional[str] = None, config: Optional[SafeflowConfig] = None
) -> RecordRepository:
    """Factory function to obtain a record repository.

    The repository backend is selected based on ``database_url`` which can be
    provided explicitly, via environment variable ``SAFEFLOW_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, an in-memory repository is returned.
    """

    global _repository_instance
    if _repository_instance is not None and database_url is None and config is None:
        return _repository_instance

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("SAFEFLOW_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or getattr(config, "database_url", None)
    )

    if not database_url:
        _repository_instance = InMemoryRecordRepository()
        return _repository_instance

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        _repository_instance = SQLiteRecordRepository(path)
    elif database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    ):
        if PostgresRecordRepository is None:
            raise RuntimeError("Postgres support not available")
        _repository_instance = PostgresRecordRepository(database_url)
    else:
        raise ValueError(f"Unsupported database backend: {database_url}")

    return _repository_instance


__all__ = [
    "RecordRepository",
    "SQLiteRecordRepository",
    "PostgresRecordRepository",
    "InMemoryRecordRepository",
    "get_repository",
]
