from datetime import datetime, timedelta, timezone

import pytest

import safeflow.persistence as persistence
from safeflow.config import SafeflowConfig
from safeflow.persistence import InMemoryRecordRepository
from safeflow.service import LifecycleService
from safeflow.transports import InMemoryTransport

T0 = datetime(2025, 1, 6, 8, 0, tzinfo=timezone.utc)


class Clock:
    """Settable clock handed to the service in place of ``utcnow``."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Keep tests independent of a local config.yaml, env vars and cached backends."""
    monkeypatch.setenv("SAFEFLOW_CONFIG", str(tmp_path / "absent.yaml"))
    for name in ("SAFEFLOW_DATABASE_URL", "DATABASE_URL", "SAFEFLOW_TRANSPORT"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(persistence, "_repository_instance", None)


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def transport():
    return InMemoryTransport()


@pytest.fixture
def repository():
    return InMemoryRecordRepository()


@pytest.fixture
def service(repository, transport, clock):
    return LifecycleService(
        config=SafeflowConfig(),
        repository=repository,
        transport=transport,
        clock=clock,
    )
