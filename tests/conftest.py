"""Shared test fixtures for syncstore tests."""

from __future__ import annotations

import pytest

from syncstore import SyncStoreConfig, Tenant
from syncstore.storage import SyncStorage

# 2024-01-01T00:00:00Z
START = 1_704_067_200.0


class FakeClock:
    """Manually advanced clock returning epoch seconds."""

    def __init__(self, now: float = START) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def rewind(self, seconds: float) -> None:
        self.now -= seconds


# --- Fixtures ---


@pytest.fixture
def tmp_db(tmp_path):
    """Create a temporary SQLite database path."""
    return str(tmp_path / "test.db")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return SyncStoreConfig()


@pytest.fixture
def storage(tmp_db, config, clock):
    """Create a SyncStorage instance with a temporary database and a fake clock."""
    s = SyncStorage(tmp_db, config=config, clock=clock)
    yield s
    s.close()


@pytest.fixture
def tenant():
    return Tenant("uid-1", "kid-1")


@pytest.fixture
def other_tenant():
    return Tenant("uid-2", "kid-2")
