"""
Pytest fixtures for zombie index tests. Uses a temporary SQLite store, an
in-memory ledger and a fake clock shared by both.
"""

from __future__ import annotations

import pytest

OWNER = "0x" + "a1" * 32
OWNER_2 = "0x" + "a2" * 32
BENE = "0x" + "b1" * 32
BENE_2 = "0x" + "b2" * 32

T0 = 1_700_000_000_000
MINUTE_MS = 60_000
HOUR_MS = 3_600_000
DAY_MS = 86_400_000


class FakeClock:
    """Mutable ms clock; the in-memory ledger and the engine read the same instance."""

    def __init__(self, start: int = T0) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(tmp_path):
    """Fresh SQLite store per test; schema created."""
    from backend_zombie.database import get_store

    s = get_store(f"sqlite:///{tmp_path / 'zombie_index.db'}")
    yield s
    s.dispose()


@pytest.fixture
def ledger(clock):
    from backend_zombie.ledger import InMemoryLedger

    return InMemoryLedger(clock=clock)


@pytest.fixture
def wallet(ledger):
    """A ledger wallet owned by OWNER with some unallocated balance."""
    return ledger.create_wallet(OWNER, balance=1_000_000_000)


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def engine(store, ledger, clock, sleeps):
    from backend_zombie.reconciliation import ReconciliationEngine

    return ReconciliationEngine(
        store,
        ledger,
        retry_attempts=3,
        retry_backoff_sec=0.1,
        sleep=sleeps.append,
        clock=clock,
    )


@pytest.fixture
def custody(store, ledger, engine, clock):
    from backend_zombie.services import CustodyService

    return CustodyService(store, ledger, engine, clock=clock)


@pytest.fixture
def settings(tmp_path, monkeypatch):
    """Settings pinned to the memory ledger; unset DATABASE_URL so nothing leaks from the env."""
    for var in ("DATABASE_URL", "ZOMBIE_DB_URL", "ZOMBIE_DB_PATH", "LEDGER_BACKEND", "DEBUG"):
        monkeypatch.delenv(var, raising=False)
    from backend_zombie.config import Settings

    return Settings(
        database_url=f"sqlite:///{tmp_path / 'zombie_index.db'}",
        ledger_backend="memory",
        package_id="0x0",
        debug=False,
        store_retry_backoff_sec=0.0,
    )


@pytest.fixture
def client(settings, store, ledger, clock):
    """FastAPI TestClient wired to the test store, ledger and clock."""
    from fastapi.testclient import TestClient

    from backend_zombie.api_server.server import create_app

    app = create_app(settings, store=store, ledger=ledger, clock=clock, sleep=lambda _: None)
    return TestClient(app)
