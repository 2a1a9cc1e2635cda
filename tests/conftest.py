"""
tests/conftest.py -- Shared test fixtures for the device discovery tests.

This module provides:
  - network / collector: a Collector over the scripted FakeNetwork (tests/fakes.py)
  - store / engine fixtures over in-memory SQLite
  - api_client: TestClient with a patched lifespan for HTTP integration tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
whenever more than one thread touches the store (TestClient's thread pool,
the bulk worker pool). Plain :memory: DBs are per-connection and would
present a blank schema to each worker thread. Bulk tests use a file in
tmp_path instead, which also exercises WAL mode.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# Set before any core import so get_settings() never reads a developer .env value
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("DEFAULT_ACTOR", "pytest")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from cmdb.bulk import BulkScanOrchestrator
from cmdb.engine import DiscoveryEngine
from cmdb.store import DeviceStore
from core.collector import Collector
from core.config import Settings
from fakes import FakeNetwork

# ---------------------------------------------------------------------------
# Store and engine fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[DeviceStore, None, None]:
    s = DeviceStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def network() -> FakeNetwork:
    return FakeNetwork()


@pytest.fixture
def collector(network: FakeNetwork) -> Collector:
    return Collector(timeout_seconds=30, transport_factory=network.factory, names=frozenset())


@pytest.fixture
def engine(collector: Collector, store: DeviceStore) -> DiscoveryEngine:
    return DiscoveryEngine(collector, store)


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


def _patch_lifespan(store: DeviceStore, network: FakeNetwork, settings: Settings, report_dir: str):
    """Return an async context manager that replaces the real lifespan.

    Wires a test store and a collector over the fake network into app.state
    so TestClient routes never touch the production database or a real host.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        collector = Collector(timeout_seconds=30, transport_factory=network.factory, names=frozenset())
        app.state.settings = settings
        app.state.store = store
        app.state.collector = collector
        app.state.engine = DiscoveryEngine(collector, store)
        app.state.orchestrator = BulkScanOrchestrator(app.state.engine, store, max_workers=1, report_dir=report_dir)
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(tmp_path_factory) -> Generator[tuple[TestClient, FakeNetwork, DeviceStore], None, None]:
    """Yield (client, network, store) for API integration tests.

    One TestClient per test module. Tests add hosts to the network and can
    inspect the store directly to verify what the routes persisted.
    """
    db_url = "sqlite:///file:test_devdisco_api?mode=memory&cache=shared&uri=true"
    test_store = DeviceStore(db_url=db_url)
    network = FakeNetwork()
    settings = Settings(default_actor="api-default", db_url=db_url)

    app.router.lifespan_context = _patch_lifespan(test_store, network, settings, str(tmp_path_factory.mktemp("reports")))
    # Rate-limit counters are process-wide; start each module from zero
    limiter.reset()

    with TestClient(app, base_url="http://localhost", raise_server_exceptions=True) as client:
        yield client, network, test_store

    test_store.close()
