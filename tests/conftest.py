"""
Shared pytest fixtures and configuration for syncspine tests.

This module provides:
- A manually advanced clock for every timer-driven component
- A refresh function factory for the token manager
- Pre-wired cache / synchronizer / hub fixtures

Usage:
    Fixtures are auto-discovered by pytest:

    @pytest.mark.asyncio
    async def test_refresh(clock, tokens):
        await tokens.get_token("default")
        await clock.advance(3300)
"""

import sys
from pathlib import Path
from typing import Any

import pytest

# Ensure syncspine package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))
sys.path.insert(0, str(Path(__file__).parent.parent))

from syncspine.auth.tokens import TokenLifecycleManager
from syncspine.cache.backends import MemoryStore, SqliteStore
from syncspine.cache.tiered import TieredCache
from syncspine.sync.synchronizer import SharedStateSynchronizer
from syncspine.transport.memory import InMemoryHub
from tests._support.clock import FakeClock


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = item.path.relative_to(Path(__file__).parent)

        if "integration" in str(test_path) or test_path.name == "test_client.py":
            item.add_marker(pytest.mark.integration)

        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Time
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# =============================================================================
# Tokens
# =============================================================================


class RefreshRecorder:
    """Refresh callable that hands out numbered tokens and can be told to fail."""

    def __init__(self, clock: FakeClock, lifetime: float = 3600.0):
        self.clock = clock
        self.lifetime = lifetime
        self.calls: list[tuple[str, float]] = []
        self.failures: list[Exception] = []

    async def __call__(self, scope: str) -> dict[str, Any]:
        self.calls.append((scope, self.clock.now()))
        if self.failures:
            raise self.failures.pop(0)
        return {
            "token": f"tok-{len(self.calls)}",
            "expires_at": self.clock.now() + self.lifetime,
        }


@pytest.fixture
def refresh(clock: FakeClock) -> RefreshRecorder:
    return RefreshRecorder(clock)


@pytest.fixture
def tokens(refresh: RefreshRecorder, clock: FakeClock) -> TokenLifecycleManager:
    return TokenLifecycleManager(refresh, clock=clock)


# =============================================================================
# Cache / sync / hub
# =============================================================================


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore(max_size=100)


@pytest.fixture
def sqlite_store():
    store = SqliteStore(":memory:")
    yield store
    store.close()


@pytest.fixture
def cache(memory_store: MemoryStore, sqlite_store: SqliteStore, clock: FakeClock) -> TieredCache:
    return TieredCache(memory_store, sqlite_store, clock=clock)


@pytest.fixture
def synchronizer(cache: TieredCache, clock: FakeClock) -> SharedStateSynchronizer:
    return SharedStateSynchronizer(cache, origin_id="client-a", clock=clock)


@pytest.fixture
def hub(clock: FakeClock) -> InMemoryHub:
    return InMemoryHub(clock=clock)
