import pytest

from src.api.coordinator import NavigationCoordinator
from src.api.protocol import MessageRouter
from src.store.kv import MemoryStore
from src.store.state import StateRepository
from tests.helpers import FakeClock, local_ms


@pytest.fixture
def clock():
    """2025-10-31 12:00 (local) に固定された時計"""
    return FakeClock(local_ms(2025, 10, 31, 12, 0))


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def repo(store):
    return StateRepository(store)


@pytest.fixture
def coordinator(repo, clock):
    """分類・同期なしのコーディネーター"""
    return NavigationCoordinator(repo, clock=clock)


@pytest.fixture
def router(coordinator):
    return MessageRouter(coordinator)


@pytest.fixture
def empty_tally():
    return {
        "distracting_count": 0,
        "distracting_seconds": 0,
        "productive_count": 0,
        "productive_seconds": 0,
        "neutral_count": 0,
    }
