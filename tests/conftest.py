"""
Shared test fixtures and configuration for pytest.
"""

import logging
import sys
from pathlib import Path

import pytest

# Add src directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from cardsync.core.models import Card, Project, Snapshot
from cardsync.remote.memory_store import InMemoryRemoteStore
from cardsync.snapshot.holder import SnapshotHolder
from cardsync.state.memory_store import MemoryStateStore
from cardsync.sync.engine import EngineConfig, SyncEngine


logger = logging.getLogger(__name__)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_snapshot(title: str = "First card") -> Snapshot:
    """Small snapshot with one project and one card."""
    return Snapshot(
        projects=[Project(id="p1", name="Work", color="#3b82f6")],
        cards=[Card(id="c1", title=title, content="<p>body</p>", project_ids=["p1"])],
        custom_colors=[],
    )


# ============================================================================
# Pytest hooks
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (no external dependencies)")
    config.addinivalue_line("markers", "integration: Several components wired together in-process")


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def remote() -> InMemoryRemoteStore:
    """A fresh in-memory remote shared by every engine in a test."""
    return InMemoryRemoteStore()


@pytest.fixture
def sample_snapshot() -> Snapshot:
    return make_snapshot()


@pytest.fixture
def make_engine(remote, clock):
    """
    Factory fixture building an engine (a 'tab' or 'device').

    Each call gets its own holder and state store unless given one, and
    shares the test's remote and clock.
    """
    engines = []

    def _make(
        initial: Snapshot = None,
        state_store: MemoryStateStore = None,
        config: EngineConfig = None,
        **kwargs,
    ) -> SyncEngine:
        store = state_store if state_store is not None else MemoryStateStore()
        holder = SnapshotHolder(
            state_store=store,
            initial=initial if initial is not None else make_snapshot(),
        )
        engine = SyncEngine(
            holder,
            remote,
            state_store=store,
            config=config or EngineConfig(),
            clock=clock,
            **kwargs,
        )
        engines.append(engine)
        return engine

    yield _make

    for engine in engines:
        engine.close()
