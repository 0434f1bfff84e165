"""Shared test fixtures for backend tests.

Provides fresh stores, allocators, change feeds and temporary databases for
each test, plus a controllable clock so grace-period behavior can be tested
without sleeping.
"""

import sys
from pathlib import Path

import pytest

# Ensure the backend package root is on sys.path so that absolute imports
# like ``from office.path import plan`` resolve correctly when running
# pytest from the repository root.
_backend_root = str(Path(__file__).resolve().parent.parent)
if _backend_root not in sys.path:
    sys.path.insert(0, _backend_root)

from events.bus import ChangeFeed  # noqa: E402
from models.database import OperationsDatabase  # noqa: E402
from office.allocator import WorkstationAllocator  # noqa: E402
from office.driver import AnimationDriver  # noqa: E402
from store.state_store import OperationsStore  # noqa: E402

# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Core components
# ---------------------------------------------------------------------------


@pytest.fixture()
def store() -> OperationsStore:
    """Return a fresh OperationsStore with the default capacity."""
    return OperationsStore(event_log_capacity=50)


@pytest.fixture()
def allocator() -> WorkstationAllocator:
    """Return an allocator over the default seven-seat office."""
    return WorkstationAllocator()


@pytest.fixture()
def driver(
    store: OperationsStore, allocator: WorkstationAllocator, clock: FakeClock
) -> AnimationDriver:
    """Return a driver over the shared store and allocator, on the fake clock."""
    return AnimationDriver(
        store,
        allocator,
        grace_period_seconds=5.0,
        path_steps=20,
        clock=clock,
    )


@pytest.fixture()
def feed() -> ChangeFeed:
    """Return a fresh ChangeFeed for each test."""
    return ChangeFeed()


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


@pytest.fixture()
async def database(tmp_path: Path) -> OperationsDatabase:
    """Return an initialized OperationsDatabase in a temporary directory."""
    db = OperationsDatabase(str(tmp_path / "data" / "operations.db"))
    await db.init()
    return db
