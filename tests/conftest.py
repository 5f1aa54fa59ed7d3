"""Shared fixtures for the drink-tracker test suite."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from drink_tracker.aggregation.aggregator import Aggregator
from drink_tracker.broadcast.hub import BroadcastHub
from drink_tracker.core.clock import SimClock
from drink_tracker.core.config import Settings
from drink_tracker.persistence.snapshots import SnapshotManager
from drink_tracker.service import TrackerService
from drink_tracker.store.event_store import EventStore

# 2024-06-01 21:30:00 UTC, mid-party
PARTY_START = datetime(2024, 6, 1, 21, 30, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Clock & store
# ---------------------------------------------------------------------------

@pytest.fixture
def sim_clock() -> SimClock:
    return SimClock(start=PARTY_START)


@pytest.fixture
def store(sim_clock) -> EventStore:
    """Empty store on the simulated clock."""
    return EventStore(clock=sim_clock)


@pytest.fixture
def seeded_store(store) -> EventStore:
    """Store with the six default drinks."""
    store.seed_items()
    return store


# ---------------------------------------------------------------------------
# Derived components
# ---------------------------------------------------------------------------

@pytest.fixture
def aggregator(sim_clock) -> Aggregator:
    return Aggregator(sim_clock)


@pytest.fixture
def hub(sim_clock) -> BroadcastHub:
    return BroadcastHub(queue_size=16, clock=sim_clock)


@pytest.fixture
def service(seeded_store, aggregator, hub) -> TrackerService:
    return TrackerService(seeded_store, aggregator, hub)


@pytest.fixture
def snapshot_dir(tmp_path):
    return tmp_path / "snapshots"


@pytest.fixture
def snapshot_manager(seeded_store, snapshot_dir, sim_clock) -> SnapshotManager:
    return SnapshotManager(seeded_store, snapshot_dir, max_files=30, clock=sim_clock)


@pytest.fixture
def tracker_settings(snapshot_dir) -> Settings:
    """Settings pointing at a temp snapshot dir, with no background saving."""
    return Settings(
        snapshot={
            "directory": str(snapshot_dir),
            "restore_on_start": True,
            "save_on_shutdown": False,
        },
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

@pytest.fixture
def drain():
    """Return a function that empties a subscriber queue into ``(event, data)`` pairs."""

    def frames_of(subscriber) -> list[tuple[str, str]]:
        out = []
        while subscriber.pending:
            frame = subscriber._queue.get_nowait()
            if frame is None:
                break
            event_line, data_line = frame.strip("\n").split("\n")
            out.append((event_line.removeprefix("event: "), data_line.removeprefix("data: ")))
        return out

    return frames_of
