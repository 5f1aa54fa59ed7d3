"""Runtime wiring: one explicitly owned instance of every component.

``build_runtime()`` constructs the store, aggregator, hub, service,
snapshot manager and background workers from ``Settings``.  Nothing is a
module-level singleton; tests build as many runtimes as they like.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from drink_tracker.aggregation.aggregator import Aggregator
from drink_tracker.broadcast.hub import BroadcastHub, HeartbeatWorker
from drink_tracker.core.clock import IClock, WallClock
from drink_tracker.core.config import Settings
from drink_tracker.core.errors import PersistenceError
from drink_tracker.core.periodic import PeriodicWorker
from drink_tracker.persistence.snapshots import SnapshotManager, SnapshotScheduler
from drink_tracker.service import StatsResyncWorker, TrackerService
from drink_tracker.store.event_store import EventStore

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    settings: Settings
    clock: IClock
    store: EventStore
    aggregator: Aggregator
    hub: BroadcastHub
    service: TrackerService
    snapshots: SnapshotManager
    workers: list[PeriodicWorker] = field(default_factory=list)
    restored: bool = False

    async def start(self) -> None:
        """Restore state, seed the catalog if needed, start background workers."""
        snap_cfg = self.settings.snapshot
        if snap_cfg.enabled and snap_cfg.restore_on_start:
            self.restored = await self.snapshots.restore()
            if self.restored:
                self.aggregator.invalidate()

        if self.settings.seed_default_items and not self.restored:
            added = self.store.seed_items()
            if added:
                logger.info("Seeded %d default items", added)

        for worker in self.workers:
            await worker.start()

    async def stop(self) -> None:
        """Stop workers, disconnect subscribers, write a final snapshot."""
        for worker in reversed(self.workers):
            await worker.stop()
        self.hub.close_all()

        snap_cfg = self.settings.snapshot
        if snap_cfg.enabled and snap_cfg.save_on_shutdown:
            try:
                await self.snapshots.save()
            except PersistenceError:
                logger.exception("Final snapshot on shutdown failed")

    def health(self) -> dict[str, object]:
        return {
            "subscribers": self.hub.subscriber_count,
            "workers": [w.health_check() for w in self.workers],
            "snapshots": self.snapshots.stats(),
        }


def build_runtime(settings: Settings, clock: IClock | None = None) -> Runtime:
    """Wire every component from *settings*."""
    clock = clock or WallClock()
    agg_cfg = settings.aggregation

    store = EventStore(clock=clock)
    aggregator = Aggregator(
        clock,
        window_minutes=agg_cfg.window_minutes,
        bucket_seconds=agg_cfg.bucket_seconds,
        baseline_refresh_seconds=agg_cfg.baseline_refresh_seconds,
    )
    hub = BroadcastHub(queue_size=settings.broadcast.queue_size, clock=clock)
    service = TrackerService(store, aggregator, hub)
    snapshots = SnapshotManager(
        store,
        settings.snapshot.directory,
        max_files=settings.snapshot.max_files,
        clock=clock,
    )

    workers: list[PeriodicWorker] = [
        HeartbeatWorker(hub, interval=settings.broadcast.heartbeat_interval_seconds),
        StatsResyncWorker(service, interval=agg_cfg.resync_interval_seconds),
    ]
    if settings.snapshot.enabled:
        workers.append(
            SnapshotScheduler(snapshots, interval=settings.snapshot.interval_seconds),
        )

    return Runtime(
        settings=settings,
        clock=clock,
        store=store,
        aggregator=aggregator,
        hub=hub,
        service=service,
        snapshots=snapshots,
        workers=workers,
    )
