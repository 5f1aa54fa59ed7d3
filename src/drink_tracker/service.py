"""TrackerService: the transaction boundary between ingress and state.

Every mutating call runs as one unit under the store lock:

    validate → mutate store → recompute stats → publish to hub

so concurrent requests queue at the store instead of racing, and the
order of frames on the event stream matches the order of commits.
Publishing is non-blocking (``put_nowait`` per subscriber), so holding
the lock across it never waits on a client.
"""

from __future__ import annotations

import logging
from datetime import datetime

from drink_tracker.aggregation.aggregator import Aggregator, HistoricalStats, StatsPayload
from drink_tracker.broadcast.hub import BroadcastHub
from drink_tracker.core.messages import MessageType
from drink_tracker.core.models import (
    CatalogItem,
    ConsumptionRecord,
    Marker,
    Participant,
    Prediction,
    TrackerSettings,
)
from drink_tracker.core.periodic import PeriodicWorker
from drink_tracker.scoring.awards import Award, compute_awards
from drink_tracker.store.event_store import EventStore, count_by_participant

logger = logging.getLogger(__name__)


class TrackerService:
    """Applies ingress operations and fans the results out.

    Parameters
    ----------
    store:
        The single event store.
    aggregator:
        Computes the ``stats`` payload after each mutation.
    hub:
        Receives one frame per committed mutation plus refreshed stats.
    """

    def __init__(
        self,
        store: EventStore,
        aggregator: Aggregator,
        hub: BroadcastHub,
    ) -> None:
        self._store = store
        self._aggregator = aggregator
        self._hub = hub
        hub.set_snapshot_provider(self.current_stats)

    @property
    def store(self) -> EventStore:
        return self._store

    # ------------------------------------------------------------------
    # Catalog & logs
    # ------------------------------------------------------------------

    def add_item(
        self,
        name: str,
        emoji: str | None = None,
        image_ref: str | None = None,
        color: str | None = None,
    ) -> CatalogItem:
        with self._store.transaction():
            item = self._store.add_item(name, emoji=emoji, image_ref=image_ref, color=color)
            self._hub.publish(MessageType.ITEM_ADDED, item)
        return item

    def record_consumption(
        self,
        item_name: str,
        participant_id: str | None = None,
        occurred_at: datetime | None = None,
    ) -> ConsumptionRecord:
        with self._store.transaction():
            record = self._store.add_consumption(
                item_name, participant_id=participant_id, occurred_at=occurred_at,
            )
            self._hub.publish(MessageType.CONSUMPTION, record)
            self._publish_stats()
        return record

    def add_marker(
        self,
        label: str,
        color: str | None = None,
        occurred_at: datetime | None = None,
    ) -> Marker:
        with self._store.transaction():
            marker = self._store.add_marker(label, color=color, occurred_at=occurred_at)
            self._hub.publish(MessageType.MARKER_ADDED, marker)
            self._publish_stats()
        return marker

    # ------------------------------------------------------------------
    # Participants & predictions
    # ------------------------------------------------------------------

    def upsert_participant(
        self,
        name: str,
        avatar_ref: str | None = None,
        self_estimate: int | None = None,
    ) -> tuple[Participant, bool]:
        with self._store.transaction():
            participant, created = self._store.upsert_participant(
                name, avatar_ref=avatar_ref, self_estimate=self_estimate,
            )
            self._hub.publish(
                MessageType.PARTICIPANT_ADDED if created else MessageType.PARTICIPANT_UPDATED,
                participant,
            )
        return participant, created

    def update_self_estimate(self, participant_id: str, self_estimate: int) -> Participant:
        with self._store.transaction():
            participant = self._store.update_self_estimate(participant_id, self_estimate)
            self._hub.publish(MessageType.PARTICIPANT_UPDATED, participant)
        return participant

    def upsert_prediction(
        self,
        predictor_id: str,
        target_id: str,
        predicted_drinks: int,
    ) -> tuple[Prediction, bool]:
        with self._store.transaction():
            prediction, created = self._store.upsert_prediction(
                predictor_id, target_id, predicted_drinks,
            )
            self._hub.publish(
                MessageType.PREDICTION_ADDED if created else MessageType.PREDICTION_UPDATED,
                prediction,
            )
        return prediction, created

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def set_passcode_hash(self, passcode_hash: str) -> TrackerSettings:
        return self._store.set_passcode_hash(passcode_hash)

    def set_predictions_locked(self, locked: bool) -> TrackerSettings:
        with self._store.transaction():
            settings = self._store.set_predictions_locked(locked)
            self._hub.publish(
                MessageType.PREDICTIONS_LOCK_CHANGED,
                {"locked": settings.predictions_locked},
            )
        return settings

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    def current_stats(self) -> StatsPayload:
        with self._store.transaction():
            return self._aggregator.stats(self._store.snapshot())

    def history(self) -> HistoricalStats:
        return self._aggregator.historical_stats(self._store.snapshot())

    def awards(self) -> list[Award]:
        state = self._store.snapshot()
        return compute_awards(
            state.participants,
            state.predictions,
            count_by_participant(state.consumptions),
        )

    def broadcast_stats(self) -> None:
        """Push a full ``stats`` frame to every subscriber."""
        with self._store.transaction():
            self._publish_stats()

    def state_replaced(self) -> None:
        """Call after the store was replaced wholesale (snapshot restore)."""
        self._aggregator.invalidate()
        self.broadcast_stats()

    def _publish_stats(self) -> None:
        self._hub.publish(
            MessageType.STATS, self._aggregator.stats(self._store.snapshot()),
        )


class StatsResyncWorker(PeriodicWorker):
    """Periodic full ``stats`` push.

    Keeps dashboards correct as the window slides with no new events, and
    repairs any client that missed frames.
    """

    def __init__(self, service: TrackerService, interval: float = 30.0) -> None:
        super().__init__(interval=interval)
        self._service = service

    async def _work(self) -> None:
        self._service.broadcast_stats()
