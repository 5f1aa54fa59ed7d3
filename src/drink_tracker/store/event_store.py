"""Authoritative in-memory store for every drink tracker entity.

Design invariants
-----------------
1.  Every mutation is **validated before commit** and fails atomically:
    a rejected call leaves no partial effect.
2.  All mutations and snapshot reads run under one re-entrant lock
    (``transaction()``), so no reader observes a half-applied mutation.
3.  The consumption and marker logs are **append-only**.  Insertion order
    is not chronological; readers sort when they need time order.
4.  Entities are frozen models.  Updates replace the stored instance, so
    objects handed out by the store are safe to share.
5.  Catalog item and participant names are unique case-insensitively.
6.  Predictions and self-estimates are writable only while
    ``predictions_locked`` is false.  Self-prediction is rejected before
    the lock is even consulted.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime

from drink_tracker.core.clock import IClock, WallClock
from drink_tracker.core.errors import (
    AlreadySetError,
    DuplicateNameError,
    LockedForWritesError,
    NotFoundError,
    SelfReferenceRejected,
    ValidationError,
)
from drink_tracker.core.ids import ensure_utc, new_id
from drink_tracker.core.models import (
    DEFAULT_ITEM_COLOR,
    DEFAULT_MARKER_COLOR,
    CatalogItem,
    ConsumptionRecord,
    Marker,
    Participant,
    Prediction,
    StateSnapshot,
    TrackerSettings,
)

logger = logging.getLogger(__name__)


DEFAULT_ITEMS: tuple[CatalogItem, ...] = (
    CatalogItem(name="Beer", emoji="🍺", color="#F59E0B"),
    CatalogItem(name="Wine", emoji="🍷", color="#DC2626"),
    CatalogItem(name="Whisky", emoji="🥃", color="#D97706"),
    CatalogItem(name="Cocktail", emoji="🍸", color="#EC4899"),
    CatalogItem(name="Longdrink", emoji="🍹", color="#06B6D4"),
    CatalogItem(name="Sparkling", emoji="🥂", color="#FBBF24"),
)


def _name_key(name: str) -> str:
    return name.strip().casefold()


def _required_text(value: str | None, field: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"{field} is required")
    return value.strip()


def _non_negative(value: int, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"{field} must be a non-negative integer")
    return value


class EventStore:
    """The single serialization point for all tracker state.

    Parameters
    ----------
    clock:
        Source of ``occurred_at`` / ``created_at`` timestamps when the
        caller does not supply one.
    state:
        Optional snapshot to start from (equivalent to ``replace()``).
    """

    def __init__(
        self,
        clock: IClock | None = None,
        state: StateSnapshot | None = None,
    ) -> None:
        self._clock: IClock = clock or WallClock()
        self._lock = threading.RLock()
        self._items: dict[str, CatalogItem] = {}
        self._consumptions: list[ConsumptionRecord] = []
        self._markers: list[Marker] = []
        self._participants: dict[str, Participant] = {}
        self._participant_names: dict[str, str] = {}  # casefolded name → id
        self._predictions: dict[tuple[str, str], Prediction] = {}
        self._settings = TrackerSettings()
        if state is not None:
            self.replace(state)

    # ------------------------------------------------------------------
    # Serialization point
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[EventStore]:
        """Hold the store lock across several operations.

        The lock is re-entrant: mutation methods called inside the block
        acquire it again without deadlocking.
        """
        with self._lock:
            yield self

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_item(
        self,
        name: str,
        emoji: str | None = None,
        image_ref: str | None = None,
        color: str | None = None,
    ) -> CatalogItem:
        """Add a catalog item.  Raises ``DuplicateNameError`` on collision."""
        clean = _required_text(name, "name")
        with self._lock:
            key = _name_key(clean)
            if key in self._items:
                raise DuplicateNameError("item", clean)
            item = CatalogItem(
                name=clean,
                emoji=emoji or None,
                image_ref=image_ref or None,
                color=color or DEFAULT_ITEM_COLOR,
            )
            self._items[key] = item
        logger.debug("Item added: %s", clean)
        return item

    def add_consumption(
        self,
        item_name: str,
        participant_id: str | None = None,
        occurred_at: datetime | None = None,
    ) -> ConsumptionRecord:
        """Append a consumption record for an existing item (and participant)."""
        clean = _required_text(item_name, "item_name")
        with self._lock:
            item = self._items.get(_name_key(clean))
            if item is None:
                raise NotFoundError("item", clean)
            if participant_id is not None and participant_id not in self._participants:
                raise NotFoundError("participant", participant_id)
            record = ConsumptionRecord(
                id=new_id(),
                item_name=item.name,
                participant_id=participant_id,
                occurred_at=self._timestamp(occurred_at),
            )
            self._consumptions.append(record)
        return record

    def add_marker(
        self,
        label: str,
        color: str | None = None,
        occurred_at: datetime | None = None,
    ) -> Marker:
        clean = _required_text(label, "label")
        with self._lock:
            marker = Marker(
                id=new_id(),
                label=clean,
                color=color or DEFAULT_MARKER_COLOR,
                occurred_at=self._timestamp(occurred_at),
            )
            self._markers.append(marker)
        return marker

    def upsert_participant(
        self,
        name: str,
        avatar_ref: str | None = None,
        self_estimate: int | None = None,
    ) -> tuple[Participant, bool]:
        """Create a participant, or update the one with the same name.

        Returns ``(participant, created)``.  While predictions are locked,
        joining with a non-zero self-estimate or changing an existing one
        raises ``LockedForWritesError``; joining with estimate 0 is allowed.
        """
        clean = _required_text(name, "name")
        if self_estimate is not None:
            _non_negative(self_estimate, "self_estimate")
        with self._lock:
            existing_id = self._participant_names.get(_name_key(clean))
            if existing_id is None:
                if self_estimate:
                    self._require_unlocked()
                participant = Participant(
                    id=new_id(),
                    name=clean,
                    avatar_ref=avatar_ref or None,
                    self_estimate=self_estimate or 0,
                    created_at=self._clock.now(),
                )
                self._participants[participant.id] = participant
                self._participant_names[_name_key(clean)] = participant.id
                logger.info("Participant joined: %s", clean)
                return participant, True

            current = self._participants[existing_id]
            update: dict[str, object] = {}
            if avatar_ref:
                update["avatar_ref"] = avatar_ref
            if self_estimate is not None and self_estimate != current.self_estimate:
                self._require_unlocked()
                update["self_estimate"] = self_estimate
            participant = current.model_copy(update=update)
            self._participants[existing_id] = participant
            return participant, False

    def update_self_estimate(self, participant_id: str, self_estimate: int) -> Participant:
        _non_negative(self_estimate, "self_estimate")
        with self._lock:
            current = self._participants.get(participant_id)
            if current is None:
                raise NotFoundError("participant", participant_id)
            self._require_unlocked()
            participant = current.model_copy(update={"self_estimate": self_estimate})
            self._participants[participant_id] = participant
        return participant

    def upsert_prediction(
        self,
        predictor_id: str,
        target_id: str,
        predicted_drinks: int,
    ) -> tuple[Prediction, bool]:
        """Insert or overwrite the prediction for ``(predictor, target)``.

        Returns ``(prediction, created)``.  The prediction id survives
        overwrites.
        """
        predictor_id = _required_text(predictor_id, "predictor_id")
        target_id = _required_text(target_id, "target_id")
        if predictor_id == target_id:
            raise SelfReferenceRejected("participants cannot predict themselves")
        _non_negative(predicted_drinks, "predicted_drinks")
        with self._lock:
            for pid in (predictor_id, target_id):
                if pid not in self._participants:
                    raise NotFoundError("participant", pid)
            self._require_unlocked()
            key = (predictor_id, target_id)
            previous = self._predictions.get(key)
            prediction = Prediction(
                id=previous.id if previous is not None else new_id(),
                predictor_id=predictor_id,
                target_id=target_id,
                predicted_drinks=predicted_drinks,
                updated_at=self._clock.now(),
            )
            self._predictions[key] = prediction
        return prediction, previous is None

    def set_passcode_hash(self, passcode_hash: str) -> TrackerSettings:
        """Store the passcode hash.  Write-once: a second call is rejected."""
        clean = _required_text(passcode_hash, "passcode_hash")
        with self._lock:
            if self._settings.passcode_hash is not None:
                raise AlreadySetError("passcode is already set")
            self._settings = self._settings.model_copy(update={"passcode_hash": clean})
        logger.info("Passcode configured")
        return self._settings

    def set_predictions_locked(self, locked: bool) -> TrackerSettings:
        with self._lock:
            self._settings = self._settings.model_copy(
                update={"predictions_locked": bool(locked)},
            )
        logger.info("Predictions %s", "locked" if locked else "unlocked")
        return self._settings

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def settings(self) -> TrackerSettings:
        return self._settings

    def items(self) -> list[CatalogItem]:
        with self._lock:
            return list(self._items.values())

    def find_item(self, name: str) -> CatalogItem | None:
        return self._items.get(_name_key(name))

    def consumptions(self) -> list[ConsumptionRecord]:
        with self._lock:
            return list(self._consumptions)

    def markers(self) -> list[Marker]:
        with self._lock:
            return list(self._markers)

    def participants(self) -> list[Participant]:
        with self._lock:
            return list(self._participants.values())

    def get_participant(self, participant_id: str) -> Participant | None:
        return self._participants.get(participant_id)

    def predictions(self) -> list[Prediction]:
        with self._lock:
            return list(self._predictions.values())

    def consumption_counts(self) -> dict[str, int]:
        """Return ``{participant_id: count}`` for attributed consumptions."""
        with self._lock:
            return count_by_participant(self._consumptions)

    def snapshot(self) -> StateSnapshot:
        """Point-in-time copy of the whole store."""
        with self._lock:
            return StateSnapshot(
                items=tuple(self._items.values()),
                consumptions=tuple(self._consumptions),
                markers=tuple(self._markers),
                participants=tuple(self._participants.values()),
                predictions=tuple(self._predictions.values()),
                settings=self._settings,
            )

    # ------------------------------------------------------------------
    # Wholesale replacement
    # ------------------------------------------------------------------

    def replace(self, state: StateSnapshot) -> None:
        """Replace the entire store with *state*.

        Duplicate names or prediction pairs in the incoming state keep
        the last occurrence.
        """
        items = {_name_key(i.name): i for i in state.items}
        participants = {p.id: p for p in state.participants}
        names = {_name_key(p.name): p.id for p in state.participants}
        predictions = {(p.predictor_id, p.target_id): p for p in state.predictions}
        with self._lock:
            self._items = items
            self._consumptions = list(state.consumptions)
            self._markers = list(state.markers)
            self._participants = participants
            self._participant_names = names
            self._predictions = predictions
            self._settings = state.settings
        logger.info(
            "Store replaced: items=%d consumptions=%d markers=%d "
            "participants=%d predictions=%d",
            len(items),
            len(state.consumptions),
            len(state.markers),
            len(participants),
            len(predictions),
        )

    def reset(self) -> None:
        """Drop all state."""
        self.replace(StateSnapshot())

    def seed_items(self, items: tuple[CatalogItem, ...] = DEFAULT_ITEMS) -> int:
        """Add any of *items* not already in the catalog.  Returns count added."""
        added = 0
        with self._lock:
            for item in items:
                key = _name_key(item.name)
                if key not in self._items:
                    self._items[key] = item
                    added += 1
        return added

    # -- Internals ---------------------------------------------------------

    def _require_unlocked(self) -> None:
        if self._settings.predictions_locked:
            raise LockedForWritesError("predictions are locked")

    def _timestamp(self, occurred_at: datetime | None) -> datetime:
        if occurred_at is None:
            return self._clock.now()
        return ensure_utc(occurred_at)

    def __len__(self) -> int:
        return len(self._consumptions)


def count_by_participant(records: list[ConsumptionRecord] | tuple[ConsumptionRecord, ...]) -> dict[str, int]:
    """Count attributed consumption records per participant id."""
    counts: Counter[str] = Counter(
        r.participant_id for r in records if r.participant_id is not None
    )
    return dict(counts)
