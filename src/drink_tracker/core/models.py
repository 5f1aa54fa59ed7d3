"""Domain models for the drink tracker.

These are the canonical "truth models" owned by the event store.  All of
them are frozen: an update replaces the stored instance, so any object
handed out by the store can be shared without copying.

The ``StateSnapshot`` model doubles as the on-disk artifact format.
Fields absent from older artifacts fall back to their defaults, and the
legacy key names written by 1.x releases
(``drinks``, ``events``, ``drinkName``, ``at``, ``imageUrl``) are still
accepted on read.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated

from pydantic import AfterValidator, AliasChoices, BaseModel, ConfigDict, Field

from .ids import ensure_utc, new_id, utc_now

DEFAULT_ITEM_COLOR = "#8B5CF6"
DEFAULT_MARKER_COLOR = "#F59E0B"

# Bump when the artifact layout changes.  Artifacts without the field are
# treated as version 0 (legacy).
CURRENT_FORMAT_VERSION = 2


class _Entity(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


# Naive datetimes are read as UTC; aware ones are converted.
UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]


# ---------------------------------------------------------------------------
# Catalog & logs
# ---------------------------------------------------------------------------

class CatalogItem(_Entity):
    """A drink that can be consumed.  Name is unique, case-insensitively."""

    name: str
    emoji: str | None = None
    image_ref: str | None = Field(
        default=None, validation_alias=AliasChoices("image_ref", "imageUrl"),
    )
    color: str = DEFAULT_ITEM_COLOR


class ConsumptionRecord(_Entity):
    id: str = Field(default_factory=new_id)
    item_name: str = Field(validation_alias=AliasChoices("item_name", "drinkName"))
    participant_id: str | None = None
    occurred_at: UtcDatetime = Field(
        default_factory=utc_now, validation_alias=AliasChoices("occurred_at", "at"),
    )


class Marker(_Entity):
    """A labelled point in time shown on the dashboard chart."""

    id: str = Field(default_factory=new_id)
    label: str
    color: str = DEFAULT_MARKER_COLOR
    occurred_at: UtcDatetime = Field(
        default_factory=utc_now, validation_alias=AliasChoices("occurred_at", "at"),
    )


# ---------------------------------------------------------------------------
# Participants & predictions
# ---------------------------------------------------------------------------

class Participant(_Entity):
    id: str = Field(default_factory=new_id)
    name: str
    avatar_ref: str | None = None
    self_estimate: int = Field(default=0, ge=0)
    created_at: UtcDatetime = Field(default_factory=utc_now)


class Prediction(_Entity):
    """How many drinks *predictor* expects *target* to have by the end."""

    id: str = Field(default_factory=new_id)
    predictor_id: str
    target_id: str
    predicted_drinks: int = Field(ge=0)
    updated_at: UtcDatetime = Field(default_factory=utc_now)


class TrackerSettings(_Entity):
    """Singleton settings.  ``passcode_hash`` is write-once."""

    passcode_hash: str | None = None
    predictions_locked: bool = False


# ---------------------------------------------------------------------------
# Whole-state snapshot (also the artifact format)
# ---------------------------------------------------------------------------

class StateSnapshot(_Entity):
    """Point-in-time copy of the entire event store."""

    format_version: int = 0
    saved_at: UtcDatetime | None = None
    items: tuple[CatalogItem, ...] = Field(
        default=(), validation_alias=AliasChoices("items", "drinks"),
    )
    consumptions: tuple[ConsumptionRecord, ...] = ()
    markers: tuple[Marker, ...] = Field(
        default=(), validation_alias=AliasChoices("markers", "events"),
    )
    participants: tuple[Participant, ...] = ()
    predictions: tuple[Prediction, ...] = ()
    settings: TrackerSettings = Field(default_factory=TrackerSettings)

    def is_empty(self) -> bool:
        return not (
            self.items
            or self.consumptions
            or self.markers
            or self.participants
            or self.predictions
        )
