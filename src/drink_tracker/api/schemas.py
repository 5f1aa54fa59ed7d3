"""Request bodies accepted by the ingress API.

Field names match the entity fields.  The 1.x request keys
``drinkName`` and ``imageUrl`` are still accepted here.  Compatibility
stops at request bodies: the event stream uses the 2.x message names
(``marker-added``, ``item-added``) and stats shape only.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ItemCreate(_Body):
    name: str
    emoji: str | None = None
    image_ref: str | None = Field(
        default=None, validation_alias=AliasChoices("image_ref", "imageUrl"),
    )
    color: str | None = None


class ConsumptionCreate(_Body):
    item_name: str = Field(validation_alias=AliasChoices("item_name", "drinkName"))
    participant_id: str | None = None
    occurred_at: datetime | None = None


class MarkerCreate(_Body):
    label: str
    color: str | None = None
    occurred_at: datetime | None = None


class ParticipantUpsert(_Body):
    name: str
    avatar_ref: str | None = None
    self_estimate: int | None = Field(default=None, ge=0)


class SelfEstimateUpdate(_Body):
    self_estimate: int = Field(ge=0)


class PredictionUpsert(_Body):
    predictor_id: str
    target_id: str
    predicted_drinks: int = Field(ge=0)


class PasscodeSet(_Body):
    passcode: str


class LockUpdate(_Body):
    locked: bool
