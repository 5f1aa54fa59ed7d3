"""Event stream message types.

Each message pushed to a dashboard is a type tag plus a JSON payload that
matches the corresponding entity or aggregate shape.
"""

from __future__ import annotations

import json
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel


class MessageType(str, Enum):
    STATS = "stats"
    ITEM_ADDED = "item-added"
    CONSUMPTION = "consumption"
    MARKER_ADDED = "marker-added"
    PARTICIPANT_ADDED = "participant-added"
    PARTICIPANT_UPDATED = "participant-updated"
    PREDICTION_ADDED = "prediction-added"
    PREDICTION_UPDATED = "prediction-updated"
    PREDICTIONS_LOCK_CHANGED = "predictions-lock-changed"
    HEARTBEAT = "heartbeat"


# Only delivered to subscribers the session layer has authorized.
PRIVATE_TYPES: frozenset[MessageType] = frozenset({
    MessageType.PARTICIPANT_ADDED,
    MessageType.PARTICIPANT_UPDATED,
    MessageType.PREDICTION_ADDED,
    MessageType.PREDICTION_UPDATED,
})

PUBLIC_TYPES: frozenset[MessageType] = frozenset(MessageType) - PRIVATE_TYPES


def to_payload(data: Any) -> Any:
    """Convert models (or lists / dicts of models) to JSON-safe values."""
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json")
    if isinstance(data, (list, tuple)):
        return [to_payload(d) for d in data]
    if isinstance(data, dict):
        return {k: to_payload(v) for k, v in data.items()}
    if isinstance(data, datetime):
        return data.isoformat()
    if isinstance(data, Enum):
        return data.value
    return data


def encode_sse(message_type: MessageType, data: Any) -> str:
    """Render one Server-Sent Events frame."""
    body = json.dumps(to_payload(data), separators=(",", ":"), ensure_ascii=False)
    return f"event: {message_type.value}\ndata: {body}\n\n"
