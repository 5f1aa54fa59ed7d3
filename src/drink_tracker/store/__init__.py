"""Authoritative in-memory state: catalog, logs, participants, predictions."""

from .event_store import DEFAULT_ITEMS, EventStore, count_by_participant

__all__ = ["DEFAULT_ITEMS", "EventStore", "count_by_participant"]
