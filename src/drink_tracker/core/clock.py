"""Injectable time source.

Record timestamps, window edges and artifact names all come from an
``IClock`` handed in at construction, so tests can pin the party to a
fixed instant and step through minutes.

WallClock: ``datetime.now`` in UTC (serving)
SimClock: a hand-cranked instant (tests)
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Protocol


class IClock(Protocol):
    def now(self) -> datetime:
        """Timezone-aware UTC instant."""
        ...


class WallClock:
    """Real time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class SimClock:
    """Frozen instant that only moves when told to.

    Moving backwards is refused; the aggregator's baseline cache and the
    snapshot naming both assume time never rewinds.
    """

    def __init__(self, start: datetime | None = None) -> None:
        self._instant = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._instant

    def set_time(self, instant: datetime) -> None:
        if instant < self._instant:
            raise ValueError(f"cannot rewind SimClock from {self._instant} to {instant}")
        self._instant = instant

    def advance(self, **delta: float) -> datetime:
        """Move forward by ``timedelta(**delta)`` and return the new instant."""
        self.set_time(self._instant + timedelta(**delta))
        return self._instant
