"""Time-bucketed aggregation of the consumption log.

Two views share one bucketing rule:

*  **Windowed**: the trailing window (60 one-minute buckets by default),
   always dense so the chart renders zero-filled gaps.
*  **Historical**: the same buckets from the first record up to now,
   plus per-item totals.

The windowed view is combined with a cached *baseline* (per-item counts
of everything older than the window) into the ``StatsPayload`` pushed to
dashboards as the ``stats`` message.

Bucket key = ``floor((ts - epoch) / bucket_width)``.  Floor division on
integral timedeltas, so a record exactly on a boundary belongs to the
bucket that starts there.
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone

from pydantic import BaseModel, Field

from drink_tracker.core.clock import IClock, WallClock
from drink_tracker.core.models import ConsumptionRecord, Marker, StateSnapshot

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Output models
# ---------------------------------------------------------------------------

class Bucket(BaseModel):
    bucket_start: datetime
    counts: dict[str, int] = Field(default_factory=dict)
    total: int = 0


class WindowedStats(BaseModel):
    window_start: datetime
    window_end: datetime
    bucket_seconds: int
    buckets: list[Bucket]
    recent_markers: list[Marker] = Field(default_factory=list)


class HistoricalStats(BaseModel):
    bucket_seconds: int
    buckets: list[Bucket]
    totals: dict[str, int] = Field(default_factory=dict)
    total: int = 0


class StatsPayload(BaseModel):
    """Windowed view plus cumulative totals for the running display."""

    generated_at: datetime
    window: WindowedStats
    baseline: dict[str, int] = Field(default_factory=dict)
    totals: dict[str, int] = Field(default_factory=dict)
    total: int = 0


# ---------------------------------------------------------------------------
# Bucketing primitives
# ---------------------------------------------------------------------------

def bucket_key(ts: datetime, bucket_seconds: int) -> int:
    """Index of the bucket containing *ts*."""
    return (ts - EPOCH) // timedelta(seconds=bucket_seconds)


def bucket_start(key: int, bucket_seconds: int) -> datetime:
    return EPOCH + timedelta(seconds=key * bucket_seconds)


def _group(
    records: Iterable[ConsumptionRecord],
    bucket_seconds: int,
    first_key: int,
    last_key: int,
) -> dict[int, Counter[str]]:
    grouped: dict[int, Counter[str]] = defaultdict(Counter)
    for record in records:
        key = bucket_key(record.occurred_at, bucket_seconds)
        if first_key <= key <= last_key:
            grouped[key][record.item_name] += 1
    return grouped


def _dense(
    grouped: dict[int, Counter[str]],
    bucket_seconds: int,
    first_key: int,
    last_key: int,
) -> list[Bucket]:
    out: list[Bucket] = []
    for key in range(first_key, last_key + 1):
        counts = grouped.get(key)
        out.append(
            Bucket(
                bucket_start=bucket_start(key, bucket_seconds),
                counts=dict(sorted(counts.items())) if counts else {},
                total=sum(counts.values()) if counts else 0,
            )
        )
    return out


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------

class Aggregator:
    """Derives windowed and historical stats from a ``StateSnapshot``.

    Parameters
    ----------
    clock:
        Supplies ``now`` when callers do not pass one.
    window_minutes:
        Length of the trailing window.
    bucket_seconds:
        Width of one bucket.
    baseline_refresh_seconds:
        Maximum age of the cached baseline before a full recount.
    """

    def __init__(
        self,
        clock: IClock | None = None,
        *,
        window_minutes: int = 60,
        bucket_seconds: int = 60,
        baseline_refresh_seconds: float = 60.0,
    ) -> None:
        if (window_minutes * 60) % bucket_seconds != 0:
            raise ValueError("window length must be a whole number of buckets")
        self._clock: IClock = clock or WallClock()
        self._window = timedelta(minutes=window_minutes)
        self._bucket_seconds = bucket_seconds
        self._bucket_count = window_minutes * 60 // bucket_seconds
        self._baseline_refresh = timedelta(seconds=baseline_refresh_seconds)

        # Baseline cache
        self._baseline: Counter[str] = Counter()
        self._baseline_first_key: int | None = None
        self._baseline_seen: int = 0
        self._baseline_computed_at: datetime | None = None

    @property
    def bucket_count(self) -> int:
        return self._bucket_count

    def window_keys(self, now: datetime) -> tuple[int, int]:
        """``(first_key, last_key)`` of the dense trailing window."""
        last_key = bucket_key(now, self._bucket_seconds)
        return last_key - self._bucket_count + 1, last_key

    # -- Windowed ------------------------------------------------------------

    def windowed_stats(
        self,
        state: StateSnapshot,
        now: datetime | None = None,
    ) -> WindowedStats:
        """Dense per-bucket counts for the trailing window."""
        now = now or self._clock.now()
        first_key, last_key = self.window_keys(now)
        grouped = _group(state.consumptions, self._bucket_seconds, first_key, last_key)

        window_start = now - self._window
        markers = sorted(
            (m for m in state.markers if window_start <= m.occurred_at <= now),
            key=lambda m: m.occurred_at,
        )
        return WindowedStats(
            window_start=bucket_start(first_key, self._bucket_seconds),
            window_end=now,
            bucket_seconds=self._bucket_seconds,
            buckets=_dense(grouped, self._bucket_seconds, first_key, last_key),
            recent_markers=markers,
        )

    # -- Historical ----------------------------------------------------------

    def historical_stats(
        self,
        state: StateSnapshot,
        now: datetime | None = None,
    ) -> HistoricalStats:
        """Dense buckets from the first record to *now*, with totals."""
        now = now or self._clock.now()
        last_key = bucket_key(now, self._bucket_seconds)
        keys = [
            bucket_key(r.occurred_at, self._bucket_seconds) for r in state.consumptions
        ]
        past = [k for k in keys if k <= last_key]
        if not past:
            return HistoricalStats(bucket_seconds=self._bucket_seconds, buckets=[])
        first_key = min(past)
        grouped = _group(state.consumptions, self._bucket_seconds, first_key, last_key)
        totals: Counter[str] = Counter()
        for counts in grouped.values():
            totals.update(counts)
        return HistoricalStats(
            bucket_seconds=self._bucket_seconds,
            buckets=_dense(grouped, self._bucket_seconds, first_key, last_key),
            totals=dict(sorted(totals.items())),
            total=sum(totals.values()),
        )

    def baseline(
        self,
        state: StateSnapshot,
        now: datetime | None = None,
    ) -> dict[str, int]:
        """Per-item counts of records older than the current window.

        Cached.  A full recount happens when the window start moves, when
        the log shrank (store replaced), or when the cache is older than
        ``baseline_refresh_seconds``.  Otherwise only records appended
        since the last call are examined.
        """
        now = now or self._clock.now()
        first_key, _ = self.window_keys(now)
        records = state.consumptions
        stale = (
            self._baseline_first_key != first_key
            or len(records) < self._baseline_seen
            or self._baseline_computed_at is None
            or now - self._baseline_computed_at >= self._baseline_refresh
        )
        if stale:
            self._baseline = self._count_before(records, first_key)
            self._baseline_first_key = first_key
            self._baseline_computed_at = now
        else:
            self._baseline.update(self._count_before(records[self._baseline_seen:], first_key))
        self._baseline_seen = len(records)
        return dict(sorted(self._baseline.items()))

    def invalidate(self) -> None:
        """Force a full baseline recount on the next call."""
        self._baseline_first_key = None
        self._baseline_computed_at = None
        self._baseline_seen = 0

    def _count_before(
        self,
        records: Iterable[ConsumptionRecord],
        first_key: int,
    ) -> Counter[str]:
        return Counter(
            r.item_name
            for r in records
            if bucket_key(r.occurred_at, self._bucket_seconds) < first_key
        )

    # -- Combined ------------------------------------------------------------

    def stats(
        self,
        state: StateSnapshot,
        now: datetime | None = None,
    ) -> StatsPayload:
        """Windowed stats plus baseline and cumulative totals."""
        now = now or self._clock.now()
        window = self.windowed_stats(state, now)
        baseline = self.baseline(state, now)
        totals: Counter[str] = Counter(baseline)
        for bucket in window.buckets:
            totals.update(bucket.counts)
        return StatsPayload(
            generated_at=now,
            window=window,
            baseline=baseline,
            totals=dict(sorted(totals.items())),
            total=sum(totals.values()),
        )
