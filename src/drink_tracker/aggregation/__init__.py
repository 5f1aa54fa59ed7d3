"""Windowed and historical bucketing of the consumption log."""

from .aggregator import (
    Aggregator,
    Bucket,
    HistoricalStats,
    StatsPayload,
    WindowedStats,
    bucket_key,
)

__all__ = [
    "Aggregator",
    "Bucket",
    "HistoricalStats",
    "StatsPayload",
    "WindowedStats",
    "bucket_key",
]
