"""Snapshot persistence: atomic save, retention and startup restore."""

from .snapshots import ArtifactInfo, SnapshotManager, SnapshotScheduler

__all__ = ["ArtifactInfo", "SnapshotManager", "SnapshotScheduler"]
